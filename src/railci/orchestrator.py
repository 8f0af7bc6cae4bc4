# orchestrator.py
from __future__ import annotations

import threading
from typing import Dict, List, Mapping, Optional, Union

from .aggregate import finalize
from .concurrency import ConcurrencyRegistry
from .config import Settings
from .environment import RunnerPool
from .executor import StepExecutor
from .graph import JobGraph, validate_workflow
from .model import Event, JobInstance, Run, Workflow
from .store import RunStore
from .trigger import Rejected, admit
from .ui.console import Console, get_console

# event -> trigger -> concurrency -> job graph -> step executor -> aggregator


class Orchestrator:
    """
    Admits events for one workflow and drives the resulting runs.

    `submit` returns as soon as the run's jobs are launched; `dispatch` also
    waits for the run to finish. Superseded runs are cancelled before any job
    of the new run is scheduled.
    """

    def __init__(
        self,
        workflow: Workflow,
        settings: Optional[Settings] = None,
        *,
        store: Optional[RunStore] = None,
        pool: Optional[RunnerPool] = None,
        handlers: Optional[Mapping] = None,
        console: Optional[Console] = None,
    ):
        validate_workflow(workflow)
        self.workflow = workflow
        self.settings = settings or Settings()
        self.store = store
        self.console = console or get_console()
        self.pool = pool or RunnerPool(
            self.settings.runners,
            self.settings.work_dir,
            keep_workspaces=self.settings.keep_workspaces,
        )
        self.registry = ConcurrencyRegistry(cancel_in_progress=workflow.cancel_in_progress)
        self.executor = StepExecutor(
            self.settings,
            self.pool,
            handlers=handlers,
            workflow_env=workflow.env,
            console=self.console,
            on_update=self._job_updated,
        )
        self.graph = JobGraph(self.executor.run, self._complete, max_workers=self.settings.max_workers)

        self._runs: Dict[str, Run] = {}
        self._finalized: set[str] = set()
        self._lock = threading.Lock()

        if self.store is not None:
            self._rehydrate()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def submit(self, event: Event) -> Union[Run, Rejected]:
        """Admit `event` and launch its run. Rejected events have no side effects."""
        result = admit(event, self.workflow)
        if isinstance(result, Rejected):
            self.console.print_rejected(result.reason)
            return result

        run = result
        with self._lock:
            self._runs[run.id] = run

        superseded = self.registry.admitted(run)
        if superseded is not None:
            self._superseded(superseded, run)

        self._persist(run)
        self.console.print_run_started(run, job_count=len(run.jobs))
        self.graph.schedule(run)
        self._persist(run)
        return run

    def dispatch(self, event: Event, timeout: Optional[float] = None) -> Union[Run, Rejected]:
        """Submit `event` and block until its run is terminal (or `timeout` passes)."""
        result = self.submit(event)
        if isinstance(result, Run):
            result.wait(timeout)
        return result

    def get(self, run_id: str) -> Optional[Run]:
        with self._lock:
            return self._runs.get(run_id)

    def runs(self) -> List[Run]:
        with self._lock:
            return list(self._runs.values())

    def cancel(self, run_id: str) -> bool:
        """Cancel a run by hand. Returns False if it is unknown or already terminal."""
        run = self.get(run_id)
        if run is None or not run.cancel(reason="cancelled by user"):
            return False
        self._persist(run)
        if run.all_jobs_terminal():
            self._complete(run)
        return True

    def shutdown(self, wait: bool = True, cancel_active: bool = False) -> None:
        """
        Stop the job pool and close the store.

        With `cancel_active`, every run still in flight is cancelled first, so
        its jobs wind down and are recorded before the store goes away.
        """
        if cancel_active:
            for run in self.runs():
                if run.cancel(reason="server shutting down"):
                    self._persist(run)
                    if run.all_jobs_terminal():
                        self._complete(run)
        self.graph.shutdown(wait=wait)
        if self.store is not None:
            self.store.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _rehydrate(self) -> None:
        runs = self.store.load_active(self.workflow)
        with self._lock:
            for run in runs:
                self._runs[run.id] = run
        for old in self.registry.rehydrate(runs):
            self._persist(old)
        # every job ended before the restart; only finalization was lost
        for run in runs:
            if run.all_jobs_terminal():
                self._complete(run)
        if runs:
            self.console.print_debug(f"rehydrated {len(runs)} active run(s) from history")

    def _superseded(self, old: Run, new: Run) -> None:
        self.console.print_superseded(old.id, new.id)
        self._persist(old)
        # A run with nothing in flight has no job left to report completion.
        if old.all_jobs_terminal():
            self._complete(old)

    def _job_updated(self, run: Run, inst: JobInstance) -> None:
        self._persist(run)

    def _complete(self, run: Run) -> None:
        with self._lock:
            if run.id in self._finalized:
                return
            self._finalized.add(run.id)

        finalize(run)
        self.registry.release(run)
        self._persist(run)
        self.console.print_results(run)
        run.finished.set()

    def _persist(self, run: Run) -> None:
        if self.store is not None:
            self.store.save(run)
