# graph.py
from __future__ import annotations

import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Set, Tuple

from .errors import WorkflowError
from .model import Job, JobInstance, JobStatus, Run, Workflow


def build_dag(jobs: Iterable[Job]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build a DAG from Job objects.

    Requires:
      - job.name: str (unique)
      - job.needs: iterable[str] (names of jobs that must run BEFORE this job)
    """
    jobs = list(jobs)
    names = [j.name for j in jobs]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise WorkflowError(f"Duplicate job names found: {dupes}")

    name_set = set(names)
    adj: Dict[str, Set[str]] = {n: set() for n in name_set}
    indeg: Dict[str, int] = {n: 0 for n in name_set}

    for job in jobs:
        for need in job.needs:
            if need not in name_set:
                raise WorkflowError(
                    f"Job '{job.name}' needs missing job '{need}'. "
                    f"Known jobs: {sorted(name_set)}"
                )
            # Edge need -> job.name (need must run before job)
            if job.name not in adj[need]:
                adj[need].add(job.name)
                indeg[job.name] += 1

    return adj, indeg


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Convert DAG into topological "levels" (stages).
    Each stage can run in parallel.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(sorted([n for n, d in indeg.items() if d == 0]))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level_size = len(q)
        level: List[str] = []

        for _ in range(level_size):
            node = q.popleft()
            level.append(node)
            processed += 1

            for child in sorted(adj.get(node, set())):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)

        levels.append(level)

    if processed != len(indeg):
        remaining = sorted([n for n, d in indeg.items() if d > 0])
        raise WorkflowError(f"DAG has a cycle (or unresolved needs). Stuck nodes: {remaining}")

    return levels


def validate_workflow(workflow: Workflow) -> List[List[str]]:
    """Reject empty workflows, duplicate names, unknown needs and cycles. Returns the stages."""
    if not workflow.jobs:
        raise WorkflowError(f"Workflow '{workflow.name}' defines no jobs")
    adj, indeg = build_dag(workflow.jobs)
    return topo_levels(adj, indeg)


class _RunSchedule:
    """Per-run bookkeeping: remaining in-degrees, guarded by one lock."""

    def __init__(self, adj: Dict[str, Set[str]], indeg: Dict[str, int]):
        self.adj = adj
        self.indeg = dict(indeg)
        self.lock = threading.Lock()


class JobGraph:
    """
    Fans a run out into its JobInstances.

    Jobs whose needs are satisfied run concurrently on a shared thread pool;
    a job never waits on a sibling it does not need. `run_job` drives one
    JobInstance to a terminal state; `on_complete` is called once the last
    JobInstance of the run is terminal (it may be called more than once and
    must be idempotent).
    """

    def __init__(
        self,
        run_job: Callable[[Run, JobInstance], None],
        on_complete: Callable[[Run], None],
        max_workers: int | None = None,
    ):
        self._run_job = run_job
        self._on_complete = on_complete
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="railci-job")

    def schedule(self, run: Run) -> List[JobInstance]:
        """Launch every job without needs. Returns the launched instances."""
        adj, indeg = build_dag(inst.job for inst in run.jobs.values())
        state = _RunSchedule(adj, indeg)
        run.mark_running()

        roots = [name for name in run.jobs if indeg[name] == 0]
        launched = [run.jobs[name] for name in roots]
        for name in roots:
            self._launch(run, state, name)
        return launched

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)

    # ------------------------------------------------------------------

    def _launch(self, run: Run, state: _RunSchedule, name: str) -> None:
        fut = self._pool.submit(self._run_job, run, run.jobs[name])
        fut.add_done_callback(lambda f, n=name: self._job_done(run, state, n, f))

    def _job_done(self, run: Run, state: _RunSchedule, name: str, fut: Future) -> None:
        exc = fut.exception()
        if exc is not None:
            run.set_job_status(name, JobStatus.FAILED, reason=f"internal error: {exc}")

        ready: List[str] = []
        with state.lock:
            succeeded = run.jobs[name].status is JobStatus.SUCCEEDED
            for child in sorted(state.adj[name]):
                if succeeded:
                    state.indeg[child] -= 1
                    if state.indeg[child] == 0:
                        ready.append(child)
                else:
                    self._cancel_dependents(run, state, child, name)

        for child in ready:
            # a cancelled run ends its pending jobs itself, and the pool may be shutting down
            if not run.jobs[child].status.terminal:
                self._launch(run, state, child)

        if run.all_jobs_terminal():
            self._on_complete(run)

    def _cancel_dependents(self, run: Run, state: _RunSchedule, child: str, failed: str) -> None:
        q = deque([child])
        while q:
            node = q.popleft()
            if run.set_job_status(node, JobStatus.CANCELLED, reason=f"dependency {failed} did not succeed"):
                q.extend(sorted(state.adj[node]))
