# executor.py
from __future__ import annotations

import os
import re
import time
from contextlib import ExitStack
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional, Tuple

from .config import Settings
from .environment import Environment, RunnerPool
from .errors import CIError, EnvironmentUnavailable, JobCancelled, JobTimeout, StepFailure
from .model import JobInstance, JobStatus, Run, Step, StepResult
from .steps import DEFAULT_HANDLERS, StepContext, StepHandler
from .ui.console import Console, get_console

JobListener = Callable[[Run, JobInstance], None]


def _safe(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "_", name)


class StepExecutor:
    """
    Drives one JobInstance from Pending to a terminal status.

    Steps run strictly in order inside the job's provisioned workspace. The
    first failure not covered by continue_on_error stops the job; setup steps
    (checkout, toolchain, cache) always stop it. Services started by steps
    are torn down when the job ends, on every path.
    """

    def __init__(
        self,
        settings: Settings,
        pool: RunnerPool,
        *,
        handlers: Optional[Mapping] = None,
        workflow_env: Optional[Mapping[str, str]] = None,
        console: Optional[Console] = None,
        on_update: Optional[JobListener] = None,
    ):
        self.settings = settings
        self.pool = pool
        self.handlers: Dict = dict(DEFAULT_HANDLERS)
        if handlers:
            self.handlers.update(handlers)
        self.workflow_env = dict(workflow_env or {})
        self.console = console or get_console()
        self.on_update = on_update

    def _notify(self, run: Run, inst: JobInstance) -> None:
        if self.on_update is not None:
            self.on_update(run, inst)

    def log_path(self, run: Run, inst: JobInstance) -> Path:
        return Path(self.settings.log_dir).resolve() / _safe(run.id) / f"{_safe(inst.name)}.log"

    def run(self, run: Run, inst: JobInstance) -> JobStatus:
        """Run `inst` to completion and return its terminal status."""
        if inst.status.terminal:
            return inst.status
        if not run.set_job_status(inst.name, JobStatus.RUNNING):
            run.set_job_status(inst.name, JobStatus.CANCELLED, reason="cancelled before start")
            self._notify(run, inst)
            return inst.status
        self._notify(run, inst)

        try:
            with self.pool.provision(
                inst,
                run.id,
                wait=self.settings.provision_wait,
                poll_interval=self.settings.poll_interval,
            ) as env:
                inst.environment = env.label
                self.console.print_job_start(inst.job.display_name, env.label)
                status, reason = self._run_steps(run, inst, env)
        except EnvironmentUnavailable as e:
            status, reason = JobStatus.FAILED, f"EnvironmentUnavailable: {e.reason}"
        except JobCancelled:
            status, reason = JobStatus.CANCELLED, "cancelled while waiting for an environment"

        run.set_job_status(inst.name, status, reason=reason)
        self.console.print_job_finished(inst.job.display_name, inst.status.value, inst.reason)
        self._notify(run, inst)
        return inst.status

    # ------------------------------------------------------------------

    def _base_env(self, inst: JobInstance) -> Dict[str, str]:
        env = os.environ.copy()
        env.update(self.workflow_env)
        env.update({k: str(v) for k, v in inst.job.env.items()})
        return env

    def _run_steps(self, run: Run, inst: JobInstance, env: Environment) -> Tuple[JobStatus, Optional[str]]:
        job = inst.job
        log_path = self.log_path(run, inst)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_path.touch()

        status, reason = JobStatus.SUCCEEDED, None
        with ExitStack() as services:
            ctx = StepContext(
                run=run,
                inst=inst,
                workspace=env.workspace,
                settings=self.settings,
                console=self.console,
                log_path=log_path,
                deadline=time.monotonic() + job.timeout_seconds,
                base_env=self._base_env(inst),
                services=services,
            )
            try:
                for idx, step in enumerate(job.steps):
                    inst.step_cursor = idx
                    ctx.check(step)
                    failure = self._run_step(ctx, step)
                    if failure is not None:
                        status, reason = JobStatus.FAILED, failure
                        break
                else:
                    inst.step_cursor = len(job.steps)
            except JobTimeout as e:
                self._record(inst, job.steps[inst.step_cursor], "failed", error=str(e))
                status, reason = JobStatus.TIMED_OUT, str(e)
            except JobCancelled as e:
                self._record(inst, job.steps[inst.step_cursor], "failed", error=str(e))
                status, reason = JobStatus.CANCELLED, str(e)
            finally:
                for skipped in job.steps[len(inst.results):]:
                    self._record(inst, skipped, "skipped")
            # services unwind here, before post actions touch the workspace

        self._run_post_actions(ctx, status is JobStatus.SUCCEEDED)
        return status, reason

    def _run_step(self, ctx: StepContext, step: Step) -> Optional[str]:
        """Run one step. Returns a failure reason when the job must stop, else None."""
        handler: Optional[StepHandler] = self.handlers.get(step.kind)
        self.console.print_step(ctx.job_name, step.name)
        if handler is None:
            reason = f"no handler for step kind '{step.kind.value}'"
            self._record(ctx.inst, step, "failed", error=reason)
            return reason

        try:
            handler(ctx, step)
        except StepFailure as e:
            return self._step_failed(ctx, step, str(e), e.exit_code, e.output)
        except (CIError, OSError) as e:
            return self._step_failed(ctx, step, str(e), None, "")

        self._record(ctx.inst, step, "ok", exit_code=0)
        return None

    def _step_failed(
        self,
        ctx: StepContext,
        step: Step,
        error: str,
        exit_code: Optional[int],
        output: str,
    ) -> Optional[str]:
        if step.continue_on_error and not step.is_setup:
            self._record(ctx.inst, step, "ignored", exit_code=exit_code, output=output, error=error)
            self.console.print_step_ignored(ctx.job_name, step.name, error)
            return None
        self._record(ctx.inst, step, "failed", exit_code=exit_code, output=output, error=error)
        if output and self.console.debug:
            self.console.print_info(output)
        return error

    def _record(self, inst: JobInstance, step: Step, outcome: str, **kw) -> None:
        inst.results.append(StepResult(name=step.name, kind=step.kind, outcome=outcome, **kw))

    def _run_post_actions(self, ctx: StepContext, succeeded: bool) -> None:
        for action in ctx.post_actions:
            try:
                action(succeeded)
            except OSError as e:
                self.console.print_warning(f"[{ctx.job_name}] post-job action failed: {e}")
