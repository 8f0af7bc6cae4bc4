# steps/command.py
from __future__ import annotations

from ..errors import StepFailure
from ..model import Step
from .base import StepContext, run_process


def run_step(ctx: StepContext, step: Step) -> None:
    """Run a shell command step; non-zero exit is a StepFailure."""
    if not step.run.strip():
        raise StepFailure(
            job=ctx.job_name,
            step=step.name,
            cmd=step.run,
            exit_code=None,
            message="run-command step has no command",
        )
    run_process(ctx, step, step.run)
