# steps/service.py
from __future__ import annotations

import time

from ..errors import ServiceError, StepFailure
from ..model import Step
from ..services import TestNode, TestNodeConfig
from .base import StepContext


def run_step(ctx: StepContext, step: Step) -> None:
    """
    Start a test node, wait for it to answer, and publish its endpoint to the
    following steps as TEST_<NAME>_URL.

    Teardown is registered on the job's service stack before the readiness
    wait, so the node is stopped exactly once however the job ends.
    """
    config = TestNodeConfig.from_params(step.params)
    node = TestNode(
        config,
        workspace=ctx.workspace,
        tools_dir=ctx.settings.tools_dir,
        stdout_path=ctx.log_path,
    )

    try:
        endpoint, log_file = node.start(env=ctx.step_env(step))
    except ServiceError as e:
        raise StepFailure(job=ctx.job_name, step=step.name, cmd="start test node", exit_code=None, message=str(e)) from e
    ctx.services.callback(node.stop, ctx.settings.cancel_grace)
    ctx.console.print_debug(f"[{ctx.job_name}] test node starting at {endpoint} (log: {log_file})")

    ready_timeout = step.params.get("ready_timeout")
    ready_deadline = time.monotonic() + float(ready_timeout) if ready_timeout is not None else None

    while True:
        ctx.check(step)
        try:
            if node.is_ready():
                break
        except ServiceError as e:
            raise StepFailure(job=ctx.job_name, step=step.name, cmd="wait for test node", exit_code=None, message=str(e)) from e
        if ready_deadline is not None and time.monotonic() >= ready_deadline:
            raise StepFailure(
                job=ctx.job_name,
                step=step.name,
                cmd="wait for test node",
                exit_code=None,
                message=f"test node not ready within {float(ready_timeout):g}s",
            )
        time.sleep(min(ctx.settings.poll_interval, max(0.0, ctx.remaining())))

    ctx.inject(config.env_name, endpoint)
    ctx.console.print_info(f"[{ctx.job_name}] test node ready: {config.env_name}={endpoint}")
