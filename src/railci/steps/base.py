# steps/base.py
from __future__ import annotations

import subprocess
import time
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Union

from ..config import Settings
from ..errors import JobCancelled, JobTimeout, StepFailure, TOOL_HINTS
from ..model import JobInstance, Run, Step
from ..process import terminate_process
from ..ui.console import Console

OUTPUT_TAIL = 4000


@dataclass
class StepContext:
    """
    Everything a step handler may touch while its job runs.

    `injected` holds variables published by earlier steps (service
    endpoints); `post_actions` run after the last step with the job's
    success flag; `services` unwinds when the job ends, whatever the outcome.
    """
    run: Run
    inst: JobInstance
    workspace: Path
    settings: Settings
    console: Console
    log_path: Path
    deadline: float
    base_env: Dict[str, str]
    services: ExitStack
    injected: Dict[str, str] = field(default_factory=dict)
    post_actions: List[Callable[[bool], None]] = field(default_factory=list)

    @property
    def job_name(self) -> str:
        return self.inst.name

    def remaining(self) -> float:
        return self.deadline - time.monotonic()

    def check(self, step: Step | None = None) -> None:
        """Raise JobCancelled / JobTimeout if the job must stop now."""
        step_name = step.name if step is not None else None
        if self.inst.cancelled:
            raise JobCancelled(job=self.job_name, step=step_name)
        if self.remaining() <= 0:
            raise JobTimeout(job=self.job_name, timeout_minutes=self.inst.job.timeout_minutes, step=step_name)

    def step_env(self, step: Step) -> Dict[str, str]:
        # process env < workflow env < job env < injected < step env
        env = dict(self.base_env)
        env.update(self.injected)
        env.update({k: str(v) for k, v in step.env.items()})
        return env

    def step_cwd(self, step: Step) -> Path:
        cwd = (self.workspace / (step.cwd or ".")).resolve()
        if not cwd.exists():
            raise StepFailure(
                job=self.job_name,
                step=step.name,
                cmd=step.run,
                exit_code=None,
                message=f"cwd not found: {cwd}",
            )
        return cwd

    def inject(self, name: str, value: str) -> None:
        self.injected[name] = value

    def write_log(self, text: str) -> None:
        with self.log_path.open("a", encoding="utf-8") as log:
            log.write(text)


def _tail(path: Path, offset: int) -> str:
    with path.open("r", encoding="utf-8", errors="replace") as f:
        f.seek(offset)
        data = f.read()
    return data[-OUTPUT_TAIL:]


def run_process(
    ctx: StepContext,
    step: Step,
    cmd: Union[str, Sequence[str]],
    *,
    cwd: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> str:
    """
    Run one external process for `step`, streaming output to the job log.

    A string `cmd` goes through the shell. The wait is sliced so cancellation
    and the job deadline are noticed while the process runs; either one
    terminates the whole process group. Non-zero exit raises StepFailure.
    Returns the tail of the process output.
    """
    shell = isinstance(cmd, str)
    display = cmd if shell else " ".join(cmd)
    workdir = cwd or ctx.step_cwd(step)
    proc_env = dict(env) if env is not None else ctx.step_env(step)

    ctx.write_log(f"\n$ {display}\n")
    offset = ctx.log_path.stat().st_size

    with ctx.log_path.open("a", encoding="utf-8") as log:
        try:
            proc = subprocess.Popen(
                cmd,
                shell=shell,
                cwd=str(workdir),
                env=proc_env,
                stdout=log,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                start_new_session=True,
            )
        except FileNotFoundError:
            tool = cmd[0] if not shell else display.split()[0]
            raise StepFailure(
                job=ctx.job_name,
                step=step.name,
                cmd=display,
                exit_code=None,
                message=f"{tool} not found. {TOOL_HINTS.get(Path(tool).name, f'Install {tool} or fix PATH.')}",
            ) from None

        try:
            while True:
                try:
                    code = proc.wait(timeout=max(0.0, min(ctx.settings.poll_interval, ctx.remaining())))
                    break
                except subprocess.TimeoutExpired:
                    ctx.check(step)
        finally:
            terminate_process(proc, ctx.settings.cancel_grace)

    output = _tail(ctx.log_path, offset)
    if code != 0:
        raise StepFailure(
            job=ctx.job_name,
            step=step.name,
            cmd=display,
            exit_code=code,
            output=output,
        )
    return output
