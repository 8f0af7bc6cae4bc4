# environment.py
from __future__ import annotations

import re
import shutil
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, Mapping, Optional

from .errors import EnvironmentUnavailable, JobCancelled
from .model import JobInstance


@dataclass(frozen=True)
class Environment:
    """A provisioned execution environment: a runner slot plus a private workspace."""
    label: str
    workspace: Path


def _safe(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "_", name)


class RunnerPool:
    """
    Local runner slots keyed by label.

    A job is bound to the slot pool of its exact `runs_on` label, or to the
    "*" pool when no exact label is configured. Each pool is a bounded
    semaphore, so at most N jobs share a label at once.
    """

    WILDCARD = "*"

    def __init__(self, runners: Mapping[str, int], work_dir: str | Path, keep_workspaces: bool = False):
        self.work_dir = Path(work_dir).resolve()
        self.keep_workspaces = keep_workspaces
        self._slots: Dict[str, threading.BoundedSemaphore] = {
            label: threading.BoundedSemaphore(count) for label, count in runners.items()
        }

    def _pool_for(self, runs_on: str) -> Optional[str]:
        if runs_on in self._slots:
            return runs_on
        if self.WILDCARD in self._slots:
            return self.WILDCARD
        return None

    def has_label(self, runs_on: str) -> bool:
        return self._pool_for(runs_on) is not None

    @contextmanager
    def provision(
        self,
        inst: JobInstance,
        run_id: str,
        *,
        wait: float,
        poll_interval: float = 0.1,
    ) -> Iterator[Environment]:
        """
        Bind `inst` to a slot, waiting at most `wait` seconds.

        Raises EnvironmentUnavailable when no label matches or no slot frees
        up in time, and JobCancelled if the job is cancelled while waiting.
        """
        runs_on = inst.job.runs_on
        pool = self._pool_for(runs_on)
        if pool is None:
            raise EnvironmentUnavailable(job=inst.name, runs_on=runs_on, reason="no runner with this label")

        sem = self._slots[pool]
        deadline = time.monotonic() + wait
        while True:
            if inst.cancelled:
                raise JobCancelled(job=inst.name)
            if sem.acquire(timeout=min(poll_interval, max(0.0, deadline - time.monotonic()))):
                break
            if time.monotonic() >= deadline:
                raise EnvironmentUnavailable(
                    job=inst.name,
                    runs_on=runs_on,
                    reason=f"no free slot within {wait:g}s",
                )

        workspace = self.work_dir / _safe(run_id) / _safe(inst.name)
        try:
            if workspace.exists():
                shutil.rmtree(workspace)
            workspace.mkdir(parents=True)
            yield Environment(label=pool, workspace=workspace)
        finally:
            sem.release()
            if not self.keep_workspaces:
                shutil.rmtree(workspace, ignore_errors=True)
