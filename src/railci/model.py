# model.py
from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------

class EventType(str, Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"


@dataclass(frozen=True)
class Event:
    """
    A push / pull_request record delivered by the hosting platform.

    For pushes `target_ref` is the pushed branch. For pull requests it is the
    base branch the PR targets, and `head_ref` is the PR's source branch.
    """
    type: EventType
    target_ref: str
    commit_sha: str
    head_ref: Optional[str] = None
    head_sha: Optional[str] = None

    @property
    def ref(self) -> str:
        if self.type is EventType.PULL_REQUEST:
            # never the base branch, or the PR would join its concurrency group
            return self.head_ref or f"pull/{self.head_sha or self.commit_sha}"
        return self.target_ref

    @property
    def pr_head_sha(self) -> str:
        if self.type is EventType.PULL_REQUEST and self.head_sha:
            return self.head_sha
        return self.commit_sha


# ---------------------------------------------------------------------
# Templates (static, authored in workflow files)
# ---------------------------------------------------------------------

class StepKind(str, Enum):
    CHECKOUT = "checkout"
    SETUP_TOOLCHAIN = "setup-toolchain"
    CACHE_RESTORE = "cache-restore"
    RUN_COMMAND = "run-command"
    EXTERNAL_SERVICE = "external-service"


SETUP_KINDS = frozenset({StepKind.CHECKOUT, StepKind.SETUP_TOOLCHAIN, StepKind.CACHE_RESTORE})


@dataclass(frozen=True)
class Step:
    """A single action inside a CI job."""
    name: str
    kind: StepKind = StepKind.RUN_COMMAND
    run: str = ""
    params: Mapping[str, Any] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)
    cwd: str | None = None
    continue_on_error: bool = False

    @property
    def is_setup(self) -> bool:
        return self.kind in SETUP_KINDS


DEFAULT_TIMEOUT_MINUTES = 360.0


@dataclass(frozen=True)
class Job:
    """
    A CI job template: ordered steps plus the environment it needs.

    `runs_on` is the runner label the job must be bound to. `needs` lists jobs
    that must succeed before this one starts; it is empty for every job of the
    bundled pipeline.
    """
    name: str
    steps: Tuple[Step, ...]
    runs_on: str = "ubuntu-latest"
    timeout_minutes: float = DEFAULT_TIMEOUT_MINUTES
    env: Mapping[str, str] = field(default_factory=dict)
    needs: Tuple[str, ...] = ()
    title: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.title or self.name

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_minutes * 60.0


@dataclass(frozen=True)
class Workflow:
    name: str
    jobs: Tuple[Job, ...]
    branches: Tuple[str, ...] = ("main",)
    env: Mapping[str, str] = field(default_factory=dict)
    cancel_in_progress: bool = True

    def job(self, name: str) -> Job:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)


# ---------------------------------------------------------------------
# Runtime records
# ---------------------------------------------------------------------

class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"

    @property
    def terminal(self) -> bool:
        return self not in (JobStatus.PENDING, JobStatus.RUNNING)


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    CANCELLED = "cancelled"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def active(self) -> bool:
        return self in (RunStatus.PENDING, RunStatus.RUNNING)

    @property
    def terminal(self) -> bool:
        return not self.active


@dataclass
class StepResult:
    name: str
    kind: StepKind
    outcome: str  # "ok" | "failed" | "ignored" | "skipped"
    exit_code: Optional[int] = None
    output: str = ""
    error: Optional[str] = None


@dataclass
class JobInstance:
    job: Job
    status: JobStatus = JobStatus.PENDING
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    step_cursor: int = 0
    reason: Optional[str] = None
    results: List[StepResult] = field(default_factory=list)
    environment: Optional[str] = None
    cancel_requested: threading.Event = field(default_factory=threading.Event, repr=False, compare=False)

    @property
    def name(self) -> str:
        return self.job.name

    @property
    def cancelled(self) -> bool:
        return self.cancel_requested.is_set()


@dataclass
class Run:
    """
    One execution of a workflow for one admitted event.

    All status changes go through the methods below so they happen under the
    run's lock; terminal statuses never change again.
    """
    workflow: str
    event: Event
    concurrency_key: str
    jobs: Dict[str, JobInstance]
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: RunStatus = RunStatus.PENDING
    created_at: datetime = field(default_factory=now_utc)
    ended_at: Optional[datetime] = None
    finished: threading.Event = field(default_factory=threading.Event, repr=False, compare=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    @property
    def ref(self) -> str:
        return self.event.ref

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def mark_running(self) -> bool:
        with self._lock:
            if self.status is not RunStatus.PENDING:
                return False
            self.status = RunStatus.RUNNING
            return True

    def set_job_status(self, name: str, status: JobStatus, reason: str | None = None) -> bool:
        """Move one JobInstance to `status`. Returns False if it was already terminal."""
        with self._lock:
            inst = self.jobs[name]
            if inst.status.terminal:
                return False
            if status is JobStatus.RUNNING:
                if self.status is RunStatus.CANCELLED or inst.cancelled:
                    return False
                inst.started_at = now_utc()
            elif status.terminal:
                inst.ended_at = now_utc()
                if inst.started_at is None:
                    inst.started_at = inst.ended_at
            inst.status = status
            if reason is not None:
                inst.reason = reason
            return True

    def cancel(self, reason: str = "superseded") -> bool:
        """
        Cancel an active run: Pending jobs end at once, Running jobs are
        signalled and stop at their next step boundary.
        """
        with self._lock:
            if not self.status.active:
                return False
            self.status = RunStatus.CANCELLED
            for inst in self.jobs.values():
                inst.cancel_requested.set()
                if inst.status is JobStatus.PENDING:
                    self.set_job_status(inst.name, JobStatus.CANCELLED, reason)
            return True

    def all_jobs_terminal(self) -> bool:
        with self._lock:
            return all(inst.status.terminal for inst in self.jobs.values())

    def wait(self, timeout: float | None = None) -> bool:
        return self.finished.wait(timeout)
