# aggregate.py
from __future__ import annotations

from .model import JobStatus, Run, RunStatus, now_utc


FAILED_STATES = (JobStatus.FAILED, JobStatus.TIMED_OUT)


def finalize(run: Run) -> RunStatus:
    """
    Combine per-job terminal states into the run's status.

    Succeeded only if every job Succeeded. Failed if any job Failed or timed
    out. A run the concurrency controller already cancelled stays Cancelled,
    and a Failed run never reverts.
    """
    with run.lock:
        if run.status.terminal:
            if run.ended_at is None:
                run.ended_at = now_utc()
            return run.status

        statuses = [inst.status for inst in run.jobs.values()]
        if any(s in FAILED_STATES for s in statuses):
            run.status = RunStatus.FAILED
        elif all(s is JobStatus.SUCCEEDED for s in statuses):
            run.status = RunStatus.SUCCEEDED
        elif any(s is JobStatus.CANCELLED for s in statuses):
            run.status = RunStatus.CANCELLED
        else:
            run.status = RunStatus.FAILED
        run.ended_at = now_utc()
        return run.status


def passed(run: Run) -> bool:
    """The single pass/fail bit surfaced to the hosting platform."""
    return run.status is RunStatus.SUCCEEDED
