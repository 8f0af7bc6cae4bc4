# trigger.py
from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatch
from typing import Union

from .model import Event, JobInstance, Run, Workflow


@dataclass(frozen=True)
class Rejected:
    """An event the branch filter did not admit. No Run exists for it."""
    event: Event
    reason: str


def normalize_ref(ref: str) -> str:
    """'refs/heads/main' -> 'main'. Other refs are returned unchanged."""
    prefix = "refs/heads/"
    return ref[len(prefix):] if ref.startswith(prefix) else ref


def concurrency_key(workflow: str, ref: str) -> str:
    return f"{workflow}-{normalize_ref(ref)}"


def branch_matches(ref: str, branches: tuple[str, ...]) -> bool:
    branch = normalize_ref(ref)
    return any(fnmatch(branch, pattern) for pattern in branches)


def admit(event: Event, workflow: Workflow) -> Union[Run, Rejected]:
    """
    Decide whether `event` starts a run of `workflow`.

    Push events are filtered on the pushed branch, pull_request events on the
    branch the PR targets. Admitted runs are Pending and own one JobInstance
    per job template.
    """
    if not branch_matches(event.target_ref, workflow.branches):
        return Rejected(
            event=event,
            reason=f"{event.type.value} to '{normalize_ref(event.target_ref)}' "
                   f"does not match branches {list(workflow.branches)}",
        )

    return Run(
        workflow=workflow.name,
        event=event,
        concurrency_key=concurrency_key(workflow.name, event.ref),
        jobs={j.name: JobInstance(job=j) for j in workflow.jobs},
    )
