from __future__ import annotations

import socket
import time

import pytest

from railci.config import Settings
from railci.model import Event, EventType, StepKind
from railci.orchestrator import Orchestrator
from railci.store import RunStore
from railci.ui.console import Console, set_console


@pytest.fixture(autouse=True)
def console():
    c = Console(debug=True)
    set_console(c)
    return c


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path}/state/history.db",
        work_dir=tmp_path / "work",
        cache_dir=tmp_path / "cache",
        log_dir=tmp_path / "logs",
        tools_dir=tmp_path / "tools",
        runners={"*": 16},
        provision_wait=5.0,
        cancel_grace=1.0,
        poll_interval=0.02,
        max_workers=32,
    )


@pytest.fixture
def make_orchestrator(settings, console):
    created = []

    def factory(workflow, *, with_store=False, handlers=None, settings_override=None):
        s = settings_override or settings
        store = RunStore(s.database_url) if with_store else None
        orch = Orchestrator(workflow, s, store=store, handlers=handlers, console=console)
        created.append(orch)
        return orch

    yield factory
    for orch in created:
        for run in orch.runs():
            orch.cancel(run.id)
        orch.shutdown(wait=True)


def push(ref="main", sha="abc123"):
    return Event(EventType.PUSH, target_ref=ref, commit_sha=sha)


def pull_request(head="feature", base="main", sha="def456"):
    return Event(EventType.PULL_REQUEST, target_ref=base, commit_sha=sha, head_ref=head, head_sha=sha)


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def wait_until(predicate, timeout=5.0, interval=0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def fake_handlers(handler):
    """Route every step kind to `handler` (for pipelines whose tools are not installed)."""
    return {kind: handler for kind in StepKind}
