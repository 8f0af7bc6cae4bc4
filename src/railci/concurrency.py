# concurrency.py
from __future__ import annotations

import threading
from typing import Dict, Iterable, List, Optional

from .model import Run


class ConcurrencyRegistry:
    """
    Process-wide table of concurrency groups: key -> the run currently
    holding the group.

    At most one Pending/Running run exists per key. Every read-modify-write
    happens under `_lock`, so admission and cancellation of the previous
    holder are a single step.
    """

    def __init__(self, cancel_in_progress: bool = True):
        self.cancel_in_progress = cancel_in_progress
        self._holders: Dict[str, Run] = {}
        self._lock = threading.Lock()

    def admitted(self, run: Run) -> Optional[Run]:
        """
        Register `run` as the holder of its group.

        Returns the run it superseded (now Cancelled), if any.
        """
        with self._lock:
            previous = self._holders.get(run.concurrency_key)
            superseded = None
            if previous is not None and previous is not run and previous.status.active:
                if self.cancel_in_progress:
                    previous.cancel(reason=f"superseded by run {run.id}")
                    superseded = previous
            self._holders[run.concurrency_key] = run
            return superseded

    def release(self, run: Run) -> None:
        """Drop `run` from its group once it is terminal, unless it was replaced."""
        with self._lock:
            if self._holders.get(run.concurrency_key) is run:
                del self._holders[run.concurrency_key]

    def holder(self, key: str) -> Optional[Run]:
        with self._lock:
            return self._holders.get(key)

    def active(self) -> List[Run]:
        with self._lock:
            return [r for r in self._holders.values() if r.status.active]

    def rehydrate(self, runs: Iterable[Run]) -> List[Run]:
        """
        Rebuild holders from persisted active runs, oldest first.

        A later run for the same key supersedes an earlier one, exactly as if
        they had been admitted in that order. Returns the runs cancelled while
        doing so.
        """
        cancelled: List[Run] = []
        for run in sorted(runs, key=lambda r: r.created_at):
            if not run.status.active:
                continue
            superseded = self.admitted(run)
            if superseded is not None:
                cancelled.append(superseded)
        return cancelled
