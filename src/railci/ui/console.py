"""Console output formatting utilities for railci."""

from __future__ import annotations

import sys
import threading
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from railci.model import Run


class Console:
    """Centralized console output formatting.

    Jobs run on worker threads, so every write takes a lock to keep lines
    from interleaving.
    """

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}", "-" * len(title))

    def print_run_started(self, run: "Run", job_count: int) -> None:
        """Print run start information."""
        self._out(
            "\nRUN STARTED",
            f"Run ID: {run.id}",
            f"Workflow: {run.workflow}",
            f"Event: {run.event.type.value} ({run.event.commit_sha[:12] or 'HEAD'})",
            f"Ref: {run.ref}",
            f"Concurrency group: {run.concurrency_key}",
            f"Jobs: {job_count}",
            "",
        )

    def print_rejected(self, reason: str) -> None:
        """Print a rejected (not admitted) event."""
        self._out(f"\nEVENT IGNORED: {reason}")

    def print_superseded(self, run_id: str, by_run_id: str) -> None:
        self._out(f"\nRUN CANCELLED: {run_id} (superseded by {by_run_id})")

    def print_job_start(self, name: str, label: str) -> None:
        """Print job start message."""
        self._out(f"[{name}] JOB STARTED on {label}")

    def print_step(self, job: str, name: str) -> None:
        """Print step start message."""
        self._out(f"[{job}] STEP: {name}")

    def print_step_ignored(self, job: str, name: str, reason: str) -> None:
        self._out(f"[{job}] STEP FAILED (continue-on-error): {name}")
        if self.debug:
            self._out(f"[{job}] Error details: {reason}")

    def print_job_finished(self, name: str, status: str, reason: Optional[str] = None) -> None:
        """
        Print the job's terminal status.

        Args:
            name: Job name
            status: Terminal job status
            reason: Failure reason/error message, if any
        """
        self._out(f"[{name}] STATUS: {status}")
        if reason:
            if self.debug:
                self._out(f"[{name}] Error details: {reason}")
            else:
                # Show first line of error for non-debug mode
                self._out(f"[{name}] Error: {reason.splitlines()[0]}")

    def print_results(self, run: "Run") -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, f"RESULTS ({run.id})", "=" * 40]
        for inst in run.jobs.values():
            lines.append(f"  {inst.job.display_name}: {inst.status.value.upper()}")
        lines.append(f"RUN: {run.status.value.upper()}")
        self._out(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        for detail in details or []:
            lines.append(f"  {detail}")
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_warning(self, message: str) -> None:
        self._out(f"WARNING: {message}", err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
