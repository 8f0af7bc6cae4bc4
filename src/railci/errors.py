# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - API responses
      - debugging without full tracebacks
    """
    kind: str
    job: str
    step: str | None
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}", f"job={self.job}"]
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass
class StepFailure(Exception):
    job: str
    step: str
    cmd: str
    exit_code: int | None
    output: str = ""
    message: str | None = None

    def __str__(self) -> str:
        if self.message:
            return f"[{self.job}] step '{self.step}' failed: {self.message}"
        return f"[{self.job}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


@dataclass
class EnvironmentUnavailable(Exception):
    job: str
    runs_on: str
    reason: str

    def __str__(self) -> str:
        return f"[{self.job}] no environment for '{self.runs_on}': {self.reason}"


@dataclass
class JobTimeout(Exception):
    job: str
    timeout_minutes: float
    step: str | None = None

    def __str__(self) -> str:
        where = f" during step '{self.step}'" if self.step else ""
        return f"[{self.job}] exceeded timeout of {self.timeout_minutes:g} minute(s){where}"


@dataclass
class JobCancelled(Exception):
    job: str
    step: str | None = None

    def __str__(self) -> str:
        where = f" during step '{self.step}'" if self.step else ""
        return f"[{self.job}] cancelled{where}"


class ServiceError(Exception):
    """Raised when an external service cannot be started or reached."""


class WorkflowError(ValueError):
    """Raised for invalid workflow definitions (duplicates, missing needs, cycles)."""


TOOL_HINTS = {
    "git": "Install Git or fix PATH.",
    "cargo": "Install Rust via rustup (https://rustup.rs) or fix PATH.",
    "rustup": "Install rustup (https://rustup.rs) or fix PATH.",
    "forge": "Run ./install-foundry-zksync or fix PATH.",
    "era_test_node": "Set RAILCI_TOOLS_DIR to a directory holding the test node, or allow the download.",
}
