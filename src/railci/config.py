# config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Mapping, Optional


DEFAULT_STATE_DIR = ".railci"


def parse_runners(spec: str) -> Dict[str, int]:
    """
    Parse "label=slots,label2=slots" into a mapping.
    A bare label means one slot. "*" matches any runs_on label.
    """
    runners: Dict[str, int] = {}
    for part in spec.split(","):
        part = part.strip()
        if not part:
            continue
        label, _, slots = part.partition("=")
        label = label.strip()
        try:
            count = int(slots) if slots.strip() else 1
        except ValueError:
            raise ValueError(f"Invalid runner slot count in {part!r}") from None
        if count < 1:
            raise ValueError(f"Runner {label!r} must have at least one slot")
        runners[label] = count
    return runners


@dataclass(frozen=True)
class Settings:
    database_url: str = f"sqlite:///{DEFAULT_STATE_DIR}/history.db"
    work_dir: Path = Path(DEFAULT_STATE_DIR) / "work"
    cache_dir: Path = Path(DEFAULT_STATE_DIR) / "cache"
    log_dir: Path = Path(DEFAULT_STATE_DIR) / "logs"
    tools_dir: Path = Path(DEFAULT_STATE_DIR) / "tools"
    runners: Mapping[str, int] = field(default_factory=lambda: {"*": max(1, (os.cpu_count() or 2) - 1)})
    provision_wait: float = 300.0
    cancel_grace: float = 10.0
    poll_interval: float = 0.1
    max_workers: Optional[int] = None
    repo: Optional[str] = None
    workflow: Optional[str] = None
    keep_workspaces: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        base = cls()
        state = Path(env.get("RAILCI_STATE_DIR", DEFAULT_STATE_DIR))

        workers = env.get("RAILCI_MAX_WORKERS")
        return cls(
            database_url=env.get("RAILCI_DATABASE_URL", f"sqlite:///{state}/history.db"),
            work_dir=Path(env.get("RAILCI_WORK_DIR", state / "work")),
            cache_dir=Path(env.get("RAILCI_CACHE_DIR", state / "cache")),
            log_dir=Path(env.get("RAILCI_LOG_DIR", state / "logs")),
            tools_dir=Path(env.get("RAILCI_TOOLS_DIR", state / "tools")),
            runners=parse_runners(env["RAILCI_RUNNERS"]) if env.get("RAILCI_RUNNERS") else base.runners,
            provision_wait=float(env.get("RAILCI_PROVISION_WAIT", base.provision_wait)),
            cancel_grace=float(env.get("RAILCI_CANCEL_GRACE", base.cancel_grace)),
            max_workers=int(workers) if workers else None,
            repo=env.get("RAILCI_REPO") or None,
            workflow=env.get("RAILCI_WORKFLOW") or None,
            keep_workspaces=env.get("RAILCI_KEEP_WORKSPACES", "") in ("1", "true", "yes"),
        )

    def with_overrides(self, **overrides) -> "Settings":
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
