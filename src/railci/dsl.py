# src/railci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .model import DEFAULT_TIMEOUT_MINUTES, Job, Step, StepKind, Workflow


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    env: Optional[Dict[str, Any]] = None,
    continue_on_error: bool = False,
) -> Step:
    """Create a shell (run-command) step."""
    return Step(
        name=name,
        kind=StepKind.RUN_COMMAND,
        run=cmd,
        cwd=cwd,
        env={k: str(v) for k, v in (env or {}).items()},
        continue_on_error=continue_on_error,
    )


def checkout(
    name: str = "Checkout code",
    *,
    submodules: bool = False,
    pr_head: bool = False,
    ref: str | None = None,
) -> Step:
    """
    Check out the event's commit into the job workspace.

    `pr_head` checks out the pull request's head commit instead of the merge
    commit; `ref` pins an explicit commit or branch.
    """
    params: Dict[str, Any] = {"submodules": submodules, "pr_head": pr_head}
    if ref is not None:
        params["ref"] = ref
    return Step(name=name, kind=StepKind.CHECKOUT, params=params)


def toolchain(
    name: str = "Install Rust",
    *,
    channel: str = "stable",
    components: Sequence[str] = (),
    tools: Sequence[str] = (),
) -> Step:
    """Install a rustup toolchain (plus components / cargo tools) for the job."""
    return Step(
        name=name,
        kind=StepKind.SETUP_TOOLCHAIN,
        params={"channel": channel, "components": list(components), "tools": list(tools)},
    )


def cache(
    name: str = "Restore cache",
    *,
    dirs: Sequence[str] = ("target",),
    inputs: Sequence[str] = ("Cargo.lock", "**/Cargo.toml", "rust-toolchain*"),
    cache_on_failure: bool = False,
    keep: int = 3,
) -> Step:
    return Step(
        name=name,
        kind=StepKind.CACHE_RESTORE,
        params={
            "dirs": list(dirs),
            "inputs": list(inputs),
            "cache_on_failure": cache_on_failure,
            "keep": keep,
        },
    )


def rollup_node(
    name: str = "Run era-test-node",
    *,
    mode: str = "fork",
    network: str = "mainnet",
    log: str = "info",
    log_file_path: str = "era_test_node.log",
    target: str = "x86_64-unknown-linux-gnu",
    release_tag: str = "v0.1.0-alpha.25",
    port: int = 8011,
    binary: str | None = None,
    ready_timeout: float | None = None,
) -> Step:
    """Start a local rollup test node for the rest of the job."""
    params: Dict[str, Any] = {
        "mode": mode,
        "network": network,
        "log": log,
        "log_file_path": log_file_path,
        "target": target,
        "release_tag": release_tag,
        "port": port,
    }
    if binary is not None:
        params["binary"] = binary
    if ready_timeout is not None:
        params["ready_timeout"] = ready_timeout
    return Step(name=name, kind=StepKind.EXTERNAL_SERVICE, params=params)


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    title: str | None = None,
    runs_on: str = "ubuntu-latest",
    timeout_minutes: float = DEFAULT_TIMEOUT_MINUTES,
    needs: Optional[List[str]] = None,
    env: Optional[Dict[str, Any]] = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")
    if timeout_minutes <= 0:
        raise ValueError(f"job({name!r}) timeout_minutes must be positive")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return Job(
        name=name,
        steps=tuple(steps_final),
        runs_on=runs_on,
        timeout_minutes=timeout_minutes,
        # force values to str for env compatibility
        env={k: str(v) for k, v in (env or {}).items()},
        needs=tuple(needs or ()),
        title=title,
    )


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    Minimal matrix expander.

    Example:
        matrix("toolchain", ["stable", "nightly"]).jobs(
            lambda v: job(f"check-{v}", toolchain(channel=v), sh(...))
        )
    """
    def __init__(self, key: str, values: Iterable[Any]):
        self.key = key
        self.values = list(values)

    def jobs(self, builder: Callable[[Any], Job]) -> List[Job]:
        return [builder(v) for v in self.values]


def matrix(key: str, values: Iterable[Any]) -> Matrix:
    return Matrix(key, values)


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(
    name: str,
    *jobs: Job | List[Job],
    branches: Sequence[str] = ("main",),
    env: Optional[Dict[str, Any]] = None,
    cancel_in_progress: bool = True,
) -> Workflow:
    """
    Workflow definition helper. Matrix expansions may be passed as lists.

        from railci import wf, job, sh

        def workflow():
            return wf(
                "test",
                job(...),
                job(...),
            )
    """
    flat: List[Job] = []
    for j in jobs:
        if isinstance(j, list):
            flat.extend(j)
        else:
            flat.append(j)
    return Workflow(
        name=name,
        jobs=tuple(flat),
        branches=tuple(branches),
        env={k: str(v) for k, v in (env or {}).items()},
        cancel_in_progress=cancel_in_progress,
    )
