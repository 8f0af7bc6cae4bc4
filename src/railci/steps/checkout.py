# steps/checkout.py
from __future__ import annotations

import subprocess
from pathlib import Path

from ..errors import StepFailure
from ..git_facts import repo_root
from ..model import Step
from .base import StepContext, run_process


def _source_repo(ctx: StepContext, step: Step) -> str:
    """Repository to clone: settings.repo, else the repository railci runs from."""
    if ctx.settings.repo:
        return ctx.settings.repo
    try:
        return str(repo_root())
    except (subprocess.CalledProcessError, FileNotFoundError):
        raise StepFailure(
            job=ctx.job_name,
            step=step.name,
            cmd="git rev-parse --show-toplevel",
            exit_code=None,
            message="no repository configured and not inside a git repository (set RAILCI_REPO)",
        ) from None


def _target_ref(ctx: StepContext, step: Step) -> str:
    ref = step.params.get("ref")
    if ref:
        return str(ref)
    if step.params.get("pr_head"):
        return ctx.run.event.pr_head_sha
    return ctx.run.event.commit_sha


def run_step(ctx: StepContext, step: Step) -> None:
    """
    Clone the repository into the (empty) job workspace and check out the
    event's commit, optionally with submodules.
    """
    repo = _source_repo(ctx, step)
    workspace: Path = ctx.workspace
    env = ctx.step_env(step)

    run_process(ctx, step, ["git", "clone", "--no-checkout", repo, str(workspace)], cwd=workspace.parent, env=env)

    ref = _target_ref(ctx, step)
    if ref:
        run_process(ctx, step, ["git", "checkout", "--detach", ref], cwd=workspace, env=env)
    else:
        run_process(ctx, step, ["git", "checkout"], cwd=workspace, env=env)

    if step.params.get("submodules"):
        run_process(ctx, step, ["git", "submodule", "update", "--init", "--recursive"], cwd=workspace, env=env)
