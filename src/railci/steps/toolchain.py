# steps/toolchain.py
from __future__ import annotations

from ..model import Step
from .base import StepContext, run_process


def run_step(ctx: StepContext, step: Step) -> None:
    """
    Install a rustup toolchain, pin it for the workspace, and install any
    extra cargo tools the job needs (e.g. cargo-hack).
    """
    channel = str(step.params.get("channel") or "stable")
    components = [str(c) for c in step.params.get("components") or []]
    tools = [str(t) for t in step.params.get("tools") or []]
    cwd = ctx.workspace

    install = ["rustup", "toolchain", "install", channel, "--profile", "minimal", "--no-self-update"]
    for comp in components:
        install.extend(["--component", comp])
    run_process(ctx, step, install, cwd=cwd)

    run_process(ctx, step, ["rustup", "override", "set", channel, "--path", str(cwd)], cwd=cwd)

    for tool in tools:
        run_process(ctx, step, ["cargo", "install", tool, "--locked"], cwd=cwd)
