# steps/cache_restore.py
from __future__ import annotations

from ..cache import CacheStore, compute_cache_key
from ..model import Step
from .base import StepContext


def run_step(ctx: StepContext, step: Step) -> None:
    """
    Restore cached build directories into the workspace and register the
    matching save for the end of the job (on success, or always with
    `cache_on_failure`).
    """
    dirs = [str(d) for d in step.params.get("dirs") or []]
    if not dirs:
        ctx.console.print_info(f"[{ctx.job_name}] cache: no dirs specified")
        return

    inputs = [str(i) for i in step.params.get("inputs") or []]
    cache_on_failure = bool(step.params.get("cache_on_failure", False))
    keep = int(step.params.get("keep", 3))

    job = ctx.inst.job
    store = CacheStore(ctx.settings.cache_dir)
    key, manifest = compute_cache_key(
        job.name,
        workspace=ctx.workspace,
        dirs=dirs,
        inputs=inputs,
        runs_on=job.runs_on,
        env=job.env,
    )
    hit = store.restore(job.name, key, manifest, workspace=ctx.workspace)
    ctx.console.print_info(f"[{ctx.job_name}] cache: {hit.reason}")

    def save(succeeded: bool) -> None:
        if not succeeded and not cache_on_failure:
            return
        if hit.hit:
            # Same key means same inputs; the artifact is already current.
            return
        store.save(job.name, key, manifest, dirs, workspace=ctx.workspace)
        store.prune(job.name, keep=keep)
        ctx.console.print_info(f"[{ctx.job_name}] cache: saved ({key[:12]}...)")

    ctx.post_actions.append(save)
