# steps/__init__.py
from __future__ import annotations

from typing import Callable, Dict

from ..model import Step, StepKind
from . import cache_restore, checkout, command, service, toolchain
from .base import StepContext, run_process

StepHandler = Callable[[StepContext, Step], None]

# Adding a step kind means adding a handler here; the executor never changes.
DEFAULT_HANDLERS: Dict[StepKind, StepHandler] = {
    StepKind.CHECKOUT: checkout.run_step,
    StepKind.SETUP_TOOLCHAIN: toolchain.run_step,
    StepKind.CACHE_RESTORE: cache_restore.run_step,
    StepKind.RUN_COMMAND: command.run_step,
    StepKind.EXTERNAL_SERVICE: service.run_step,
}

__all__ = ["DEFAULT_HANDLERS", "StepContext", "StepHandler", "run_process"]
