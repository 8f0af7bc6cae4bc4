# railci_workflow.py
# Default workflow picked up by `railci run` / `railci plan` in this directory.

from railci.pipelines.zksync import workflow

__all__ = ["workflow"]
