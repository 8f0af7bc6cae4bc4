from .dsl import cache, checkout, job, matrix, rollup_node, sh, toolchain, wf
from .loader import load_workflow
from .model import Event, EventType, Job, JobStatus, Run, RunStatus, Step, StepKind, Workflow
from .orchestrator import Orchestrator
from .trigger import Rejected, admit

__all__ = [
    "cache",
    "checkout",
    "job",
    "matrix",
    "rollup_node",
    "sh",
    "toolchain",
    "wf",
    "load_workflow",
    "Event",
    "EventType",
    "Job",
    "JobStatus",
    "Run",
    "RunStatus",
    "Step",
    "StepKind",
    "Workflow",
    "Orchestrator",
    "Rejected",
    "admit",
]
