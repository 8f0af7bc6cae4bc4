# loader.py
from __future__ import annotations

import importlib
import runpy
from pathlib import Path
from typing import Any, Dict, List, Union

from .errors import WorkflowError
from .model import Job, Workflow

DEFAULT_WORKFLOW_FILE = "railci_workflow.py"


def find_workflow_files(root: Union[str, Path] = ".") -> List[Path]:
    """
    Find workflow files in `root`: railci_workflow.py first, then any
    other *_workflow.py.
    """
    root = Path(root)
    found: List[Path] = []

    default = root / DEFAULT_WORKFLOW_FILE
    if default.exists():
        found.append(default)
    for path in sorted(root.glob("*_workflow.py")):
        if path != default:
            found.append(path)
    return found


def _coerce(value: Any, default_name: str) -> Workflow:
    if isinstance(value, Workflow):
        return value
    if isinstance(value, (list, tuple)) and value and all(isinstance(j, Job) for j in value):
        return Workflow(name=default_name, jobs=tuple(value))
    raise WorkflowError(
        "Workflow must return/define a Workflow or a List[Job]. "
        "Define workflow() -> Workflow, WORKFLOW = wf(...) or JOBS = [Job, ...]."
    )


def _from_namespace(ns: Dict[str, Any], default_name: str) -> Workflow:
    fn = ns.get("workflow")
    if callable(fn):
        try:
            value = fn()
        except TypeError as e:
            if "positional argument" in str(e):
                raise WorkflowError(
                    "Your workflow() is being called with arguments (name collision with the helper). "
                    "Use the 'wf' helper instead: `from railci import wf, job, sh` then "
                    "`def workflow(): return wf(\"test\", job(...), job(...))`"
                ) from e
            raise
        return _coerce(value, default_name)
    if "WORKFLOW" in ns:
        return _coerce(ns["WORKFLOW"], default_name)
    if "JOBS" in ns:
        return _coerce(ns["JOBS"], default_name)
    raise WorkflowError(f"{default_name}: no workflow(), WORKFLOW or JOBS defined")


def load_workflow(target: Union[str, Path]) -> Workflow:
    """
    Load a workflow from a python file path or a dotted module name.

    The file/module must define one of:
      - workflow() -> Workflow | List[Job]
      - WORKFLOW = Workflow(...)
      - JOBS = [Job, ...]

    A bare job list becomes a workflow named after the file.
    """
    text = str(target)
    path = Path(text).expanduser()
    if path.suffix == ".py" or path.exists():
        wf_path = path.resolve()
        if not wf_path.exists():
            raise FileNotFoundError(f"Workflow file not found: {wf_path}")
        if wf_path.suffix != ".py":
            raise WorkflowError(f"Workflow must be a .py file, got: {wf_path.name}")
        ns = runpy.run_path(str(wf_path), run_name=f"railci_workflow_{wf_path.stem}")
        return _from_namespace(ns, wf_path.stem)

    try:
        module = importlib.import_module(text)
    except ModuleNotFoundError as e:
        raise WorkflowError(f"Workflow not found: {text} (neither a file nor an importable module)") from e
    return _from_namespace(vars(module), text.rsplit(".", 1)[-1])
