# process.py
from __future__ import annotations

import os
import signal
import subprocess


def terminate_process(proc: subprocess.Popen, grace: float) -> None:
    """SIGTERM the process group, then SIGKILL it if it is still alive after `grace`."""
    if proc.poll() is not None:
        return
    try:
        os.killpg(proc.pid, signal.SIGTERM)
    except ProcessLookupError:
        return
    try:
        proc.wait(timeout=grace)
    except subprocess.TimeoutExpired:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            return
        proc.wait()
