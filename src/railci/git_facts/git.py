# git.py
# Small, focused wrapper around the Git CLI.
# The CLI and the checkout step go through here instead of calling
# subprocess("git ...") themselves.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Args:
        args: List of git arguments (e.g. ["status", "--porcelain"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError: git exited non-zero.
        FileNotFoundError: git is not installed.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def repo_root(cwd: Optional[str | Path] = None) -> Path:
    """Absolute path to the root of the enclosing Git repository."""
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def head_sha(cwd: Optional[str | Path] = None) -> str:
    """Full SHA of the current HEAD commit."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[str | Path] = None) -> str:
    """
    Name of the checked-out branch.

    Falls back to the HEAD SHA on a detached HEAD, since that is the only
    stable name left.
    """
    branch = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    if branch == "HEAD":
        return head_sha(cwd=cwd)
    return branch


def is_dirty(cwd: Optional[str | Path] = None) -> bool:
    """True if the working tree has modified, staged or untracked files."""
    return _git(["status", "--porcelain"], cwd=cwd) != ""


def get_remote_url(remote: str = "origin", cwd: Optional[str | Path] = None) -> str:
    return _git(["remote", "get-url", remote], cwd=cwd)
