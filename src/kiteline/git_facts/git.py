# git.py
# Small, focused wrapper around the Git CLI.
# The CLI only needs a few facts from git: where the repo root is and
# which remote/ref a submitted run should point the executors at.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Raises subprocess.CalledProcessError when git exits non-zero and
    FileNotFoundError when git is not installed; callers decide what
    that means for them.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def repo_root(cwd: Optional[str] = None) -> Path:
    """Absolute path to the root of the current Git repository."""
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def get_remote_url(remote: str = "origin", cwd: Optional[str] = None) -> str:
    """URL of the given remote, e.g. git@github.com:org/repo.git."""
    return _git(["remote", "get-url", remote], cwd=cwd)


def get_current_ref(cwd: Optional[str] = None) -> str:
    """
    Current branch name, or the HEAD commit SHA when detached.

    `rev-parse --abbrev-ref HEAD` prints the literal "HEAD" on a detached
    checkout, which is useless to an executor on another machine.
    """
    ref = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    if ref == "HEAD":
        return _git(["rev-parse", "HEAD"], cwd=cwd)
    return ref
