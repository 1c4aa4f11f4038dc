# git.py
# Small, focused wrapper around the Git CLI.
# This module centralizes all Git interactions so the rest of the codebase
# never needs to call subprocess("git ...") directly.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    This is the single low-level entry point for all Git operations in this file.

    Args:
        args: List of git arguments (e.g. ["status", "--porcelain"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError if git exits non-zero,
        FileNotFoundError if git is not installed.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        text=True,   # return output as str instead of bytes
        stderr=subprocess.PIPE,
    )
    return out.strip()


def is_repo(path: str | Path) -> bool:
    """True if path is inside a git work tree."""
    try:
        return _git(["rev-parse", "--is-inside-work-tree"], cwd=path) == "true"
    except (subprocess.CalledProcessError, FileNotFoundError, NotADirectoryError):
        return False


def repo_root(cwd: Optional[str | Path] = None) -> Path:
    """
    Return the absolute path to the root of the current Git repository.

    `git rev-parse --show-toplevel` prints the repo root directory
    regardless of where the command is run from inside the repo.
    """
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def head_sha(cwd: Optional[str | Path] = None) -> str:
    """
    Return the full SHA hash of the current HEAD commit.

    Used as the trigger sha of local runs, and as the commit checkout
    pins the job workspace to.
    """
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def is_dirty(cwd: Optional[str | Path] = None) -> bool:
    """
    Check whether the working tree has uncommitted changes
    (modified, staged or untracked files).
    """
    # `git status --porcelain` produces stable, machine-readable output.
    return _git(["status", "--porcelain"], cwd=cwd) != ""


def get_current_ref(cwd: Optional[str | Path] = None) -> str:
    """
    Return the current branch name, or the HEAD sha when detached.
    """
    branch = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    if branch == "HEAD":
        return head_sha(cwd)
    return branch


def get_remote_url(remote: str = "origin", cwd: Optional[str | Path] = None) -> str:
    return _git(["remote", "get-url", remote], cwd=cwd)


def clone(
    source: str | Path,
    dest: str | Path,
    *,
    sha: Optional[str] = None,
    submodules: bool = False,
) -> Path:
    """
    Clone source into dest (which may exist but must be empty), optionally
    pin it to a commit and pull submodules recursively.

    Raises:
        RuntimeError: If any git operation fails
    """
    dest_p = Path(dest)
    try:
        _git(["clone", "--quiet", str(source), str(dest_p)])
        if sha:
            _git(["checkout", "--quiet", sha], cwd=dest_p)
        if submodules:
            _git(["submodule", "update", "--init", "--recursive", "--quiet"], cwd=dest_p)
    except subprocess.CalledProcessError as e:
        raise RuntimeError(f"git {e.cmd[1]} failed: {(e.stderr or '').strip()}") from e
    except FileNotFoundError:
        raise RuntimeError("git command not found. Please install Git.")
    return dest_p
