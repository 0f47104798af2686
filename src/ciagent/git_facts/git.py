# git.py
# Small, focused wrapper around the Git CLI.
# This module centralizes all Git interactions so the rest of the codebase
# never needs to call subprocess("git ...") directly.

from __future__ import annotations

import subprocess
from typing import List, Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Args:
        args: List of git arguments (e.g. ["rev-parse", "HEAD"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError: git exited non-zero; `stderr` is captured.
        OSError: git couldn't be run, e.g. it isn't on PATH.
    """
    out = subprocess.run(
        ["git", *args],
        cwd=cwd,
        text=True,
        capture_output=True,
        check=True,
    )
    return out.stdout.strip()


def _lines(out: str) -> List[str]:
    return [line for line in out.splitlines() if line.strip()]


def rev_parse(ref: str, cwd: Optional[str] = None) -> str:
    """Resolve a ref (branch, tag, short sha) to a full commit SHA."""
    return _git(["rev-parse", ref], cwd=cwd)


def merge_base(base: str, head: str = "HEAD", cwd: Optional[str] = None) -> str:
    """
    Return the merge-base (common ancestor) of two refs.

    This is the point the current branch diverged from `base`, and the
    canonical starting point for working out what changed on a branch.
    """
    return _git(["merge-base", base, head], cwd=cwd)


def diff_name_only(base: str, cwd: Optional[str] = None) -> List[str]:
    """Files changed between `base` and the working tree's HEAD."""
    return _lines(_git(["diff", "--name-only", base], cwd=cwd))


def first_parent_changed_files(cwd: Optional[str] = None) -> List[str]:
    """
    Files changed by the most recent commit, relative to its first parent.

    `--first-parent` turns a merge commit into the changes it brought onto
    the branch it was merged into.
    """
    return _lines(_git(["log", "--first-parent", "-1", "--name-only", "--pretty=format:"], cwd=cwd))


def fetch(remote: str, ref: str, cwd: Optional[str] = None) -> None:
    _git(["fetch", remote, ref], cwd=cwd)
