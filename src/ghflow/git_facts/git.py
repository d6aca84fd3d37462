# git.py
# Small wrapper around the Git CLI.
# Event construction reads repository facts only through this module.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Optional


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Raises subprocess.CalledProcessError if git exits non-zero and
    FileNotFoundError if git is not installed.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=None if cwd is None else str(cwd),
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def _lines(out: str) -> List[str]:
    return out.splitlines() if out else []


def repo_root(cwd: Optional[str | Path] = None) -> Path:
    """Absolute path to the root of the repository containing `cwd`."""
    return Path(_git(["rev-parse", "--show-toplevel"], cwd))


def head_sha(cwd: Optional[str | Path] = None) -> str:
    return _git(["rev-parse", "HEAD"], cwd)


def current_branch(cwd: Optional[str | Path] = None) -> Optional[str]:
    """Branch name of HEAD, or None when HEAD is detached."""
    name = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd)
    return None if name == "HEAD" else name


def dirty_files(cwd: Optional[str | Path] = None) -> List[str]:
    """Unstaged, staged and untracked paths, relative to the repo root."""
    files = set()
    files.update(_lines(_git(["diff", "--name-only"], cwd)))
    files.update(_lines(_git(["diff", "--name-only", "--cached"], cwd)))
    files.update(_lines(_git(["ls-files", "--others", "--exclude-standard"], cwd)))
    return sorted(files)


def tracked_files(cwd: Optional[str | Path] = None) -> List[str]:
    return _lines(_git(["ls-files"], cwd))


def changed_files(base: str, head: str = "HEAD", cwd: Optional[str | Path] = None) -> List[str]:
    """
    Files changed between two refs, relative to the repo root.

    Typical usage:
        base = merge_base("origin/main")
        files = changed_files(base)
    """
    return _lines(_git(["diff", "--name-only", f"{base}..{head}"], cwd))


def merge_base(with_ref: str = "origin/main", cwd: Optional[str | Path] = None) -> str:
    """Common ancestor of HEAD and `with_ref`: where a pull request branch diverged."""
    return _git(["merge-base", "HEAD", with_ref], cwd)
