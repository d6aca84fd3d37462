# events.py
from __future__ import annotations

import subprocess
from dataclasses import dataclass
from fnmatch import fnmatch
from pathlib import Path
from typing import List, Optional

from .git_facts import git
from .model import Pipeline, Trigger


@dataclass(frozen=True)
class Event:
    """
    An incoming event, as far as trigger matching needs it.

    None for base_ref / head_ref / changed_files / action means "unknown";
    unknown facts never exclude a trigger.
    """
    name: str
    base_ref: Optional[str] = None
    head_ref: Optional[str] = None
    head_sha: Optional[str] = None
    action: Optional[str] = None
    changed_files: Optional[tuple] = None


def _matches_any(value: str, patterns: List[str]) -> bool:
    return any(fnmatch(value, p) for p in patterns)


def _branch_of(event: Event) -> Optional[str]:
    # pull_request filters on the target branch, push on the pushed branch
    if event.name.startswith("pull_request"):
        return event.base_ref
    return event.head_ref


def trigger_matches(trigger: Trigger, event: Event) -> bool:
    if trigger.event != event.name:
        return False

    if trigger.types is not None and event.action is not None:
        if event.action not in trigger.types:
            return False

    branch = _branch_of(event)
    if branch is not None:
        if trigger.branches is not None and not _matches_any(branch, trigger.branches):
            return False
        if trigger.branches_ignore is not None and _matches_any(branch, trigger.branches_ignore):
            return False

    if event.changed_files is not None:
        files = list(event.changed_files)
        if trigger.paths is not None and not any(_matches_any(f, trigger.paths) for f in files):
            return False
        if trigger.paths_ignore is not None and files and all(
            _matches_any(f, trigger.paths_ignore) for f in files
        ):
            return False

    return True


def pipeline_fires(p: Pipeline, event: Event) -> bool:
    return any(trigger_matches(t, event) for t in p.triggers)


def _short_ref(ref: str) -> str:
    # origin/main -> main, refs/heads/main -> main
    for prefix in ("refs/heads/", "refs/remotes/"):
        if ref.startswith(prefix):
            ref = ref[len(prefix):]
    if "/" in ref and ref.split("/", 1)[0] in ("origin", "upstream"):
        ref = ref.split("/", 1)[1]
    return ref


def pull_request_event(
    compare_ref: str = "origin/main",
    *,
    cwd: str | Path | None = None,
    name: str = "pull_request",
) -> Event:
    """
    Describe the local checkout as if it were a pull request into `compare_ref`.

    Changed files are the diff from the merge-base with `compare_ref`
    (falling back to HEAD~1, then to every tracked file), plus any
    uncommitted changes. Outside a git repository the event carries only
    its name and base branch.
    """
    base_branch = _short_ref(compare_ref)
    try:
        root = git.repo_root(cwd)
    except (subprocess.CalledProcessError, FileNotFoundError):
        return Event(name=name, base_ref=base_branch)

    try:
        sha: Optional[str] = git.head_sha(root)
        head_ref = git.current_branch(root)
    except subprocess.CalledProcessError:
        # no commits yet
        sha, head_ref = None, None

    files = set()
    if sha is not None:
        try:
            base = git.merge_base(compare_ref, root)
        except subprocess.CalledProcessError:
            base = "HEAD~1"
        try:
            files.update(git.changed_files(base, "HEAD", root))
        except subprocess.CalledProcessError:
            files.update(git.tracked_files(root))

    files.update(git.dirty_files(root))

    return Event(
        name=name,
        base_ref=base_branch,
        head_ref=head_ref,
        head_sha=sha,
        changed_files=tuple(sorted(files)),
    )
