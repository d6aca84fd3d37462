# platforms.py
from __future__ import annotations

import sys
from typing import Any, Dict, List, Optional, Union

LINUX = "linux"
WINDOWS = "windows"
MACOS = "macos"

# runner label prefixes, matched case-insensitively
_LABEL_PREFIXES = [
    ("ubuntu", LINUX),
    ("linux", LINUX),
    ("win", WINDOWS),
    ("macos", MACOS),
    ("osx", MACOS),
]


RunsOn = Union[str, List[str], Dict[str, Any], None]


def runner_labels(runs_on: RunsOn) -> List[str]:
    """
    The non-empty labels of a `runs-on` value. A mapping contributes its
    `labels` entry (a string or a list); a bare `group` has none.
    """
    if isinstance(runs_on, dict):
        runs_on = runs_on.get("labels")
    if isinstance(runs_on, str):
        runs_on = [runs_on]
    if not isinstance(runs_on, list):
        return []
    return [str(label).strip() for label in runs_on if label is not None and str(label).strip()]


def describe_runner(runs_on: RunsOn) -> str:
    """Short human form of a `runs-on` value for progress output."""
    text = ", ".join(runner_labels(runs_on))
    if isinstance(runs_on, dict) and runs_on.get("group") is not None:
        group = f"group {runs_on['group']}"
        return f"{group} ({text})" if text else group
    return text or "?"


def platform_of(runs_on: RunsOn) -> Optional[str]:
    """
    Map a runner label (e.g. 'ubuntu-latest', 'windows-2022', 'macOS-latest')
    to an OS family. For a label list, the first recognised label wins.
    Returns None when no label is recognised.
    """
    for label in runner_labels(runs_on):
        low = label.lower()
        for prefix, family in _LABEL_PREFIXES:
            if low.startswith(prefix):
                return family
    return None


def host_platform() -> str:
    if sys.platform.startswith("win"):
        return WINDOWS
    if sys.platform == "darwin":
        return MACOS
    return LINUX
