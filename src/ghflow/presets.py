# presets.py
from __future__ import annotations

from typing import Callable, Dict, List

from .dsl import checkout, job, pipeline, sh
from .model import Pipeline
from .validate import OrderRule

RUSTUP_INSTALL = (
    "curl --proto '=https' --tlsv1.2 -sSf https://sh.rustup.rs | sh -s -- -y --profile=minimal"
)


def rust_ci() -> Pipeline:
    """
    Pull-request CI for a Rust project with a native windowing dependency:
    build on Linux, Windows and macOS, plus a rustfmt check.

    Linux installs the X11/XRandR headers first; macOS runners bootstrap the
    toolchain with rustup before building; Linux and Windows images already
    carry one.
    """
    return pipeline(
        job(
            "build-linux",
            sh("Install dependencies", "sudo apt-get update\nsudo apt-get install -y libxrandr-dev xorg-dev\n"),
            checkout(),
            sh("Build", "cargo build"),
            runs_on="ubuntu-latest",
        ),
        job(
            "build-windows",
            checkout(),
            sh("Build", "cargo build"),
            runs_on="windows-latest",
        ),
        job(
            "build-macosx",
            checkout(),
            sh("Install Rust", RUSTUP_INSTALL),
            sh("Build", ". ~/.cargo/env\ncargo build\n"),
            runs_on="macOS-latest",
        ),
        job(
            "quality",
            checkout(),
            sh("Install dependencies", "rustup component add rustfmt"),
            sh("rustfmt", "cargo fmt -- --check"),
            runs_on="ubuntu-latest",
        ),
        name="CI",
        triggers=["pull_request"],
    )


RUST_CI_RULES: List[OrderRule] = [
    OrderRule(
        job="build-linux",
        before=r"apt-get install",
        after=r"cargo build",
        description="system packages installed before the build",
    ),
    OrderRule(
        job="build-macosx",
        before=r"sh\.rustup\.rs",
        after=r"cargo build",
        description="toolchain installed before the build",
    ),
    OrderRule(
        job="quality",
        before=r"rustup component add rustfmt",
        after=r"cargo fmt .*--check",
        description="rustfmt installed before the format check",
    ),
]


PRESETS: Dict[str, Callable[[], Pipeline]] = {
    "rust": rust_ci,
}

PRESET_RULES: Dict[str, List[OrderRule]] = {
    "rust": RUST_CI_RULES,
}
