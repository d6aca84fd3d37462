# actions.py
"""
Local stand-ins for reusable `uses:` actions.

A handler receives the job, the step and the workspace and either completes
(returns a short note for the log) or raises. Actions without a handler are
skipped, or rejected when the run is strict.
"""
from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, Optional

from .errors import CIError
from .model import Job, Step

ActionHandler = Callable[[Job, Step, Path], str]

_HANDLERS: Dict[str, ActionHandler] = {}


def action_name(ref: str) -> str:
    """'actions/checkout@v2' -> 'actions/checkout' (lower-cased)."""
    return ref.split("@", 1)[0].strip().lower()


def register_action(name: str):
    """Decorator: register a handler for an action name (without @version)."""
    def deco(fn: ActionHandler) -> ActionHandler:
        _HANDLERS[name.lower()] = fn
        return fn
    return deco


def handler_for(ref: str) -> Optional[ActionHandler]:
    return _HANDLERS.get(action_name(ref))


# ---------------------------------------------------------------------
# Built-in handlers
# ---------------------------------------------------------------------

@register_action("actions/checkout")
def _checkout(job: Job, step: Step, workspace: Path) -> str:
    # the local workspace already is the checkout
    target = workspace / str(step.with_.get("path", "."))
    if not target.exists():
        raise CIError(
            kind="checkout_missing",
            job=job.id,
            step=step.display_name,
            message=f"checkout path does not exist: {target}",
            details={"workspace": str(workspace)},
        )
    return f"using local workspace {target}"


def _toolchain_from_host(job: Job, step: Step, workspace: Path) -> str:
    return "toolchain setup skipped; using the host toolchain"


for _name in (
    "actions-rs/toolchain",
    "dtolnay/rust-toolchain",
    "actions/setup-python",
    "actions/setup-node",
    "actions/setup-go",
    "actions/setup-java",
):
    register_action(_name)(_toolchain_from_host)


# ---------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------

def run_action(job: Job, step: Step, workspace: Path, *, strict: bool = False) -> str:
    """Run a `uses:` step locally. Returns a note describing what happened."""
    if step.uses is None:
        raise CIError(kind="step_invalid", job=job.id, step=step.display_name, message="step has no `uses` reference")
    handler = handler_for(step.uses)
    if handler is not None:
        return handler(job, step, workspace)

    if strict:
        raise CIError(
            kind="action_unsupported",
            job=job.id,
            step=step.display_name,
            message=f"no local handler for action {step.uses!r}",
            details={"hint": "Run without --strict-actions to skip unsupported actions."},
        )
    return f"skipped: no local handler for {step.uses}"
