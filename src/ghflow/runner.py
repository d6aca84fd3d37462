# runner.py
from __future__ import annotations

import os
import re
import shutil
import subprocess
import sys
import tempfile
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

from . import settings
from .actions import run_action
from .dag import build_dag
from .errors import CIError, StepFailure, StepTimeout
from .events import Event, pipeline_fires
from .model import Job, Pipeline, Step
from .platforms import WINDOWS, describe_runner, host_platform, platform_of
from .ui.console import Console, get_console
from .validate import ensure_valid, is_expression

OK = "ok"
FAILED = "failed"
CANCELLED = "cancelled"
SKIPPED_PLATFORM = "skipped(platform)"
SKIPPED_TRIGGER = "skipped(trigger)"
SKIPPED_NEEDS = "skipped(needs)"
SKIPPED_FILTERED = "skipped(filtered)"


TOOL_HINTS = {
    "cargo": "Install Rust (https://rustup.rs) or fix PATH.",
    "rustup": "Install rustup (https://rustup.rs) or fix PATH.",
    "rustfmt": "Run `rustup component add rustfmt`.",
    "apt-get": "apt-get is only available on Debian/Ubuntu hosts.",
    "sudo": "sudo is not available; run the step as a privileged user.",
    "curl": "Install curl or fix PATH.",
    "bash": "Install bash or set `shell: sh` on the step.",
    "pwsh": "Install PowerShell or set `shell: cmd` on the step.",
}

_NOT_FOUND = re.compile(r"(?:^|\s)([\w.+-]+): (?:command )?not found", re.MULTILINE)


def _hint_for(proc_output: str, exit_code: int) -> Optional[str]:
    if exit_code != 127:
        return None
    m = _NOT_FOUND.search(proc_output)
    if not m:
        return None
    tool = m.group(1)
    return TOOL_HINTS.get(tool, f"Install {tool} or fix PATH.")


# ----------------------------------------------------------------------
# Shells
# ----------------------------------------------------------------------

def _default_shell() -> str:
    if host_platform() == WINDOWS:
        return "pwsh" if shutil.which("pwsh") else "cmd"
    return "bash" if shutil.which("bash") else "sh"


def shell_command(shell: Optional[str], script: str) -> Tuple[List[str], Optional[Path]]:
    """
    argv for running `script` through `shell`, plus a temp file to delete
    afterwards (only for custom `... {0}` shells).
    """
    shell = shell or _default_shell()

    if shell == "bash":
        return ["bash", "--noprofile", "--norc", "-eo", "pipefail", "-c", script], None
    if shell == "sh":
        return ["sh", "-e", "-c", script], None
    if shell in ("pwsh", "powershell"):
        return [shell, "-NoProfile", "-NonInteractive", "-Command", script], None
    if shell == "cmd":
        return ["cmd", "/D", "/E:ON", "/V:OFF", "/S", "/C", script], None
    if shell == "python":
        return [sys.executable, "-c", script], None

    if "{0}" in shell:
        fd, name = tempfile.mkstemp(prefix="ghflow-step-", text=True)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(script)
        return shell.replace("{0}", name).split(), Path(name)

    raise CIError(
        kind="shell_unsupported",
        job="",
        step=None,
        message=f"unsupported shell {shell!r}",
        details={"hint": "Use bash, sh, pwsh, powershell, cmd, python or a template containing {0}."},
    )


# ----------------------------------------------------------------------
# Environment
# ----------------------------------------------------------------------

def _env_value(v) -> str:
    if isinstance(v, bool):
        return "true" if v else "false"
    return str(v)


def step_env(p: Pipeline, job: Job, step: Step, workspace: Path) -> Dict[str, str]:
    env = os.environ.copy()
    env.update({
        "CI": "true",
        "GHFLOW": "true",
        "GHFLOW_JOB": job.id,
        "GITHUB_WORKSPACE": str(workspace),
    })
    for layer in (p.env, job.env, step.env):
        env.update({str(k): _env_value(v) for k, v in (layer or {}).items()})
    return env


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

def _tail(text: Optional[str]) -> str:
    return (text or "")[-settings.OUTPUT_TAIL_CHARS:]


def _run_step(
    p: Pipeline,
    job: Job,
    step: Step,
    workspace: Path,
    *,
    timeout: Optional[float],
    console: Console,
) -> None:
    cwd = (workspace / (step.working_directory or ".")).resolve()
    if not cwd.exists():
        raise CIError(
            kind="cwd_missing",
            job=job.id,
            step=step.display_name,
            message=f"working directory not found: {cwd}",
        )

    if step.run is None:
        raise CIError(kind="step_invalid", job=job.id, step=step.display_name, message="step has no `run` command")
    try:
        argv, script_file = shell_command(step.shell, step.run)
    except CIError as e:
        raise CIError(kind=e.kind, job=job.id, step=step.display_name, message=e.message, details=e.details) from None

    try:
        proc = subprocess.run(
            argv,
            cwd=str(cwd),
            env=step_env(p, job, step, workspace),
            text=True,
            capture_output=True,  # shown on failure
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        raise StepTimeout(job=job.id, step=step.display_name, cmd=step.run, timeout=timeout or 0.0) from None
    except FileNotFoundError:
        shell = argv[0]
        raise CIError(
            kind="tool_unavailable",
            job=job.id,
            step=step.display_name,
            message=f"{shell} is not available",
            details={"hint": TOOL_HINTS.get(shell, f"Install {shell} or fix PATH.")},
        ) from None
    finally:
        if script_file is not None:
            script_file.unlink(missing_ok=True)

    if proc.stdout or proc.stderr:
        console.print_debug(f"[{job.id}] {step.display_name} output:\n{proc.stdout}{proc.stderr}")

    if proc.returncode != 0:
        raise StepFailure(
            job=job.id,
            step=step.display_name,
            cmd=step.run,
            exit_code=proc.returncode,
            stdout=_tail(proc.stdout),
            stderr=_tail(proc.stderr),
        )


def run_job(
    p: Pipeline,
    job: Job,
    workspace: Path,
    *,
    strict_actions: bool = False,
    console: Optional[Console] = None,
) -> str:
    """
    Run one job's steps in order. Returns "ok"; raises on the first failing
    step, leaving the remaining steps unrun.
    """
    console = console or get_console()
    console.print_job_start(job.id, describe_runner(job.runs_on))

    deadline = None
    if is_expression(job.timeout_minutes):
        console.print_step_note(job.id, f"timeout-minutes {job.timeout_minutes} is not evaluated locally; no deadline")
    elif job.timeout_minutes is not None:
        deadline = time.monotonic() + float(job.timeout_minutes) * 60

    for step in job.steps:
        console.print_step(job.id, step.display_name)

        if step.is_action:
            note = run_action(job, step, workspace, strict=strict_actions)
            console.print_step_note(job.id, note)
            continue

        timeout = None
        if deadline is not None:
            timeout = deadline - time.monotonic()
            if timeout <= 0:
                raise StepTimeout(job=job.id, step=step.display_name, cmd=step.run or "",
                                  timeout=float(job.timeout_minutes) * 60)
        _run_step(p, job, step, workspace, timeout=timeout, console=console)

    return OK


def _report_failure(console: Console, job_id: str, exc: BaseException) -> None:
    if isinstance(exc, StepFailure):
        output = exc.stderr or exc.stdout
        console.print_failure(
            f"{job_id} / {exc.step}",
            str(exc),
            exit_code=exc.exit_code,
            hint=_hint_for(exc.stderr + exc.stdout, exc.exit_code),
            output=output,
        )
    elif isinstance(exc, (StepTimeout, CIError)):
        hint = exc.details.get("hint") if isinstance(exc, CIError) else None
        console.print_failure(f"{job_id} / {exc.step}", str(exc), hint=hint)
    else:
        console.print_failure(job_id, str(exc), is_job=True)
        console.print_exception(exc)


# ----------------------------------------------------------------------
# Selection
# ----------------------------------------------------------------------

def _with_needs(p: Pipeline, only: Iterable[str]) -> Set[str]:
    wanted: Set[str] = set()
    stack = list(only)
    while stack:
        job_id = stack.pop()
        if job_id in wanted:
            continue
        wanted.add(job_id)
        stack.extend(p.job(job_id).needs)
    return wanted


def select_jobs(
    p: Pipeline,
    *,
    event: Optional[Event] = None,
    all_platforms: bool = False,
    only: Optional[Iterable[str]] = None,
) -> Dict[str, Optional[str]]:
    """
    Decide which jobs run. Returns {job_id: None} for jobs to run and
    {job_id: "skipped(...)"} for jobs that will not.
    """
    if event is not None and not pipeline_fires(p, event):
        return {j.id: SKIPPED_TRIGGER for j in p.jobs}

    wanted = _with_needs(p, only) if only else None
    host = host_platform()

    plan: Dict[str, Optional[str]] = {}
    for j in p.jobs:
        if wanted is not None and j.id not in wanted:
            plan[j.id] = SKIPPED_FILTERED
        elif not all_platforms and platform_of(j.runs_on) != host:
            plan[j.id] = SKIPPED_PLATFORM
        else:
            plan[j.id] = None
    return plan


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def run_pipeline(
    p: Pipeline,
    event: Optional[Event] = None,
    *,
    workspace: str | Path = ".",
    max_workers: int | None = None,
    all_platforms: bool = False,
    only: Optional[Iterable[str]] = None,
    strict_actions: bool = False,
    fail_fast: bool = False,
    console: Optional[Console] = None,
) -> Dict[str, str]:
    """
    Run a pipeline locally and return {job_id: status} in declaration order.

    Jobs start as soon as their `needs` are satisfied; independent jobs run
    in parallel. A failed job only affects its dependents (skipped(needs)),
    unless fail_fast stops scheduling altogether (cancelled).
    """
    console = console or get_console()
    for issue in ensure_valid(p):
        console.print_warning(str(issue))
    workspace_p = Path(workspace).resolve()

    by_id = {j.id: j for j in p.jobs}
    adj, indeg = build_dag(p.jobs)

    plan = select_jobs(p, event=event, all_platforms=all_platforms, only=only)
    results: Dict[str, str] = {k: v for k, v in plan.items() if v is not None}
    for job_id, reason in results.items():
        console.print_job_skipped(job_id, reason)

    runnable = [j for j, v in plan.items() if v is None]
    if max_workers is None:
        max_workers = max(1, len(runnable))

    indeg = dict(indeg)
    order = {j.id: i for i, j in enumerate(p.jobs)}
    ready: List[str] = sorted((n for n, d in indeg.items() if d == 0), key=order.get)
    failed = False
    started: Dict[str, float] = {}

    def release(job_id: str) -> None:
        for nxt in sorted(adj[job_id], key=order.get):
            if results[job_id] != OK and nxt not in results:
                results[nxt] = SKIPPED_NEEDS
                console.print_job_skipped(nxt, f"needs {job_id}")
            indeg[nxt] -= 1
            if indeg[nxt] == 0:
                ready.append(nxt)

    in_flight: Dict = {}

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        while ready or in_flight:
            # schedule everything currently ready
            while ready:
                job_id = ready.pop(0)
                if job_id in results:
                    release(job_id)
                    continue
                if fail_fast and failed:
                    results[job_id] = CANCELLED
                    console.print_job_skipped(job_id, "cancelled after failure")
                    release(job_id)
                    continue
                started[job_id] = time.monotonic()
                fut = pool.submit(
                    run_job, p, by_id[job_id], workspace_p,
                    strict_actions=strict_actions, console=console,
                )
                in_flight[fut] = job_id

            if not in_flight:
                break

            # wait for one completion, then loop to schedule newly-ready jobs
            fut = next(as_completed(list(in_flight.keys())))
            job_id = in_flight.pop(fut)
            try:
                results[job_id] = fut.result()
            except Exception as e:
                results[job_id] = FAILED
                failed = True
                _report_failure(console, job_id, e)

            console.print_job_done(job_id, results[job_id], time.monotonic() - started[job_id])
            release(job_id)

    return {j.id: results[j.id] for j in p.jobs}


def any_failed(results: Dict[str, str]) -> bool:
    return any(v == FAILED for v in results.values())
