"""Console output formatting utilities for ghflow."""

from __future__ import annotations

import sys
import threading
from typing import Dict, Iterable, List, Optional


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, stream=None, err_stream=None):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            stream: Output stream (defaults to sys.stdout at call time)
            err_stream: Error stream (defaults to sys.stderr at call time)
        """
        self.debug = debug
        self._stream = stream
        self._err_stream = err_stream
        # jobs run on worker threads; keep lines whole
        self._lock = threading.Lock()

    def _out(self, text: str = "", *, err: bool = False) -> None:
        stream = (self._err_stream or sys.stderr) if err else (self._stream or sys.stdout)
        with self._lock:
            print(text, file=stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}")
        self._out("-" * len(title))

    def print_run_started(
        self,
        workflow: str,
        event: str,
        job_count: int,
        repository: Optional[str] = None,
    ) -> None:
        """Print run start information."""
        self._out("\nRUN STARTED")
        if repository:
            self._out(f"Repository: {repository}")
        self._out(f"Workflow: {workflow}")
        self._out(f"Event: {event}")
        self._out(f"Jobs: {job_count}")
        self._out()

    def print_job_start(self, name: str, runs_on: str) -> None:
        self._out(f"JOB STARTED: {name} ({runs_on})")

    def print_step(self, job: str, name: str) -> None:
        self._out(f"[{job}] STEP: {name}")

    def print_step_note(self, job: str, message: str) -> None:
        self._out(f"[{job}]   {message}")

    def print_job_done(self, name: str, status: str, duration: Optional[float] = None) -> None:
        if duration is not None:
            self._out(f"JOB FINISHED: {name} -> {status} ({duration:.1f}s)")
        else:
            self._out(f"JOB FINISHED: {name} -> {status}")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
        output: Optional[str] = None,
        is_job: bool = False,
    ) -> None:
        """
        Print failure message.

        Args:
            name: Job or step name
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
            output: Tail of the failing command's output
            is_job: If True, print "JOB FAILED", otherwise "STEP FAILED"
        """
        prefix = "JOB FAILED" if is_job else "STEP FAILED"
        lines = [f"{prefix}: {name}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if hint:
            lines.append(f"Hint: {hint}")
        if self.debug:
            lines.append(f"Error details: {reason}")
        else:
            # first line only outside debug mode
            error_line = reason.split("\n")[0] if reason else "Unknown error"
            lines.append(f"Error: {error_line}")
        if output:
            lines.append("Output (tail):")
            lines.extend(f"  | {line}" for line in output.rstrip().splitlines())
        self._out("\n".join(lines), err=True)

    def print_job_skipped(self, name: str, reason: str) -> None:
        self._out(f"JOB SKIPPED: {name} ({reason})")

    def print_plan_job(self, name: str, reason: str) -> None:
        self._out(f"  {name} ({reason})")

    def print_plan_job_skipped(self, name: str, reason: str) -> None:
        self._out(f"  {name} (skipped: {reason})")

    def print_stages(self, stages: List[List[str]]) -> None:
        for idx, stage in enumerate(stages):
            self._out(f"=== Stage {idx + 1}: {', '.join(stage)} ===")

    def print_results(self, results: Dict[str, str]) -> None:
        """Print final results summary."""
        self._out("\n" + "=" * 40)
        self._out("RESULTS")
        self._out("=" * 40)
        for job, status in results.items():
            status_display = status.upper() if status != "ok" else "SUCCESS"
            self._out(f"  {job}: {status_display}")

    def print_issues(self, issues: Iterable) -> None:
        for issue in issues:
            self._out(f"{issue.severity.upper()}: {issue}", err=issue.severity == "error")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {detail}" for detail in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out("\n".join(lines), err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            self._out("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)), err=True)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        self._out(message)

    def print_warning(self, message: str) -> None:
        self._out(f"WARNING: {message}", err=True)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


# Global console instance (initialized by the CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
