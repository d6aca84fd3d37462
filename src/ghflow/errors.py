# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .validate import Issue


@dataclass
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - debugging without full tracebacks
    """
    kind: str
    job: str
    step: str | None
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}", f"job={self.job}"]
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass
class StepFailure(Exception):
    job: str
    step: str
    cmd: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    def __str__(self) -> str:
        return f"[{self.job}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


@dataclass
class StepTimeout(Exception):
    job: str
    step: str
    cmd: str
    timeout: float

    def __str__(self) -> str:
        return f"[{self.job}] step '{self.step}' timed out after {self.timeout:g}s: {self.cmd}"


@dataclass
class WorkflowError(Exception):
    """A workflow definition could not be read or is malformed."""
    path: Optional[Path]
    message: str

    def __str__(self) -> str:
        where = str(self.path) if self.path else "<workflow>"
        return f"{where}: {self.message}"


class PipelineInvalid(Exception):
    def __init__(self, issues: List["Issue"]):
        self.issues = issues
        errors = [i for i in issues if i.severity == "error"]
        super().__init__(f"Pipeline has {len(errors)} error(s): " + "; ".join(str(i) for i in errors))
