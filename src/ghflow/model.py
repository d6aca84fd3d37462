# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


@dataclass(frozen=True)
class Trigger:
    """An event condition that activates the pipeline."""
    event: str
    branches: Optional[List[str]] = None
    branches_ignore: Optional[List[str]] = None
    paths: Optional[List[str]] = None
    paths_ignore: Optional[List[str]] = None
    types: Optional[List[str]] = None

    # non-mapping event config (e.g. schedule crons) and unknown keys, kept verbatim
    config: Any = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_filters(self) -> bool:
        return any(
            v is not None
            for v in (self.branches, self.branches_ignore, self.paths, self.paths_ignore, self.types)
        )


@dataclass(frozen=True)
class Step:
    """
    A single action inside a CI job.

    Exactly one of `run` (shell command, possibly multi-line) or `uses`
    (reference to a reusable action, e.g. "actions/checkout@v2") is set.
    """
    name: str | None = None
    run: str | None = None
    uses: str | None = None
    with_: Dict[str, Any] = field(default_factory=dict)
    shell: str | None = None
    working_directory: str | None = None
    env: Dict[str, str] = field(default_factory=dict)

    # keys we keep verbatim but do not interpret
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        if self.uses:
            return f"Run {self.uses}"
        first = (self.run or "").strip().splitlines()
        return f"Run {first[0]}" if first else "<unnamed-step>"

    @property
    def is_action(self) -> bool:
        return self.uses is not None


@dataclass
class Job:
    """
    A CI job: one runner environment + an ordered list of steps.

    `id` is the key under `jobs:`; `name` is the optional display name.
    `runs_on` is a runner label, a list of labels that together select
    one runner, or a mapping such as `{group: ..., labels: [...]}` kept as
    written (None when the definition omits it). `timeout_minutes` may be
    a number or a `${{ }}` expression string.
    """
    id: str
    runs_on: Union[str, List[str], Dict[str, Any], None]
    steps: list[Step]

    name: str | None = None
    needs: list[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    timeout_minutes: Union[float, str, None] = None

    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.name or self.id


@dataclass
class Pipeline:
    """A workflow: triggers + independent (or `needs`-linked) jobs."""
    name: str | None
    triggers: list[Trigger]
    jobs: list[Job]
    env: Dict[str, str] = field(default_factory=dict)

    extra: Dict[str, Any] = field(default_factory=dict)

    def job(self, job_id: str) -> Job:
        for j in self.jobs:
            if j.id == job_id:
                return j
        raise KeyError(f"No job named {job_id!r}. Known jobs: {[j.id for j in self.jobs]}")

    @property
    def job_ids(self) -> list[str]:
        return [j.id for j in self.jobs]
