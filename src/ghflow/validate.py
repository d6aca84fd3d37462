# validate.py
"""
Static checks for a Pipeline.

validate_pipeline() never raises on a bad definition; it returns every
Issue it finds so the CLI can print them all at once. ensure_valid() is the
raising variant used before execution.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from .dag import stuck_nodes
from .errors import PipelineInvalid
from .model import Job, Pipeline, Step
from .platforms import describe_runner, platform_of, runner_labels

ERROR = "error"
WARNING = "warning"


@dataclass(frozen=True)
class Issue:
    code: str
    severity: str
    message: str
    job: str | None = None
    step: str | None = None

    def __str__(self) -> str:
        where = ""
        if self.job:
            where = f" [{self.job}"
            if self.step:
                where += f" / {self.step}"
            where += "]"
        return f"{self.code}{where} {self.message}"


@dataclass(frozen=True)
class OrderRule:
    """
    In job `job`, a step matching `before` must appear strictly before the
    first step matching `after`. Both must be present.

    Patterns are regexes searched in a step's run text, uses reference and name.
    """
    job: str
    before: str
    after: str
    description: str = ""


# ---------------------------------------------------------------------
# Step ordering
# ---------------------------------------------------------------------

def _step_fields(step: Step) -> list[str]:
    return [x for x in (step.name, step.uses, step.run) if x]


def find_step(job: Job, pattern: str) -> Optional[int]:
    """Index of the first step matching `pattern`, or None."""
    rx = re.compile(pattern)
    for i, step in enumerate(job.steps):
        if any(rx.search(text) for text in _step_fields(step)):
            return i
    return None


def check_order(job: Job, before: str, after: str) -> bool:
    first_after = find_step(job, after)
    if first_after is None:
        return False
    first_before = find_step(job, before)
    return first_before is not None and first_before < first_after


def _check_rule(p: Pipeline, rule: OrderRule) -> List[Issue]:
    label = rule.description or f"{rule.before!r} before {rule.after!r}"
    try:
        job = p.job(rule.job)
    except KeyError:
        return [Issue("E010", ERROR, f"ordering rule needs a job named {rule.job!r}: {label}", job=rule.job)]

    if find_step(job, rule.before) is None:
        return [Issue("E010", ERROR, f"no step matches {rule.before!r} ({label})", job=job.id)]
    if find_step(job, rule.after) is None:
        return [Issue("E010", ERROR, f"no step matches {rule.after!r} ({label})", job=job.id)]
    if not check_order(job, rule.before, rule.after):
        return [Issue("E010", ERROR, f"steps out of order: {label}", job=job.id)]
    return []


# ---------------------------------------------------------------------
# Structural checks
# ---------------------------------------------------------------------

def is_expression(value) -> bool:
    return isinstance(value, str) and value.strip().startswith("${{") and value.strip().endswith("}}")


def _valid_timeout(value) -> bool:
    if value is None or is_expression(value):
        return True
    if isinstance(value, bool):
        return False
    try:
        return float(value) > 0
    except (TypeError, ValueError):
        return False


def _check_job(job: Job) -> List[Issue]:
    issues: List[Issue] = []

    group = job.runs_on.get("group") if isinstance(job.runs_on, dict) else None
    if not runner_labels(job.runs_on) and group is None:
        issues.append(Issue("E003", ERROR, "job declares no runner environment (runs-on)", job=job.id))
    elif platform_of(job.runs_on) is None:
        issues.append(Issue("W102", WARNING, f"runner {describe_runner(job.runs_on)!r} is not a known platform", job=job.id))

    if not _valid_timeout(job.timeout_minutes):
        issues.append(Issue("E009", ERROR, f"timeout-minutes must be a positive number, got {job.timeout_minutes!r}", job=job.id))

    if not job.steps:
        issues.append(Issue("E004", ERROR, "job has no steps", job=job.id))

    for idx, step in enumerate(job.steps):
        label = step.name or f"#{idx + 1}"
        if (step.run is None) == (step.uses is None):
            issues.append(Issue("E005", ERROR, "step must set exactly one of `run` or `uses`", job=job.id, step=label))
        for key in step.extra:
            issues.append(Issue("W101", WARNING, f"key {key!r} is kept but not interpreted", job=job.id, step=label))

    for key in job.extra:
        issues.append(Issue("W101", WARNING, f"key {key!r} is kept but not interpreted", job=job.id))

    return issues


def _check_needs(p: Pipeline) -> List[Issue]:
    issues: List[Issue] = []

    seen: set[str] = set()
    for j in p.jobs:
        if j.id in seen:
            issues.append(Issue("E006", ERROR, "duplicate job id", job=j.id))
        seen.add(j.id)

    unknown = False
    for j in p.jobs:
        for dep in j.needs:
            if dep not in seen:
                unknown = True
                issues.append(Issue("E007", ERROR, f"needs unknown job {dep!r}", job=j.id))

    if unknown or len(seen) != len(p.jobs):
        return issues

    adj = {j.id: set() for j in p.jobs}
    indeg = {j.id: 0 for j in p.jobs}
    for j in p.jobs:
        for dep in set(j.needs):
            adj[dep].add(j.id)
            indeg[j.id] += 1
    stuck = stuck_nodes(adj, indeg)
    if stuck:
        issues.append(Issue("E008", ERROR, f"`needs` cycle involving {stuck}"))
    return issues


def validate_pipeline(p: Pipeline, rules: Iterable[OrderRule] = ()) -> List[Issue]:
    issues: List[Issue] = []

    if not p.triggers:
        issues.append(Issue("E001", ERROR, "pipeline has no triggers (`on`)"))
    if not p.jobs:
        issues.append(Issue("E002", ERROR, "pipeline has no jobs"))

    for key in p.extra:
        issues.append(Issue("W101", WARNING, f"key {key!r} is kept but not interpreted"))

    for j in p.jobs:
        issues.extend(_check_job(j))
    issues.extend(_check_needs(p))

    for rule in rules:
        issues.extend(_check_rule(p, rule))

    return issues


def errors_of(issues: Sequence[Issue]) -> List[Issue]:
    return [i for i in issues if i.severity == ERROR]


def ensure_valid(p: Pipeline, rules: Iterable[OrderRule] = ()) -> List[Issue]:
    """Raise PipelineInvalid on any error; return the remaining warnings."""
    issues = validate_pipeline(p, rules)
    if errors_of(issues):
        raise PipelineInvalid(issues)
    return issues
