# src/ghflow/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from .model import Job, Pipeline, Step, Trigger
from .platforms import RunsOn


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(
    name: str | None,
    cmd: str,
    *,
    cwd: str | None = None,
    shell: str | None = None,
    env: Optional[Dict[str, str]] = None,
) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, working_directory=cwd, shell=shell, env=dict(env or {}))


def uses(action: str, *, name: str | None = None, **inputs: Any) -> Step:
    """Create a step that invokes a reusable action, e.g. uses("actions/checkout@v2")."""
    return Step(name=name, uses=action, with_=dict(inputs))


def checkout(version: str = "v2", **inputs: Any) -> Step:
    return uses(f"actions/checkout@{version}", **inputs)


# ---------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------

def on(
    event: str,
    *,
    branches: Optional[List[str]] = None,
    branches_ignore: Optional[List[str]] = None,
    paths: Optional[List[str]] = None,
    paths_ignore: Optional[List[str]] = None,
    types: Optional[List[str]] = None,
) -> Trigger:
    return Trigger(
        event=event,
        branches=branches,
        branches_ignore=branches_ignore,
        paths=paths,
        paths_ignore=paths_ignore,
        types=types,
    )


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    job_id: str,
    *steps: Step,
    runs_on: RunsOn,
    steps_list: Optional[List[Step]] = None,
    name: str | None = None,
    needs: Optional[List[str]] = None,
    env: Optional[Dict[str, str]] = None,
    timeout_minutes: float | str | None = None,
    cwd: str | None = None,  # default working directory for run steps missing one
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ValueError(f"job({job_id!r}) must have at least one step")

    if cwd is not None:
        steps_final = [
            s if s.working_directory is not None or s.is_action else replace(s, working_directory=cwd)
            for s in steps_final
        ]

    return Job(
        id=job_id,
        runs_on=runs_on,
        steps=steps_final,
        name=name,
        needs=list(needs or []),
        env=dict(env or {}),
        timeout_minutes=timeout_minutes,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, job_id: str):
        self.id = job_id
        self._runs_on: str | None = None
        self._name: str | None = None
        self._needs: list[str] = []
        self._steps: list[Step] = []
        self._env: dict[str, str] = {}
        self._timeout_minutes: Optional[float] = None

    def runs_on(self, label: str):
        self._runs_on = label
        return self

    def named(self, name: str):
        self._name = name
        return self

    def depends_on(self, *job_ids: str):
        self._needs.extend(job_ids)
        return self

    def define_step(self, name: str | None, run: str, cwd: str | None = None, shell: str | None = None):
        self._steps.append(sh(name, run, cwd=cwd, shell=shell))
        return self

    def use_action(self, action: str, name: str | None = None, **inputs: Any):
        self._steps.append(uses(action, name=name, **inputs))
        return self

    def with_env(self, **env):
        # workflow env values are strings
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def timeout(self, minutes: float):
        self._timeout_minutes = minutes
        return self

    def build(self) -> Job:
        if not self._steps:
            raise ValueError(f"Job '{self.id}' has no steps")
        if not self._runs_on:
            raise ValueError(f"Job '{self.id}' has no runner environment (call runs_on())")

        return Job(
            id=self.id,
            runs_on=self._runs_on,
            steps=list(self._steps),
            name=self._name,
            needs=list(self._needs),
            env=dict(self._env),
            timeout_minutes=self._timeout_minutes,
        )


def build(job_id: str) -> JobBuilder:
    """Convenience: build('test').runs_on('ubuntu-latest').define_step(...).build()"""
    return JobBuilder(job_id)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    Minimal matrix expander (evaluated in Python, not emitted as `strategy`).

    Example:
        matrix("os", ["ubuntu-latest", "windows-latest"]).jobs(
            lambda v: job(f"build-{v}", checkout(), sh("Build", "cargo build"), runs_on=v)
        )
    """
    def __init__(self, key: str, values: Iterable[Any]):
        self.key = key
        self.values = list(values)

    def jobs(self, builder: Callable[[Any], Job]) -> List[Job]:
        return [builder(v) for v in self.values]


def matrix(key: str, values: Iterable[Any]) -> Matrix:
    return Matrix(key, values)


# ---------------------------------------------------------------------
# Pipeline helpers
# ---------------------------------------------------------------------

def pipeline(
    *jobs: Union[Job, List[Job]],
    name: str | None = "CI",
    triggers: Optional[List[Union[Trigger, str]]] = None,
    env: Optional[Dict[str, str]] = None,
) -> Pipeline:
    """
    Build a Pipeline. Lists (e.g. from matrix(...).jobs) are flattened.
    Triggers default to a single pull_request trigger.
    """
    flat: List[Job] = []
    for j in jobs:
        if isinstance(j, list):
            flat.extend(j)
        else:
            flat.append(j)

    trig = [t if isinstance(t, Trigger) else on(t) for t in (triggers or ["pull_request"])]
    return Pipeline(name=name, triggers=trig, jobs=flat, env=dict(env or {}))


def wf(*jobs: Union[Job, List[Job]], **kwargs: Any) -> Pipeline:
    """
    Workflow definition helper for .py workflow files:

        from ghflow import wf, job, sh, checkout

        def workflow():
            return wf(
                job("build", checkout(), sh("Build", "cargo build"), runs_on="ubuntu-latest"),
            )

    Or define PIPELINE = wf(...) at module level.
    """
    return pipeline(*jobs, **kwargs)
