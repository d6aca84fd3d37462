# codec.py
"""
Workflow file <-> Pipeline conversion.

The YAML side follows the GitHub-Actions workflow layout:

```yaml
name: CI
on: [pull_request]

jobs:
  build-linux:
    runs-on: ubuntu-latest
    steps:
      - uses: actions/checkout@v2
      - name: Build
        run: cargo build
```

Keys the model does not interpret are kept in the `extra` dicts, so
`parse_pipeline(dump_pipeline(p)) == p` holds for every pipeline and
`dump_pipeline` output is a fixed point.
"""
from __future__ import annotations

import re
import runpy
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import WorkflowError
from .model import Job, Pipeline, Step, Trigger


# ---------------------------------------------------------------------
# YAML dialect
# ---------------------------------------------------------------------
# PyYAML resolves YAML 1.1 booleans, so a bare `on:` key would load as True.
# Workflow files only treat true/false as booleans.

_BOOL_TAG = "tag:yaml.org,2002:bool"
_BOOL_RE = re.compile(r"^(?:true|True|TRUE|false|False|FALSE)$")


def _only_true_false(cls):
    cls.yaml_implicit_resolvers = {
        first: [(tag, rx) for tag, rx in resolvers if tag != _BOOL_TAG]
        for first, resolvers in cls.yaml_implicit_resolvers.items()
    }
    cls.add_implicit_resolver(_BOOL_TAG, _BOOL_RE, list("tTfF"))
    return cls


@_only_true_false
class _WorkflowLoader(yaml.SafeLoader):
    pass


class _FlowList(list):
    """A list emitted inline: `on: [pull_request]`."""


@_only_true_false
class _WorkflowDumper(yaml.SafeDumper):
    def increase_indent(self, flow=False, indentless=False):
        # indent sequences under their parent key
        return super().increase_indent(flow, False)

    def ignore_aliases(self, data):
        return True


def _represent_str(dumper, data: str):
    if "\n" in data:
        return dumper.represent_scalar("tag:yaml.org,2002:str", data, style="|")
    return dumper.represent_scalar("tag:yaml.org,2002:str", data)


def _represent_flow_list(dumper, data):
    return dumper.represent_sequence("tag:yaml.org,2002:seq", list(data), flow_style=True)


_WorkflowDumper.add_representer(str, _represent_str)
_WorkflowDumper.add_representer(_FlowList, _represent_flow_list)


# ---------------------------------------------------------------------
# dict -> model
# ---------------------------------------------------------------------

_TRIGGER_FILTERS = {
    "branches": "branches",
    "branches-ignore": "branches_ignore",
    "paths": "paths",
    "paths-ignore": "paths_ignore",
    "types": "types",
}

_STEP_KEYS = ("name", "uses", "with", "shell", "working-directory", "env", "run")
_JOB_KEYS = ("name", "runs-on", "needs", "timeout-minutes", "env", "steps")
_PIPELINE_KEYS = ("name", "on", "env", "jobs")


def _str_list(value: Any, what: str, path: Optional[Path]) -> List[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(v, (str, int, float)) for v in value):
        return [str(v) for v in value]
    raise WorkflowError(path, f"{what} must be a string or a list of strings, got {value!r}")


def _mapping(value: Any, what: str, path: Optional[Path]) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise WorkflowError(path, f"{what} must be a mapping, got {type(value).__name__}")
    return {str(k): v for k, v in value.items()}


def _trigger_from(event: str, config: Any, path: Optional[Path]) -> Trigger:
    if config is None:
        return Trigger(event=event)
    if not isinstance(config, dict):
        # e.g. schedule: [{cron: ...}] - kept verbatim
        return Trigger(event=event, config=config)

    filters: Dict[str, Any] = {}
    extra: Dict[str, Any] = {}
    for k, v in config.items():
        k = str(k)
        if k in _TRIGGER_FILTERS:
            filters[_TRIGGER_FILTERS[k]] = _str_list(v, f"on.{event}.{k}", path)
        else:
            extra[k] = v
    return Trigger(event=event, extra=extra, **filters)


def triggers_from(on_value: Any, path: Optional[Path] = None) -> List[Trigger]:
    if on_value is None:
        return []
    if isinstance(on_value, str):
        return [Trigger(event=on_value)]
    if isinstance(on_value, list):
        return [Trigger(event=e) for e in _str_list(on_value, "on", path)]
    if isinstance(on_value, dict):
        return [_trigger_from(str(event), cfg, path) for event, cfg in on_value.items()]
    raise WorkflowError(path, f"`on` must be a string, list or mapping, got {on_value!r}")


def step_from_dict(data: Any, *, job_id: str = "?", path: Optional[Path] = None) -> Step:
    if not isinstance(data, dict):
        raise WorkflowError(path, f"jobs.{job_id}.steps entries must be mappings, got {data!r}")
    data = {str(k): v for k, v in data.items()}

    run = data.get("run")
    uses = data.get("uses")
    return Step(
        name=None if data.get("name") is None else str(data["name"]),
        run=None if run is None else str(run),
        uses=None if uses is None else str(uses),
        with_=_mapping(data.get("with"), f"jobs.{job_id}.steps[].with", path),
        shell=data.get("shell"),
        working_directory=data.get("working-directory"),
        env=_mapping(data.get("env"), f"jobs.{job_id}.steps[].env", path),
        extra={k: v for k, v in data.items() if k not in _STEP_KEYS},
    )


def job_from_dict(job_id: str, data: Any, *, path: Optional[Path] = None) -> Job:
    if not isinstance(data, dict):
        raise WorkflowError(path, f"jobs.{job_id} must be a mapping, got {data!r}")
    data = {str(k): v for k, v in data.items()}

    runs_on = data.get("runs-on")
    if isinstance(runs_on, list):
        runs_on = _str_list(runs_on, f"jobs.{job_id}.runs-on", path)
    elif isinstance(runs_on, dict):
        # runner groups: kept as written
        runs_on = {str(k): v for k, v in runs_on.items()}
    elif runs_on is not None:
        runs_on = str(runs_on)

    raw_steps = data.get("steps")
    if raw_steps is None:
        raw_steps = []
    if not isinstance(raw_steps, list):
        raise WorkflowError(path, f"jobs.{job_id}.steps must be a list")

    needs = data.get("needs")
    return Job(
        id=job_id,
        runs_on=runs_on,
        steps=[step_from_dict(s, job_id=job_id, path=path) for s in raw_steps],
        name=None if data.get("name") is None else str(data["name"]),
        needs=[] if needs is None else _str_list(needs, f"jobs.{job_id}.needs", path),
        env=_mapping(data.get("env"), f"jobs.{job_id}.env", path),
        timeout_minutes=data.get("timeout-minutes"),
        extra={k: v for k, v in data.items() if k not in _JOB_KEYS},
    )


def pipeline_from_dict(data: Any, *, path: Optional[Path] = None) -> Pipeline:
    if not isinstance(data, dict):
        raise WorkflowError(path, "workflow must be a mapping at the top level")

    # tolerate dicts produced by a plain yaml.safe_load (`on` -> True)
    data = {("on" if k is True else str(k)): v for k, v in data.items()}

    jobs = _mapping(data.get("jobs"), "jobs", path)
    return Pipeline(
        name=None if data.get("name") is None else str(data["name"]),
        triggers=triggers_from(data.get("on"), path),
        jobs=[job_from_dict(job_id, j, path=path) for job_id, j in jobs.items()],
        env=_mapping(data.get("env"), "env", path),
        extra={k: v for k, v in data.items() if k not in _PIPELINE_KEYS},
    )


# ---------------------------------------------------------------------
# model -> dict
# ---------------------------------------------------------------------

def _trigger_config(t: Trigger) -> Any:
    if t.config is not None:
        return t.config
    out: Dict[str, Any] = {}
    for key, attr in _TRIGGER_FILTERS.items():
        value = getattr(t, attr)
        if value is not None:
            out[key] = list(value)
    out.update(t.extra)
    return out or None


def triggers_to_value(triggers: List[Trigger]) -> Any:
    if all(not t.has_filters and t.config is None and not t.extra for t in triggers):
        return _FlowList(t.event for t in triggers)
    return {t.event: _trigger_config(t) for t in triggers}


def step_to_dict(step: Step) -> Dict[str, Any]:
    d: Dict[str, Any] = {}
    if step.name is not None:
        d["name"] = step.name
    if step.uses is not None:
        d["uses"] = step.uses
    if step.with_:
        d["with"] = dict(step.with_)
    if step.shell is not None:
        d["shell"] = step.shell
    if step.working_directory is not None:
        d["working-directory"] = step.working_directory
    if step.env:
        d["env"] = dict(step.env)
    if step.run is not None:
        d["run"] = step.run
    d.update(step.extra)
    return d


def job_to_dict(job: Job) -> Dict[str, Any]:
    d: Dict[str, Any] = {}
    if job.name is not None:
        d["name"] = job.name
    if job.runs_on is not None:
        if isinstance(job.runs_on, list):
            d["runs-on"] = list(job.runs_on)
        elif isinstance(job.runs_on, dict):
            d["runs-on"] = dict(job.runs_on)
        else:
            d["runs-on"] = job.runs_on
    if job.needs:
        d["needs"] = list(job.needs)
    if job.timeout_minutes is not None:
        d["timeout-minutes"] = job.timeout_minutes
    if job.env:
        d["env"] = dict(job.env)
    d["steps"] = [step_to_dict(s) for s in job.steps]
    d.update(job.extra)
    return d


def pipeline_to_dict(p: Pipeline) -> Dict[str, Any]:
    d: Dict[str, Any] = {}
    if p.name is not None:
        d["name"] = p.name
    d["on"] = triggers_to_value(p.triggers)
    if p.env:
        d["env"] = dict(p.env)
    d["jobs"] = {j.id: job_to_dict(j) for j in p.jobs}
    d.update(p.extra)
    return d


# ---------------------------------------------------------------------
# Text / file entry points
# ---------------------------------------------------------------------

def parse_pipeline(text: str, *, path: Optional[Path] = None) -> Pipeline:
    try:
        data = yaml.load(text, Loader=_WorkflowLoader)
    except yaml.YAMLError as e:
        raise WorkflowError(path, f"invalid YAML: {e}") from e
    if data is None:
        raise WorkflowError(path, "workflow file is empty")
    return pipeline_from_dict(data, path=path)


def dump_pipeline(p: Pipeline) -> str:
    return yaml.dump(
        pipeline_to_dict(p),
        Dumper=_WorkflowDumper,
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
        width=4096,
    )


def comment_starts(text: str) -> List[int]:
    """
    Offsets of every `#` that opens a YAML comment.

    A `#` inside a scalar (quoted, plain or a `|` block) is content, so
    scalar token spans are masked out first. The text must be valid YAML.
    """
    inside = [False] * len(text)
    for token in yaml.scan(text, Loader=_WorkflowLoader):
        if isinstance(token, yaml.ScalarToken):
            start, end = token.start_mark.index, token.end_mark.index
            inside[start:end] = [True] * (end - start)

    starts: List[int] = []
    i = 0
    while i < len(text):
        if text[i] == "#" and not inside[i]:
            starts.append(i)
            newline = text.find("\n", i)
            i = len(text) if newline == -1 else newline
        else:
            i += 1
    return starts


def strip_comments(text: str) -> str:
    """Drop comments; lines that held nothing else are dropped entirely."""
    starts = comment_starts(text)
    if not starts:
        return text

    out: List[str] = []
    line_start = 0
    pending = iter(starts)
    cut = next(pending, None)
    for line in text.splitlines(keepends=True):
        line_end = line_start + len(line)
        if cut is None or cut >= line_end:
            out.append(line)
        else:
            body = line[: cut - line_start].rstrip()
            if body:
                out.append(body + line[len(line.rstrip("\r\n")):])
            cut = next(pending, None)
        line_start = line_end
    return "".join(out)


def is_canonical(text: str, *, path: Optional[Path] = None) -> bool:
    """
    True if `text` is what dump_pipeline would write for it, ignoring
    comments (dump_pipeline cannot write them).
    """
    canonical = dump_pipeline(parse_pipeline(text, path=path))
    return canonical == strip_comments(text)


def load_pipeline(path: str | Path) -> Pipeline:
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise WorkflowError(p, "workflow file not found") from e
    return parse_pipeline(text, path=p)


def save_pipeline(p: Pipeline, path: str | Path) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(dump_pipeline(p), encoding="utf-8")
    return out


# ---------------------------------------------------------------------
# Workflow loading (YAML or Python)
# ---------------------------------------------------------------------

def load_workflow(path: str | Path) -> Pipeline:
    """
    Load a pipeline from a workflow file.

      - .yml / .yaml: parsed with the codec above
      - .py: must define workflow() -> Pipeline | List[Job],
             or PIPELINE = Pipeline(...), or JOBS = [Job, ...]
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise WorkflowError(wf_path, "workflow file not found")

    if wf_path.suffix in (".yml", ".yaml"):
        return load_pipeline(wf_path)
    if wf_path.suffix != ".py":
        raise WorkflowError(wf_path, f"unsupported workflow type {wf_path.suffix!r} (use .yml, .yaml or .py)")

    module_name = f"ghflow_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    result: Any = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        try:
            result = globals_dict["workflow"]()
        except TypeError as e:
            if "positional argument" in str(e):
                raise WorkflowError(
                    wf_path,
                    "workflow() is being called with arguments (name collision with a helper). "
                    "Use `wf` instead: `from ghflow import wf` then `def workflow(): return wf(...)`",
                ) from e
            raise
    elif "PIPELINE" in globals_dict:
        result = globals_dict["PIPELINE"]
    elif "JOBS" in globals_dict:
        result = globals_dict["JOBS"]

    if isinstance(result, Pipeline):
        return result
    if isinstance(result, list) and result and all(isinstance(j, Job) for j in result):
        return Pipeline(name=wf_path.stem, triggers=[Trigger(event="pull_request")], jobs=result)

    raise WorkflowError(
        wf_path,
        "workflow must define workflow() -> Pipeline | List[Job], PIPELINE = Pipeline(...) or JOBS = [Job, ...]",
    )
