# cli.py
from __future__ import annotations

import sys
from pathlib import Path

import click

from ghflow import settings
from ghflow.codec import comment_starts, dump_pipeline, is_canonical, load_workflow, parse_pipeline, save_pipeline
from ghflow.dag import stages
from ghflow.errors import PipelineInvalid, WorkflowError
from ghflow.events import Event, pull_request_event
from ghflow.platforms import describe_runner
from ghflow.presets import PRESET_RULES, PRESETS
from ghflow.runner import any_failed, run_pipeline, select_jobs
from ghflow.ui.console import Console, get_console, set_console
from ghflow.validate import errors_of, validate_pipeline


def find_workflow_files(root: Path = Path(".")) -> list[Path]:
    """
    Find candidate workflow files: .github/workflows/*.yml|*.yaml first,
    then ghflow_workflow.py / *_workflow.py in `root`.
    """
    wf_dir = root / settings.WORKFLOWS_DIR
    found: list[Path] = []
    if wf_dir.is_dir():
        found.extend(sorted(wf_dir.glob("*.yml")) + sorted(wf_dir.glob("*.yaml")))
    if found:
        return found

    default_workflow = root / settings.DEFAULT_PY_WORKFLOW
    if default_workflow.exists():
        found.append(default_workflow)
    for path in sorted(root.glob("*_workflow.py")):
        if path != default_workflow:
            found.append(path)
    return found


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Resolve the workflow file from --workflow or by discovery.

    Raises:
        SystemExit: if no file, or more than one candidate, is found
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  ghflow run --workflow .github/workflows/ci.yml",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=[
                "Looked for:",
                f"  {settings.WORKFLOWS_DIR}/*.yml",
                f"  {settings.WORKFLOWS_DIR}/*.yaml",
                f"  {settings.DEFAULT_PY_WORKFLOW}",
                "  *_workflow.py",
            ],
            suggestion="Create one from a preset:\n  ghflow init --preset rust\n\nOr specify a workflow explicitly:\n  ghflow run --workflow my_workflow.yml",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion=f"Specify a workflow explicitly:\n  ghflow run --workflow {workflow_files[0]}",
        )
        sys.exit(1)

    return workflow_files[0]


def _load(workflow: str | None):
    path = discover_workflow(workflow)
    return path, load_workflow(path)


def _check_only(pipeline, only) -> None:
    """Exit with a suggestion when --job names a job the workflow lacks."""
    unknown = [job_id for job_id in only if job_id not in pipeline.job_ids]
    if not unknown:
        return
    console = get_console()
    console.print_error(
        "Unknown job",
        f"No job named {', '.join(repr(j) for j in unknown)} in this workflow.",
        suggestion="Pick one of:\n" + "\n".join(f"  --job {j}" for j in pipeline.job_ids),
    )
    sys.exit(1)


def _fail(exc: BaseException) -> None:
    console = get_console()
    if isinstance(exc, PipelineInvalid):
        console.print_error("Invalid pipeline", str(exc).split(":")[0])
        console.print_issues(errors_of(exc.issues))
    elif isinstance(exc, WorkflowError):
        console.print_error("Could not load workflow", str(exc))
    else:
        console.print_exception(exc)
    sys.exit(1)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    envvar="GHFLOW_DEBUG",
    help="Enable debug mode (show stack traces and step output)",
)
@click.pass_context
def cli(ctx, debug):
    """ghflow: parse, check and run CI workflow definitions locally."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


workflow_option = click.option(
    "--workflow",
    default=None,
    envvar="GHFLOW_WORKFLOW",
    help="Workflow file (.yml/.yaml/.py); discovered when omitted",
)


@cli.command()
@workflow_option
@click.option("--event", default=settings.DEFAULT_EVENT, show_default=True, help="Event to simulate")
@click.option("--compare-ref", default=settings.COMPARE_REF, envvar="GHFLOW_COMPARE_REF", show_default=True, help="Base ref of the simulated pull request")
@click.option("--workers", default=None, envvar="GHFLOW_WORKERS", type=int, help="Max parallel jobs (default: all runnable jobs)")
@click.option("--all-platforms", is_flag=True, default=False, help="Run every job on this host regardless of runs-on")
@click.option("--job", "only", multiple=True, help="Run only this job (and what it needs); repeatable")
@click.option("--strict-actions", is_flag=True, default=False, help="Fail on `uses:` actions with no local handler")
@click.option("--fail-fast/--no-fail-fast", default=False, show_default=True, help="Stop scheduling new jobs after the first failure")
@click.pass_context
def run(ctx, workflow, event, compare_ref, workers, all_platforms, only, strict_actions, fail_fast):
    """Run a workflow locally."""
    console = get_console()

    try:
        path, pipeline = _load(workflow)
        _check_only(pipeline, only)
        if event.startswith("pull_request"):
            ev = pull_request_event(compare_ref, name=event)
        else:
            ev = Event(name=event)
        console.print_debug(f"event: {ev}")

        console.print_run_started(
            workflow=str(path),
            event=ev.name,
            job_count=len(pipeline.jobs),
            repository=Path(".").resolve().name,
        )

        results = run_pipeline(
            pipeline,
            ev,
            workspace=".",
            max_workers=workers,
            all_platforms=all_platforms,
            only=list(only) or None,
            strict_actions=strict_actions,
            fail_fast=fail_fast,
        )
        console.print_results(results)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        _fail(e)
        return

    if any_failed(results):
        sys.exit(1)


@cli.command()
@workflow_option
@click.option("--preset", type=click.Choice(sorted(PRESETS)), default=None, help="Also check the preset's step-ordering rules")
@click.pass_context
def validate(ctx, workflow, preset):
    """Check a workflow's structure."""
    console = get_console()
    try:
        path, pipeline = _load(workflow)
    except WorkflowError as e:
        _fail(e)
        return

    issues = validate_pipeline(pipeline, PRESET_RULES.get(preset, []))
    console.print_issues(issues)
    errors = errors_of(issues)
    if errors:
        console.print_info(f"{path}: {len(errors)} error(s), {len(issues) - len(errors)} warning(s)")
        sys.exit(1)
    console.print_info(f"{path}: OK ({len(issues)} warning(s))")


@cli.command()
@workflow_option
@click.option("--check", is_flag=True, default=False, help="Only report whether the file is canonical (comments are ignored)")
@click.option("--strip-comments", is_flag=True, default=False, help="Allow rewriting a file that has comments; they are dropped")
@click.pass_context
def fmt(ctx, workflow, check, strip_comments):
    """Rewrite a YAML workflow in canonical form."""
    console = get_console()
    path = discover_workflow(workflow)
    if path.suffix not in (".yml", ".yaml"):
        console.print_error("Not a YAML workflow", f"{path} is a {path.suffix} file; fmt only handles YAML.")
        sys.exit(1)

    try:
        text = path.read_text(encoding="utf-8")
        if is_canonical(text, path=path):
            console.print_info(f"{path}: already formatted")
            return
        if check:
            console.print_error("Not formatted", f"{path} differs from its canonical form.", suggestion=f"Run:\n  ghflow fmt --workflow {path}")
            sys.exit(1)
        if comment_starts(text) and not strip_comments:
            console.print_error(
                "Comments would be lost",
                f"{path} has comments, and the canonical form cannot keep them.",
                suggestion=f"Remove them first, or drop them explicitly:\n  ghflow fmt --workflow {path} --strip-comments",
            )
            sys.exit(1)
        path.write_text(dump_pipeline(parse_pipeline(text, path=path)), encoding="utf-8")
        console.print_info(f"{path}: reformatted")
    except WorkflowError as e:
        _fail(e)


@cli.command()
@workflow_option
@click.option("--event", default=settings.DEFAULT_EVENT, show_default=True, help="Event to simulate")
@click.option("--compare-ref", default=settings.COMPARE_REF, envvar="GHFLOW_COMPARE_REF", show_default=True, help="Base ref of the simulated pull request")
@click.option("--all-platforms", is_flag=True, default=False, help="Plan every job regardless of runs-on")
@click.option("--job", "only", multiple=True, help="Plan only this job (and what it needs); repeatable")
@click.pass_context
def plan(ctx, workflow, event, compare_ref, all_platforms, only):
    """Show stages and which jobs would run, without running them."""
    console = get_console()
    try:
        path, pipeline = _load(workflow)
        _check_only(pipeline, only)
        ev = pull_request_event(compare_ref, name=event) if event.startswith("pull_request") else Event(name=event)
        job_stages = stages(pipeline.jobs)
        selection = select_jobs(pipeline, event=ev, all_platforms=all_platforms, only=list(only) or None)
    except Exception as e:
        _fail(e)
        return

    console.print_header(f"Plan for {path} ({ev.name})")
    console.print_stages(job_stages)
    for job in pipeline.jobs:
        reason = selection[job.id]
        if reason is None:
            console.print_plan_job(job.id, f"runs-on {describe_runner(job.runs_on)}")
        else:
            console.print_plan_job_skipped(job.id, reason)


@cli.command()
@click.option("--preset", type=click.Choice(sorted(PRESETS)), default="rust", show_default=True)
@click.option("--output", default=f"{settings.WORKFLOWS_DIR}/ci.yml", show_default=True, help="Where to write the workflow")
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing file")
def init(preset, output, force):
    """Write a preset workflow."""
    console = get_console()
    out = Path(output)
    if out.exists() and not force:
        console.print_error("File exists", f"{out} already exists.", suggestion=f"Use --force to overwrite:\n  ghflow init --preset {preset} --output {out} --force")
        sys.exit(1)
    save_pipeline(PRESETS[preset](), out)
    console.print_info(f"Wrote {preset} workflow to {out}")


if __name__ == "__main__":
    cli()
