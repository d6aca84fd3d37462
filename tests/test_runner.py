"""Tests for local pipeline execution."""

import shutil
import sys

import pytest

from ghflow import runner
from ghflow.actions import run_action
from ghflow.codec import parse_pipeline
from ghflow.dsl import checkout, job, pipeline, sh, uses
from ghflow.errors import CIError, PipelineInvalid, StepFailure
from ghflow.events import Event
from ghflow.model import Job, Pipeline, Step
from ghflow.platforms import host_platform
from ghflow.runner import run_job, run_pipeline, select_jobs, shell_command

pytestmark = pytest.mark.skipif(
    sys.platform.startswith("win") or shutil.which("sh") is None,
    reason="runner tests use POSIX shell commands",
)

HOST_RUNNER = {"linux": "ubuntu-latest", "macos": "macos-latest", "windows": "windows-latest"}[host_platform()]


def here(name, *steps, **kwargs):
    """A job that runs on this machine."""
    return job(name, *steps, runs_on=HOST_RUNNER, **kwargs)


def run(p, tmp_path, console, **kwargs):
    return run_pipeline(p, workspace=tmp_path, console=console, **kwargs)


# -------------------------------------------------------------------------
# Steps
# -------------------------------------------------------------------------

def test_steps_run_in_order_in_workspace(tmp_path, console):
    p = pipeline(
        here(
            "a",
            sh("one", "echo one >> log.txt"),
            sh("two", "echo two >> log.txt"),
            sh("three", "echo three >> log.txt"),
        )
    )
    assert run(p, tmp_path, console) == {"a": "ok"}
    assert (tmp_path / "log.txt").read_text().split() == ["one", "two", "three"]


def test_first_failing_step_stops_the_job(tmp_path, console):
    p = pipeline(
        here(
            "a",
            sh("before", "touch before"),
            sh("boom", "echo broken >&2; exit 3"),
            sh("after", "touch after"),
        )
    )
    assert run(p, tmp_path, console) == {"a": "failed"}
    assert (tmp_path / "before").exists()
    assert not (tmp_path / "after").exists()
    assert "STEP FAILED: a / boom" in console.text
    assert "Exit code: 3" in console.text
    assert "broken" in console.text


def test_run_job_raises_step_failure(tmp_path, console):
    p = pipeline(here("a", sh("boom", "exit 2")))
    with pytest.raises(StepFailure) as exc:
        run_job(p, p.jobs[0], tmp_path, console=console)
    assert exc.value.exit_code == 2
    assert exc.value.step == "boom"


def test_multiline_run_is_one_script(tmp_path, console):
    p = pipeline(here("a", sh("script", "X=hello\necho $X > out.txt\n", shell="sh")))
    run(p, tmp_path, console)
    assert (tmp_path / "out.txt").read_text().strip() == "hello"


def test_multiline_run_stops_on_error(tmp_path, console):
    p = pipeline(here("a", sh("script", "false\ntouch reached\n", shell="sh")))
    assert run(p, tmp_path, console) == {"a": "failed"}
    assert not (tmp_path / "reached").exists()


def test_env_layers_and_working_directory(tmp_path, console):
    (tmp_path / "sub").mkdir()
    p = Pipeline(
        name="CI",
        triggers=pipeline(here("x", sh(None, "true"))).triggers,
        jobs=[
            here(
                "a",
                sh("env", 'echo "$CI $LEVEL $JOBVAR $STEPVAR $FLAG" > env.txt', cwd="sub", env={"STEPVAR": "s", "LEVEL": "step"}),
                env={"JOBVAR": "j", "LEVEL": "job"},
            )
        ],
        env={"LEVEL": "pipeline", "FLAG": False},
    )
    assert run(p, tmp_path, console) == {"a": "ok"}
    assert (tmp_path / "sub" / "env.txt").read_text().split() == ["true", "step", "j", "s", "false"]


def test_missing_working_directory(tmp_path, console):
    p = pipeline(here("a", sh("x", "true", cwd="nope")))
    assert run(p, tmp_path, console) == {"a": "failed"}
    assert "working directory not found" in console.text


def test_job_timeout(tmp_path, console):
    p = pipeline(here("slow", sh("sleep", "sleep 5"), timeout_minutes=0.01))
    assert run(p, tmp_path, console) == {"slow": "failed"}
    assert "timed out" in console.text


def test_shell_command_forms():
    assert shell_command("bash", "x")[0][:2] == ["bash", "--noprofile"]
    assert shell_command("sh", "x")[0] == ["sh", "-e", "-c", "x"]
    argv, script = shell_command("perl {0}", "print 1")
    try:
        assert argv[0] == "perl" and argv[1] == str(script)
        assert script.read_text() == "print 1"
    finally:
        script.unlink()
    with pytest.raises(CIError):
        shell_command("fish", "x")


# -------------------------------------------------------------------------
# Actions
# -------------------------------------------------------------------------

def test_checkout_uses_local_workspace(tmp_path, console):
    p = pipeline(here("a", checkout(), sh("Build", "true")))
    assert run(p, tmp_path, console) == {"a": "ok"}
    assert "using local workspace" in console.text


def test_unknown_action_is_skipped_unless_strict(tmp_path, console):
    p = pipeline(here("a", uses("someone/deploy@v1"), sh("after", "touch after")))
    assert run(p, tmp_path, console) == {"a": "ok"}
    assert (tmp_path / "after").exists()

    (tmp_path / "after").unlink()
    assert run(p, tmp_path, console, strict_actions=True) == {"a": "failed"}
    assert not (tmp_path / "after").exists()


# -------------------------------------------------------------------------
# Scheduling
# -------------------------------------------------------------------------

def test_sibling_jobs_are_unaffected_by_a_failure(tmp_path, console):
    p = pipeline(
        here("bad", sh(None, "exit 1")),
        here("good", sh(None, "touch good")),
        here("after-bad", sh(None, "touch after-bad"), needs=["bad"]),
        here("after-good", sh(None, "touch after-good"), needs=["good"]),
    )
    assert run(p, tmp_path, console) == {
        "bad": "failed",
        "good": "ok",
        "after-bad": "skipped(needs)",
        "after-good": "ok",
    }
    assert not (tmp_path / "after-bad").exists()
    assert (tmp_path / "after-good").exists()


def test_fail_fast_cancels_jobs_not_yet_started(tmp_path, console):
    p = pipeline(
        here("bad", sh(None, "exit 1")),
        here("slow", sh(None, "sleep 1")),
        here("later", sh(None, "touch later"), needs=["slow"]),
    )
    results = run(p, tmp_path, console, fail_fast=True)
    assert results == {"bad": "failed", "slow": "ok", "later": "cancelled"}
    assert not (tmp_path / "later").exists()


def test_independent_jobs_run_in_parallel(tmp_path, console):
    # each job waits for the other's marker; only parallel execution finishes
    wait_for = "i=0; while [ ! -f {0} ]; do i=$((i+1)); [ $i -gt 100 ] && exit 1; sleep 0.05; done"
    p = pipeline(
        here("a", sh(None, "touch a.ready; " + wait_for.format("b.ready"))),
        here("b", sh(None, "touch b.ready; " + wait_for.format("a.ready"))),
    )
    assert run(p, tmp_path, console) == {"a": "ok", "b": "ok"}


def test_other_platforms_are_skipped(tmp_path, console):
    other = next(label for fam, label in
                 [("linux", "windows-latest"), ("windows", "ubuntu-latest"), ("macos", "ubuntu-latest")]
                 if fam == host_platform())
    p = pipeline(here("mine", sh(None, "true")), job("theirs", sh(None, "true"), runs_on=other))
    assert run(p, tmp_path, console) == {"mine": "ok", "theirs": "skipped(platform)"}
    assert run(p, tmp_path, console, all_platforms=True) == {"mine": "ok", "theirs": "ok"}


def test_event_that_does_not_fire(tmp_path, console):
    p = pipeline(here("a", sh(None, "touch ran")))
    assert run_pipeline(p, Event("push"), workspace=tmp_path, console=console) == {"a": "skipped(trigger)"}
    assert not (tmp_path / "ran").exists()


def test_only_runs_selected_jobs_and_their_needs(tmp_path, console):
    p = pipeline(
        here("lint", sh(None, "true")),
        here("test", sh(None, "true"), needs=["lint"]),
        here("docs", sh(None, "true")),
    )
    plan = select_jobs(p, only=["test"])
    assert plan == {"lint": None, "test": None, "docs": "skipped(filtered)"}
    assert run(p, tmp_path, console, only=["test"]) == {"lint": "ok", "test": "ok", "docs": "skipped(filtered)"}


def test_invalid_pipeline_is_rejected_before_running(tmp_path, console):
    p = pipeline(Job(id="a", runs_on=HOST_RUNNER, steps=[]))
    with pytest.raises(PipelineInvalid):
        run(p, tmp_path, console)


def test_command_not_found_hint(tmp_path, console):
    p = pipeline(here("a", sh("build", "cargo-does-not-exist build", shell="sh")))
    assert run(p, tmp_path, console) == {"a": "failed"}
    assert "Exit code: 127" in console.text
    assert "Hint: Install cargo-does-not-exist or fix PATH." in console.text


def test_any_failed():
    assert runner.any_failed({"a": "ok", "b": "failed"})
    assert not runner.any_failed({"a": "ok", "b": "skipped(platform)"})


# -------------------------------------------------------------------------
# Warnings and definitions that only make sense on a hosted runner
# -------------------------------------------------------------------------

def test_validation_warnings_are_printed(tmp_path, console):
    p = pipeline(job("a", sh(None, "true"), runs_on="self-hosted"))
    assert run(p, tmp_path, console, all_platforms=True) == {"a": "ok"}
    assert "WARNING: W102 [a] runner 'self-hosted' is not a known platform" in console.err.getvalue()


def test_expression_timeout_means_no_local_deadline(tmp_path, console):
    p = parse_pipeline(
        "on: [pull_request]\n"
        "jobs:\n"
        "  a:\n"
        f"    runs-on: {HOST_RUNNER}\n"
        "    timeout-minutes: ${{ inputs.t }}\n"
        "    steps:\n"
        "      - run: echo\n"
    )
    assert run(p, tmp_path, console) == {"a": "ok"}
    assert "is not evaluated locally" in console.text


def test_runner_group_jobs_start_with_a_readable_label(tmp_path, console):
    p = pipeline(job("a", sh(None, "true"), runs_on={"group": "big", "labels": [HOST_RUNNER]}))
    assert run(p, tmp_path, console) == {"a": "ok"}
    assert f"JOB STARTED: a (group big ({HOST_RUNNER}))" in console.text


def test_action_step_without_reference_is_an_error(tmp_path):
    with pytest.raises(CIError) as exc:
        run_action(here("a", sh(None, "true")), Step(name="broken"), tmp_path)
    assert exc.value.kind == "step_invalid"
