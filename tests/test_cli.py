import shutil
import sys
from pathlib import Path

import pytest
from click.testing import CliRunner

from ghflow.cli import cli, find_workflow_files
from ghflow.codec import load_pipeline
from ghflow.platforms import host_platform
from ghflow.presets import rust_ci

FIXTURE = Path(__file__).parent / "fixtures" / "rust_ci.yaml"
HOST_RUNNER = {"linux": "ubuntu-latest", "macos": "macos-latest", "windows": "windows-latest"}[host_platform()]

posix_only = pytest.mark.skipif(
    sys.platform.startswith("win") or shutil.which("sh") is None,
    reason="workflow steps use POSIX sh",
)


@pytest.fixture
def runner(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for var in ("GHFLOW_WORKFLOW", "GHFLOW_WORKERS", "GHFLOW_COMPARE_REF", "GHFLOW_DEBUG"):
        monkeypatch.delenv(var, raising=False)
    return CliRunner()


def write(path: str, text: str) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text, encoding="utf-8")
    return p


def test_init_writes_preset(runner):
    result = runner.invoke(cli, ["init"])
    assert result.exit_code == 0, result.output
    assert load_pipeline(".github/workflows/ci.yml") == rust_ci()

    again = runner.invoke(cli, ["init"])
    assert again.exit_code == 1
    assert runner.invoke(cli, ["init", "--force"]).exit_code == 0


def test_validate_preset_rules(runner):
    runner.invoke(cli, ["init"])
    result = runner.invoke(cli, ["validate", "--preset", "rust"])
    assert result.exit_code == 0, result.output
    assert "OK" in result.output


def test_validate_reports_errors(runner):
    write("ci.yml", "on: [pull_request]\njobs:\n  a:\n    steps: []\n")
    result = runner.invoke(cli, ["validate", "--workflow", "ci.yml"])
    assert result.exit_code == 1
    assert "E003" in result.output
    assert "E004" in result.output


def test_fmt_check_and_rewrite(runner):
    write(".github/workflows/ci.yaml", FIXTURE.read_text(encoding="utf-8"))

    check = runner.invoke(cli, ["fmt", "--check"])
    assert check.exit_code == 1

    rewrite = runner.invoke(cli, ["fmt"])
    assert rewrite.exit_code == 0, rewrite.output
    assert "reformatted" in rewrite.output

    assert runner.invoke(cli, ["fmt", "--check"]).exit_code == 0
    assert load_pipeline(".github/workflows/ci.yaml") == rust_ci()


def test_plan_lists_jobs(runner):
    runner.invoke(cli, ["init"])
    result = runner.invoke(cli, ["plan", "--all-platforms"])
    assert result.exit_code == 0, result.output
    assert "Stage 1: build-linux, build-macosx, build-windows, quality" in result.output
    assert "quality (runs-on ubuntu-latest)" in result.output


def test_discovery_errors(runner):
    assert find_workflow_files() == []
    assert runner.invoke(cli, ["validate"]).exit_code == 1

    write(".github/workflows/a.yml", "on: [push]\n")
    write(".github/workflows/b.yml", "on: [push]\n")
    assert len(find_workflow_files()) == 2
    assert runner.invoke(cli, ["validate"]).exit_code == 1

    assert runner.invoke(cli, ["validate", "--workflow", "nope.yml"]).exit_code == 1


def test_python_workflow_is_discovered(runner):
    write(
        "ghflow_workflow.py",
        "from ghflow import wf, job, sh\n"
        "def workflow():\n"
        f"    return wf(job('hello', sh('hi', 'echo hi'), runs_on='{HOST_RUNNER}'))\n",
    )
    result = runner.invoke(cli, ["validate"])
    assert result.exit_code == 0, result.output


@posix_only
def test_run_success_and_failure(runner):
    write(
        "ok.yml",
        "on: [pull_request]\n"
        "jobs:\n"
        "  hello:\n"
        f"    runs-on: {HOST_RUNNER}\n"
        "    steps:\n"
        "      - uses: actions/checkout@v2\n"
        "      - name: Write\n"
        "        run: echo hello > out.txt\n",
    )
    result = runner.invoke(cli, ["run", "--workflow", "ok.yml"])
    assert result.exit_code == 0, result.output
    assert Path("out.txt").read_text().strip() == "hello"
    assert "hello: SUCCESS" in result.output

    write(
        "bad.yml",
        "on: [pull_request]\n"
        "jobs:\n"
        "  broken:\n"
        "    runs-on: ubuntu-latest\n"
        "    steps:\n"
        "      - run: exit 4\n",
    )
    result = runner.invoke(cli, ["run", "--workflow", "bad.yml", "--all-platforms"])
    assert result.exit_code == 1
    assert "broken: FAILED" in result.output


def test_run_rejects_invalid_workflow(runner):
    write("bad.yml", "on: [pull_request]\njobs:\n  a:\n    runs-on: ubuntu-latest\n")
    result = runner.invoke(cli, ["run", "--workflow", "bad.yml"])
    assert result.exit_code == 1


def test_run_other_event_skips(runner):
    runner.invoke(cli, ["init"])
    result = runner.invoke(cli, ["run", "--event", "push"])
    assert result.exit_code == 0, result.output
    assert "SKIPPED(TRIGGER)" in result.output


def test_fmt_keeps_comments_unless_told_otherwise(runner):
    original = (
        "# Keep in sync with release.yml\n"
        "on: [pull_request]\n"
        "jobs:\n"
        "\n"
        "  a:\n"
        "    runs-on: ubuntu-latest  # pinned\n"
        "    steps:\n"
        "      - run: echo\n"
    )
    path = write("ci.yml", original)

    result = runner.invoke(cli, ["fmt", "--workflow", "ci.yml"])
    assert result.exit_code == 1
    assert "Comments would be lost" in result.output
    assert path.read_text(encoding="utf-8") == original

    result = runner.invoke(cli, ["fmt", "--workflow", "ci.yml", "--strip-comments"])
    assert result.exit_code == 0, result.output
    assert "#" not in path.read_text(encoding="utf-8")


def test_fmt_check_ignores_comments(runner):
    write("ci.yml", "# reference\non: [pull_request]\njobs:\n  a:\n    runs-on: ubuntu-latest  # pinned\n    steps:\n      - run: echo\n")
    result = runner.invoke(cli, ["fmt", "--workflow", "ci.yml", "--check"])
    assert result.exit_code == 0, result.output
    assert "already formatted" in result.output


def test_unknown_job_is_reported(runner):
    runner.invoke(cli, ["init"])
    for command in ("run", "plan"):
        result = runner.invoke(cli, [command, "--job", "nope"])
        assert result.exit_code == 1
        assert "Unknown job" in result.output
        assert "--job build-linux" in result.output
        assert "KeyError" not in result.output
