# ghflow_workflow.py
# Checks for ghflow itself: lint, format, tests, and the bundled preset.
from __future__ import annotations
from ghflow import wf, job, sh, checkout


def workflow():
    return wf(
        job(
            "lint",
            checkout(),
            sh("Ruff check", "ruff check src tests"),
            runs_on="ubuntu-latest",
        ),
        job(
            "format-check",
            checkout(),
            sh("Ruff format check", "ruff format --check src tests"),
            runs_on="ubuntu-latest",
        ),
        job(
            "test",
            checkout(),
            sh("Install package", "python -m pip install -e '.[test]'"),
            sh("Run pytest", "python -m pytest -q"),
            runs_on="ubuntu-latest",
            needs=["lint"],
        ),
        job(
            "preset-check",
            checkout(),
            sh("Validate rust preset", "ghflow init --output /tmp/ghflow-ci.yml --force\nghflow validate --workflow /tmp/ghflow-ci.yml --preset rust\n"),
            runs_on="ubuntu-latest",
            needs=["test"],
        ),
    )
