# pipewright_workflow.py
# Workflow for pipewright itself: lint, format check, tests.
# Jobs run in fresh workspaces, so each one checks the repository out first.
from __future__ import annotations

from pipewright import checkout_step, job, sh, wf


def workflow():
    return wf(
        job(
            "lint",
            checkout_step(),
            sh("Ruff check", "ruff check src tests"),
            title="Lint",
            requires=["ruff"],
        ),

        job(
            "format-check",
            checkout_step(),
            sh("Ruff format check", "ruff format --check src tests"),
            title="Format",
            requires=["ruff"],
        ),

        # Tests only after the code is clean
        job(
            "test",
            checkout_step(),
            sh("Install package", "pip install -e '.[test]'"),
            sh("Run pytest", "pytest -q"),
            needs=["lint", "format-check"],
            title="Tests",
        ),
        name="pipewright",
        on=["push", "pull_request"],
    )
