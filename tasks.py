"""Developer tasks for canvasboot, powered by Invoke."""

from __future__ import annotations

import os
import pathlib
import subprocess
from typing import Iterable, List

from invoke import task

ROOT = pathlib.Path(__file__).parent.resolve()
ENV = {**os.environ, "PYTHONPATH": str(ROOT / "src")}
RESULTS_DIR = ROOT / "results"


def _run(command: Iterable[str] | str) -> None:
    cmd = command if isinstance(command, str) else " ".join(command)
    subprocess.run(cmd, shell=True, check=True, cwd=ROOT, env=ENV)


def _pytest_args(fast: bool) -> List[str]:
    args = ["tests/"]
    if fast:
        # skip tests that assert on wall-clock delays
        args += ["-m", "'not timing'"]
    return args


@task(help={"fast": "Skip wall-clock timing tests."})
def tests(_context, fast=False):
    """Run the test suite without coverage."""
    _run(["uv", "run", "pytest", *_pytest_args(fast)])


@task
def coverage(_context):
    """Run the tests under coverage and write reports to results/."""
    RESULTS_DIR.mkdir(exist_ok=True)
    _run(["uv", "run", "coverage", "erase"])
    _run(
        [
            "uv", "run", "coverage", "run", "--source=src/canvasboot",
            "-m", "pytest", "tests/", "--junitxml=results/pytest.xml",
        ]
    )
    _run(["uv", "run", "coverage", "report", "--show-missing"])
    _run(["uv", "run", "coverage", "html", "-d", "results/htmlcov"])
    _run(["uv", "run", "coverage", "xml", "-o", "results/coverage.xml"])


@task
def lint(_context):
    """Check formatting and types."""
    _run(["uv", "run", "black", "--check", "src", "tests", "tasks.py"])
    _run(["uv", "run", "mypy", "src/canvasboot"])


@task(help={"manifest": "YAML boot manifest to load.", "transport": "stdio, http or sse."})
def serve(_context, manifest="", transport="stdio"):
    """Start the diagnostics server and boot the canvas application."""
    command = ["uv", "run", "canvasboot", "--transport", transport]
    if manifest:
        command += ["--manifest", manifest]
    _run(command)


@task
def build(_context):
    """Build distribution artifacts."""
    _run(["uv", "build"])
