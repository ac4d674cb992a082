"""Tests for the Python workflow helpers."""

import pytest

from pipewright import build, cargo_step, checkout_step, job, sh, toolchain_step, uses, wf
from pipewright.errors import DuplicateJobName, UnknownDependency


def test_sh_step():
    s = sh("Tests", "pytest -q", cwd="pkg")
    assert s.action == "run"
    assert s.params == {"run": "pytest -q", "working-directory": "pkg"}


def test_uses_turns_underscores_into_dashes():
    s = uses("actions/checkout@v2", fetch_depth=1)
    assert s.name == "actions/checkout@v2"
    assert s.params == {"fetch-depth": 1}


def test_uses_params_keep_their_underscores():
    s = uses("acme/thing@v1", params={"max_retries": 3}, fetch_depth=1)
    assert s.params == {"fetch-depth": 1, "max_retries": 3}


def test_step_helpers_for_builtin_actions():
    assert checkout_step(submodules=True).params == {"submodules": "true"}
    assert toolchain_step(toolchain="nightly", components=["rustfmt", "clippy"]).params == {
        "profile": "minimal",
        "toolchain": "nightly",
        "override": True,
        "components": "rustfmt, clippy",
    }
    assert cargo_step("Build", "build", "--release").params == {"command": "build", "args": "--release"}


def test_job_collects_steps_in_order():
    j = job("x", sh("a", "true"), steps_list=[sh("first", "true")], needs=["y"], env={"N": 1})
    assert [s.name for s in j.steps] == ["first", "a"]
    assert j.needs == ("y",)
    assert j.env == {"N": "1"}


def test_builder():
    j = (
        build("test")
        .titled("Tests")
        .depends_on("lint")
        .define_requirements("pytest")
        .define_step("Run", "pytest -q")
        .with_env(CI=True)
        .runs_on("ubuntu-latest")
        .build()
    )
    assert j.display_name == "Tests"
    assert j.needs == ("lint",)
    assert j.requires == ("pytest",)
    assert j.runs_on == "ubuntu-latest"
    assert j.env == {"CI": "True"}
    assert j.steps[0].params == {"run": "pytest -q"}


def test_wf_validates():
    definition = wf(job("a"), job("b", needs=["a"]), name="demo", on=["push"])
    assert definition.name == "demo"
    assert definition.triggers == frozenset({"push"})

    with pytest.raises(DuplicateJobName):
        wf(job("a"), job("a"))
    with pytest.raises(UnknownDependency):
        wf(job("a", needs=["ghost"]))
