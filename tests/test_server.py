"""Tests for the HTTP trigger / report API."""

import pytest
from fastapi.testclient import TestClient

from pipewright.dsl import job, wf
from pipewright.server import create_app

from conftest import step


@pytest.fixture
def client(engine):
    definition = wf(
        job("lint", step("ruff")),
        job("test", step("pytest", exit=1), needs=["lint"]),
        job("docs", step("build"), needs=["test"]),
        name="ci",
        on=["push"],
    )
    return TestClient(create_app(definition, engine))


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "workflow": "ci"}


def test_event_starts_a_run(client):
    response = client.post("/events", json={"event": "push", "context": {"ref": "main"}})
    assert response.status_code == 202
    body = response.json()
    assert body["started"] is True
    assert body["workflow"] == "ci"

    # background tasks have completed once TestClient returns
    report = client.get(f"/runs/{body['run_id']}").json()
    assert report["overall"] == "failed"
    assert report["provisional"] is False
    assert report["event"] == "push"
    assert [j["status"] for j in report["jobs"]] == ["succeeded", "failed", "skipped"]


def test_event_not_declared(client):
    response = client.post("/events", json={"event": "schedule"})
    assert response.status_code == 200
    assert response.json() == {"started": False, "run_id": None, "workflow": "ci"}
    assert client.get("/runs").json() == []


def test_list_runs(client):
    run_id = client.post("/events", json={"event": "push"}).json()["run_id"]
    runs = client.get("/runs").json()
    assert runs == [{
        "run_id": run_id,
        "workflow": "ci",
        "event": "push",
        "status": "failed",
        "cancelled": False,
    }]


def test_unknown_run(client):
    assert client.get("/runs/nope").status_code == 404
    assert client.post("/runs/nope/cancel").status_code == 404


def test_cancel_finished_run_conflicts(client):
    run_id = client.post("/events", json={"event": "push"}).json()["run_id"]
    assert client.post(f"/runs/{run_id}/cancel").status_code == 409


def test_invalid_event_body(client):
    assert client.post("/events", json={"context": {}}).status_code == 422
