"""Scan history table and the HTTP surface."""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from engine.context import ScanContext
from engine.errors import ConfigurationError, StageError
from fakes import SUB_A, make_result, resource_id
from server.api import create_app
from server.history import InvalidTransition, ScanHistory, ScanNotFound, ScanStatus


@pytest.fixture
def history():
    return ScanHistory("sqlite://")


# ── History ───────────────────────────────────────────────────────

class TestScanHistory:

    def test_create_is_pending(self, history):
        scan_id = history.create({"key": "st"})
        row = history.get(scan_id)
        assert row["status"] == "pending"
        assert row["parameters"] == {"key": "st"}
        assert row["result"] is None

    def test_happy_path(self, history):
        scan_id = history.create({})
        history.transition(scan_id, ScanStatus.RUNNING)
        row = history.transition(scan_id, ScanStatus.COMPLETED, result={"tables": {"impacted": 2}})
        assert row["status"] == "completed"
        assert row["result"] == {"tables": {"impacted": 2}}

    @pytest.mark.parametrize("path", [
        [ScanStatus.COMPLETED],
        [ScanStatus.RUNNING, ScanStatus.PENDING],
        [ScanStatus.RUNNING, ScanStatus.FAILED, ScanStatus.RUNNING],
    ])
    def test_invalid_transitions(self, history, path):
        scan_id = history.create({})
        *allowed, last = path
        for step in allowed:
            history.transition(scan_id, step)
        with pytest.raises(InvalidTransition):
            history.transition(scan_id, last)

    def test_unknown_scan(self, history):
        with pytest.raises(ScanNotFound):
            history.get("missing")
        with pytest.raises(ScanNotFound):
            history.transition("missing", ScanStatus.RUNNING)

    def test_recent_is_limited(self, history):
        ids = {history.create({"n": n}) for n in range(3)}
        assert {r["id"] for r in history.recent()} == ids
        assert len(history.recent(limit=2)) == 2


# ── API ───────────────────────────────────────────────────────────

def _finished_context(params) -> ScanContext:
    context = ScanContext(subscriptions={SUB_A: "Production"})
    st1 = resource_id(SUB_A, "rg1", "Microsoft.Storage/storageAccounts", "st1")
    context.add_results([make_result("st-001", st1), make_result("st-002", st1, broken=False,
                                                                 note="99.9%", rtype="sla")])
    return context


@pytest.fixture
def client(history):
    calls = []

    def runner(params):
        calls.append(params)
        return _finished_context(params)

    app = create_app(history=history, runner=runner)
    with TestClient(app) as c:
        c.calls = calls
        yield c


class TestApi:

    def test_health(self, client):
        assert client.get("/api/health").json() == {"status": "ok"}

    def test_types_and_recommendations(self, client):
        types = client.get("/api/types").json()
        assert {"abbreviation": "st", "resourceType": "microsoft.storage/storageaccounts"} in types
        recs = client.get("/api/recommendations").json()
        assert any(r["recommendationId"] == "st-001" for r in recs)

    def test_scan_completes_in_background(self, client):
        response = client.post("/api/scan", json={
            "key": "st", "subscriptions": [SUB_A], "stages": "-advisor", "mask": True,
        })
        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "pending"

        (params,) = client.calls
        assert params.scanners == ["st"]
        assert params.subscriptions == [SUB_A]
        assert params.mask is True
        assert params.stage_toggles == {"advisor-scan": False}

        row = client.get(f"/api/scans/{body['id']}").json()
        assert row["status"] == "completed"
        assert row["result"]["tables"]["recommendations"] == 2
        assert row["result"]["tables"]["impacted"] == 1
        assert row["parameters"]["key"] == "st"

    def test_failed_scan_recorded(self, history):
        def runner(params):
            raise StageError("graph-scan", 1.5, {}, RuntimeError("throttled"))

        with TestClient(create_app(history=history, runner=runner)) as c:
            scan_id = c.post("/api/scan", json={"key": "st"}).json()["id"]
            row = c.get(f"/api/scans/{scan_id}").json()
        assert row["status"] == "failed"
        assert "graph-scan" in row["result"]["error"]

    def test_configuration_error_in_runner_fails_scan(self, history):
        def runner(params):
            raise ConfigurationError("graph-scan cannot be disabled")

        with TestClient(create_app(history=history, runner=runner)) as c:
            scan_id = c.post("/api/scan", json={"key": "st"}).json()["id"]
            assert c.get(f"/api/scans/{scan_id}").json()["status"] == "failed"

    @pytest.mark.parametrize("body", [
        {"key": "nope"},
        {"key": "st", "resourceGroups": ["rg1"]},
        {"key": "st", "stages": "telemetry"},
    ])
    def test_bad_request(self, client, body):
        assert client.post("/api/scan", json=body).status_code == 400
        assert client.calls == []

    def test_unknown_field_rejected(self, client):
        assert client.post("/api/scan", json={"key": "st", "region": "x"}).status_code == 422

    def test_unknown_scan_is_404(self, client):
        assert client.get("/api/scans/does-not-exist").status_code == 404
