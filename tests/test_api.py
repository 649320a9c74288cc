"""HTTP surface - routes, API versions, deployment header, error rendering, auth.

Uses FastAPI's TestClient against an app built around a MemoryFlowStore, so
the whole request → service → store path is exercised.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from flow_admin import api as api_module
from flow_admin.api import create_app
from flow_admin.config import Settings
from flow_admin.store import MemoryFlowStore

V2 = {"Flow-API-Version": "v2"}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


class _RecordingSink:
    def __init__(self):
        self.events: list[dict] = []

    def audit(self, event):
        self.events.append(event)


def _flows():
    return [
        {"id": "t1", "type": "tab", "label": "Flow 1"},
        {"id": "n1", "type": "inject", "z": "t1"},
        {"id": "c1", "type": "mqtt-broker"},
    ]


@pytest.fixture(autouse=True)
def _no_rate_limit():
    api_module.limiter.enabled = False
    yield
    api_module.limiter.enabled = True


@pytest.fixture
def sink():
    return _RecordingSink()


@pytest.fixture
def store(sink):
    return MemoryFlowStore(
        _flows(),
        credentials={"c1": {"user": "alice", "password": "secret"}},
        credential_definitions={
            "mqtt-broker": {"user": {"type": "text"}, "password": {"type": "password"}},
        },
        audit_sink=sink,
    )


@pytest.fixture
def client(store):
    app = create_app(settings=Settings(), store=store)
    with TestClient(app) as c:
        yield c


# ---------------------------------------------------------------------------
# GET /flows
# ---------------------------------------------------------------------------


class TestGetFlows:
    def test_v1_returns_array(self, client):
        r = client.get("/flows")
        assert r.status_code == 200
        assert r.json() == _flows()

    def test_v2_returns_rev_and_flows(self, client, store):
        r = client.get("/flows", headers=V2)
        body = r.json()
        assert body["rev"] == store.get_flows().rev
        assert body["flows"] == _flows()

    def test_unknown_version(self, client):
        r = client.get("/flows", headers={"Flow-API-Version": "v9"})
        assert r.status_code == 400
        assert r.json()["code"] == "invalid_api_version"


# ---------------------------------------------------------------------------
# POST /flows
# ---------------------------------------------------------------------------


class TestSetFlows:
    def test_conditional_deploy_with_current_rev(self, client):
        current = client.get("/flows", headers=V2).json()
        flows = current["flows"][:2]

        r = client.post("/flows", json={"flows": flows, "rev": current["rev"]}, headers=V2)

        assert r.status_code == 200
        new_rev = r.json()["rev"]
        assert new_rev != current["rev"]
        assert client.get("/flows", headers=V2).json() == {"rev": new_rev, "flows": flows}

    def test_stale_rev_is_409(self, client, store):
        before = store.get_flows()
        r = client.post("/flows", json={"flows": [], "rev": "stale"}, headers=V2)

        assert r.status_code == 409
        assert r.json()["code"] == "version_mismatch"
        assert store.get_flows() == before

    def test_second_writer_with_same_rev_conflicts(self, client):
        rev = client.get("/flows", headers=V2).json()["rev"]
        first = client.post("/flows", json={"flows": _flows()[:1], "rev": rev}, headers=V2)
        second = client.post("/flows", json={"flows": _flows()[:2], "rev": rev}, headers=V2)
        assert first.status_code == 200
        assert second.status_code == 409

    def test_v2_without_rev_overwrites(self, client):
        r = client.post("/flows", json={"flows": []}, headers=V2)
        assert r.status_code == 200
        assert client.get("/flows").json() == []

    def test_v1_array_returns_204(self, client):
        r = client.post("/flows", json=_flows()[:1])
        assert r.status_code == 204
        assert client.get("/flows").json() == _flows()[:1]

    def test_v1_requires_array(self, client):
        r = client.post("/flows", json={"flows": []})
        assert r.status_code == 400

    def test_reload_ignores_body_and_rev(self, client):
        r = client.post(
            "/flows",
            json={"flows": [], "rev": "stale"},
            headers={**V2, "Flow-Deployment-Type": "reload"},
        )
        assert r.status_code == 200
        assert client.get("/flows").json() == _flows()

    def test_deployment_type_is_audited(self, client, sink):
        client.post("/flows", json={"flows": []}, headers={**V2, "Flow-Deployment-Type": "nodes"})
        assert {"event": "flows.set", "type": "nodes"} in sink.events

    def test_unknown_deployment_type(self, client):
        r = client.post(
            "/flows", json={"flows": []}, headers={**V2, "Flow-Deployment-Type": "partial"}
        )
        assert r.status_code == 400
        assert r.json()["code"] == "invalid_deployment_type"


# ---------------------------------------------------------------------------
# /flow
# ---------------------------------------------------------------------------


class TestFlowRoutes:
    def test_add_get_update_delete(self, client):
        r = client.post("/flow", json={"label": "New", "nodes": [{"id": "x1", "type": "debug"}]})
        assert r.status_code == 200
        flow_id = r.json()["id"]

        flow = client.get(f"/flow/{flow_id}").json()
        assert flow["label"] == "New"
        assert flow["nodes"][0]["z"] == flow_id

        r = client.put(f"/flow/{flow_id}", json={"label": "Renamed", "nodes": []})
        assert r.json() == {"id": flow_id}
        assert client.get(f"/flow/{flow_id}").json()["label"] == "Renamed"

        r = client.delete(f"/flow/{flow_id}")
        assert r.status_code == 204
        assert client.get(f"/flow/{flow_id}").status_code == 404

    def test_get_unknown(self, client):
        r = client.get("/flow/nope")
        assert r.status_code == 404
        assert r.json()["code"] == "not_found"

    def test_update_unknown(self, client, sink):
        r = client.put("/flow/nope", json={"label": "x"})
        assert r.status_code == 404
        assert r.json()["code"] == "not_found"
        assert {"event": "flow.update", "id": "nope", "error": "not_found"} in sink.events

    def test_delete_unknown(self, client):
        r = client.delete("/flow/nope")
        assert r.status_code == 404
        assert r.json()["code"] == "not_found"

    def test_add_duplicate_is_400(self, client):
        r = client.post("/flow", json={"id": "t1", "label": "dup"})
        assert r.status_code == 400
        assert r.json()["code"] == "duplicate_id"

    def test_global_flow(self, client):
        r = client.get("/flow/global")
        assert r.status_code == 200
        assert [n["id"] for n in r.json()["configs"]] == ["c1"]


# ---------------------------------------------------------------------------
# /credentials
# ---------------------------------------------------------------------------


class TestCredentials:
    def test_redacted(self, client):
        r = client.get("/credentials/mqtt-broker/c1")
        assert r.status_code == 200
        assert r.json() == {"user": "alice", "has_password": True}
        assert "secret" not in r.text

    def test_no_credentials(self, client):
        assert client.get("/credentials/mqtt-broker/n1").json() == {}


# ---------------------------------------------------------------------------
# Auth + health
# ---------------------------------------------------------------------------


class TestAuth:
    @pytest.fixture
    def secured(self, store):
        app = create_app(settings=Settings(api_key="s3cret-key"), store=store)
        with TestClient(app) as c:
            yield c

    def test_missing_key_is_401(self, secured):
        assert secured.get("/flows").status_code == 401

    def test_wrong_key_is_401(self, secured):
        r = secured.get("/flows", headers={"Authorization": "Bearer nope"})
        assert r.status_code == 401

    def test_valid_key_identifies_caller(self, secured, sink):
        r = secured.get("/flows", headers={"Authorization": "Bearer s3cret-key"})
        assert r.status_code == 200
        assert sink.events[-1] == {"event": "flows.get", "user": "api-key"}


def test_health_reports_rev(client, store):
    r = client.get("/health")
    assert r.json() == {"api": "ok", "rev": store.get_flows().rev}


# ---------------------------------------------------------------------------
# Rejected requests: status, code and audit record
# ---------------------------------------------------------------------------


def _errors(sink, event):
    return [e for e in sink.events if e["event"] == event and "error" in e]


class TestStoreRejection:
    def test_duplicate_node_ids_is_400(self, client, sink, store):
        before = store.get_flows()
        r = client.post("/flows", json={"flows": [{"id": "a"}, {"id": "a"}]}, headers=V2)

        assert r.status_code == 400
        assert r.json()["code"] == "duplicate_id"
        assert store.get_flows() == before
        assert [e["error"] for e in _errors(sink, "flows.set")] == ["duplicate_id"]

    def test_v1_duplicate_node_ids_is_400(self, client):
        r = client.post("/flows", json=[{"id": "a"}, {"id": "a"}])
        assert r.status_code == 400
        assert r.json()["code"] == "duplicate_id"

    def test_save_failure_is_400(self, tmp_path, sink):
        store = MemoryFlowStore(
            _flows(), source=tmp_path / "missing" / "flows.json", audit_sink=sink
        )
        app = create_app(settings=Settings(), store=store)
        with TestClient(app) as c:
            r = c.post("/flows", json={"flows": []}, headers=V2)

        assert r.status_code == 400
        assert r.json()["code"] == "save_failed"
        assert store.get_flows().flows == _flows()
        assert [e["error"] for e in _errors(sink, "flows.set")] == ["save_failed"]


class TestRejectedRequestsAreAudited:
    def test_unknown_api_version_on_read(self, client, sink):
        r = client.get("/flows", headers={"Flow-API-Version": "v9"})
        assert r.status_code == 400
        assert sink.events == [{"event": "flows.get", "error": "invalid_api_version"}]

    def test_unknown_api_version_on_deploy(self, client, sink):
        r = client.post("/flows", json=[], headers={"Flow-API-Version": "v9"})
        assert r.status_code == 400
        assert sink.events == [
            {"event": "flows.set", "type": "full", "error": "invalid_api_version"}
        ]

    def test_unknown_deployment_type(self, client, sink):
        client.post("/flows", json={"flows": []}, headers={**V2, "Flow-Deployment-Type": "partial"})
        assert sink.events == [
            {"event": "flows.set", "type": "partial", "error": "invalid_deployment_type"}
        ]

    def test_malformed_flow_set(self, client, sink):
        r = client.post("/flows", json={"flows": "x"}, headers=V2)
        assert r.status_code == 400
        assert r.json()["code"] == "invalid_request"
        assert sink.events == [{"event": "flows.set", "type": "full", "error": "invalid_request"}]

    def test_malformed_flow_on_add(self, client, sink):
        r = client.post("/flow", json={"nodes": "not-a-list"})
        assert r.status_code == 400
        assert r.json()["code"] == "invalid_request"
        assert sink.events == [{"event": "flow.add", "error": "invalid_request"}]

    def test_non_object_flow_on_update(self, client, sink):
        r = client.put("/flow/t1", json=["not", "a", "flow"])
        assert r.status_code == 400
        assert r.json()["code"] == "invalid_request"
        assert sink.events == [{"event": "flow.update", "id": "t1", "error": "invalid_request"}]
        assert client.get("/flow/t1").json()["label"] == "Flow 1"

    def test_unparseable_json_body(self, client, sink):
        r = client.post(
            "/flow", content=b"{not json", headers={"Content-Type": "application/json"}
        )
        assert r.status_code == 400
        assert r.json()["code"] == "invalid_request"
        assert sink.events == [
            {"event": "request.invalid", "method": "POST", "path": "/flow", "error": "invalid_request"}
        ]
