import base64

import pytest
from fastapi.testclient import TestClient

from nodehub.api.deps import get_store
from nodehub.api.main import app
from nodehub.settings import Settings, get_settings
from nodehub.store import MemoryDocumentStore

ADMIN = {"X-Admin-Key": "secret"}


@pytest.fixture()
def client():
    store = MemoryDocumentStore()
    settings = Settings(admin_key="secret", subscription_base_url="https://hub.example.org")
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_settings] = lambda: settings
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_health(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_admin_key_is_required(client: TestClient) -> None:
    missing = client.get("/api/nodes")
    wrong = client.get("/api/nodes", headers={"X-Admin-Key": "nope"})

    assert missing.status_code == 401
    body = missing.json()
    assert body["success"] is False
    assert body["error"]["code"] == "UNAUTHORIZED"
    assert body["meta"]["request_id"] == missing.headers["x-request-id"]
    assert wrong.status_code == 401


def test_missing_admin_key_setting_is_config_error(client: TestClient) -> None:
    app.dependency_overrides[get_settings] = lambda: Settings(admin_key="")

    response = client.get("/api/nodes", headers=ADMIN)

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "CONFIG_ERROR"


def test_login(client: TestClient) -> None:
    assert client.post("/api/auth/login", json={"admin_key": "secret"}).json()["data"] == {"ok": True}
    assert client.post("/api/auth/login", json={"admin_key": "bad"}).status_code == 401


def test_request_validation_uses_envelope(client: TestClient) -> None:
    response = client.post("/api/nodes", headers=ADMIN, json={"name": "n1", "node_type": "router"})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION"


def test_unknown_node_is_not_found(client: TestClient) -> None:
    response = client.get("/api/nodes/node_missing", headers=ADMIN)

    assert response.status_code == 404
    assert response.json()["error"] == {"code": "NOT_FOUND", "message": "Node not found"}


def test_release_reconcile_events_flow(client: TestClient) -> None:
    created = client.post("/api/nodes", headers=ADMIN, json={"name": "n1", "node_type": "vps", "entry_direct": "n1.example.org"})
    assert created.status_code == 201
    node = created.json()["data"]
    assert node["state"] == "idle"
    assert node["online"] is False
    agent = {"X-Node-Token": node["token"]}

    first = client.get("/agent/reconcile", params={"node_id": node["id"], "current_version": 0}, headers=agent)
    assert first.json()["data"]["needs_update"] is False

    release = client.post(
        "/api/releases",
        headers=ADMIN,
        json={"node_ids": [node["id"]], "template_ids": ["tpl_builtin_vless_ws_tls"]},
    )
    assert release.status_code == 201
    assert release.json()["data"]["version"] == 1

    pending = client.get("/agent/reconcile", params={"node_id": node["id"], "current_version": 0}, headers=agent)
    data = pending.json()["data"]
    assert data["needs_update"] is True
    assert data["desired_version"] == 1
    assert data["desired_config"]["templates"][0]["id"] == "tpl_builtin_vless_ws_tls"

    events = client.post(
        "/agent/events",
        headers={"Authorization": f"Bearer {node['token']}"},
        json={"node_id": node["id"], "events": [{"type": "apply_result", "status": "ok", "applied_version": 1}, 42]},
    )
    assert events.json()["data"]["accepted"] == 1
    assert events.json()["data"]["rejected"] == 1

    beat = client.post("/agent/heartbeat", params={"node_id": node["id"]}, headers=agent, json={"cpu_usage_percent": 3.5})
    assert beat.json()["data"]["heartbeat_reported_at"] is not None

    view = client.get(f"/api/nodes/{node['id']}", headers=ADMIN).json()["data"]
    assert view["applied_version"] == 1
    assert view["state"] == "converged"
    assert view["online"] is True
    assert view["cpu_usage_percent"] == 3.5


def test_agent_errors(client: TestClient) -> None:
    node = client.post("/api/nodes", headers=ADMIN, json={"name": "n1", "node_type": "vps"}).json()["data"]

    no_token = client.get("/agent/heartbeat", params={"node_id": node["id"]})
    bad_token = client.get("/agent/heartbeat", params={"node_id": node["id"]}, headers={"X-Node-Token": "x"})
    empty = client.post("/agent/events", headers={"X-Node-Token": node["token"]}, json={"node_id": node["id"], "events": []})

    assert no_token.status_code == 401
    assert bad_token.json()["error"]["message"] == "Invalid node token"
    assert empty.status_code == 400
    assert empty.json()["error"]["message"] == "events must be a non-empty array"


def test_install_command_only_for_vps(client: TestClient) -> None:
    vps = client.post("/api/nodes", headers=ADMIN, json={"name": "v", "node_type": "vps"}).json()["data"]
    edge = client.post("/api/nodes", headers=ADMIN, json={"name": "e", "node_type": "edge"}).json()["data"]

    command = client.get(f"/api/nodes/{vps['id']}/install", headers=ADMIN).json()["data"]["command"]

    assert "AGENT_API_BASE=https://hub.example.org" in command
    assert f"AGENT_NODE_TOKEN={vps['token']}" in command
    assert client.get(f"/api/nodes/{edge['id']}/install", headers=ADMIN).status_code == 400


def test_template_registry_route_is_not_an_id(client: TestClient) -> None:
    response = client.get("/api/templates/registry", headers=ADMIN)

    assert response.status_code == 200
    assert "protocols" in response.json()["data"]


def test_public_subscription_endpoint(client: TestClient) -> None:
    node = client.post("/api/nodes", headers=ADMIN, json={"name": "n1", "node_type": "vps", "entry_direct": "n1.example.org"}).json()["data"]
    client.post(
        "/api/releases",
        headers=ADMIN,
        json={"node_ids": [node["id"]], "template_ids": ["tpl_builtin_trojan_tcp_tls"], "params": {"password": "pw"}},
    )
    sub = client.post("/api/subscriptions", headers=ADMIN, json={"name": "s"}).json()["data"]

    v2ray = client.get(f"/sub/{sub['token']}")
    clash = client.get(f"/sub/{sub['token']}", params={"format": "clash"})
    bad = client.get(f"/sub/{sub['token']}", params={"format": "surge"})
    missing = client.get("/sub/missing")

    assert v2ray.status_code == 200
    assert v2ray.headers["cache-control"] == "no-store"
    assert base64.b64decode(v2ray.content).decode().startswith("trojan://pw@n1.example.org:2087?")
    assert clash.headers["content-type"].startswith("text/yaml")
    assert bad.status_code == 400
    assert missing.status_code == 404
    assert missing.text == "# subscription disabled"
    assert missing.headers["content-type"].startswith("text/plain")


def test_system_status(client: TestClient) -> None:
    client.post("/api/nodes", headers=ADMIN, json={"name": "n1", "node_type": "vps"})

    data = client.get("/api/system/status", headers=ADMIN).json()["data"]

    assert data["counts"]["nodes"] == 1
    assert data["subscription_base_url"] == "https://hub.example.org"


def test_metrics_requires_admin_key(client: TestClient) -> None:
    assert client.get("/metrics").status_code == 401
    response = client.get("/metrics", headers=ADMIN)
    assert response.status_code == 200
    assert b"nodehub_http_requests_total" in response.content
