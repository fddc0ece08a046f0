import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from ops_agent.capabilities import CapabilityIndex, InMemoryVectorStore
from ops_agent.capabilities.scanner import ScanSummary
from ops_agent.deploy import DeployOperation
from ops_agent.engine import SessionEngine
from ops_agent.errors import SessionExpiredError, ToolPermissionError, TransientServiceError
from ops_agent.server import create_app, status_for
from ops_agent.session_store import SessionStore
from ops_agent.validation import ManifestValidator

from conftest import NO_JITTER, reply

ANALYSIS = reply({
    "root_cause": "memory limit too low for the web container",
    "confidence": 0.9,
    "risk": "low",
    "actions": [{
        "tool": "kubectl_rollout",
        "args": {"action": "restart", "resource": "deployment", "name": "web", "namespace": "shop"},
    }],
})


@pytest.fixture
def engine(tmp_path, model, gateway, cluster, fake_sleep):
    return SessionEngine(
        store=SessionStore(str(tmp_path / "state")),
        model=model,
        gateway=gateway,
        index=CapabilityIndex(model, InMemoryVectorStore(), backoff=NO_JITTER, sleep=fake_sleep),
        validator=ManifestValidator(cluster),
        deployer=DeployOperation(gateway, sleep=fake_sleep),
        backoff=NO_JITTER,
        sleep=fake_sleep,
    )


@pytest.fixture
def client(engine):
    with TestClient(create_app(engine)) as test_client:
        yield test_client


@pytest.mark.parametrize("error, status", [
    (SessionExpiredError("gone"), 410),
    (ToolPermissionError("no"), 403),
    (TransientServiceError("later"), 503),
])
def test_status_mapping(error, status):
    assert status_for(error) == status


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "plugins": ["kubectl"]}


def test_remediation_over_http(client, model):
    response = client.post("/sessions", json={"kind": "remediation", "intent": "web pods OOMKilled in shop"})
    assert response.status_code == 201
    session_id = response.json()["id"]
    assert response.json()["phase"] == "investigating"

    model.queue(ANALYSIS)
    response = client.post(f"/sessions/{session_id}/advance")
    assert response.status_code == 200
    assert response.json()["phase"] == "awaiting_approval"

    response = client.post(f"/sessions/{session_id}/advance", json={})
    assert response.status_code == 400
    assert response.json()["error"]["kind"] == "InvalidInputError"

    response = client.post(f"/sessions/{session_id}/advance", json={"payload": {"approve": False}})
    assert response.status_code == 200
    body = response.json()
    assert body["phase"] == "failed"
    assert body["context"]["last_error"]["kind"] == "RemediationRejected"

    assert client.get(f"/sessions/{session_id}").json()["phase"] == "failed"

    response = client.delete(f"/sessions/{session_id}")
    assert response.json()["status"] == "success"
    assert client.get(f"/sessions/{session_id}").status_code == 404


def test_bad_session_requests(client):
    assert client.post("/sessions", json={"kind": "remediation", "intent": "  "}).status_code == 400
    assert client.post("/sessions", json={"kind": "magic", "intent": "x"}).status_code == 422
    response = client.get("/sessions/rem-unknown")
    assert response.status_code == 404
    assert response.json()["error"]["kind"] == "SessionNotFoundError"
    assert client.delete("/sessions/rem-unknown").status_code == 404


def test_list_tools_by_risk_class(client):
    read_only = client.get("/tools", params={"risk_class": "read_only"}).json()
    everything = client.get("/tools").json()

    assert {t["risk_class"] for t in read_only} == {"read_only"}
    assert "kubectl_rollout" in {t["name"] for t in everything}
    assert len(everything) > len(read_only)
    get_tool = next(t for t in read_only if t["name"] == "kubectl_get")
    assert "resource" in get_tool["input_schema"]["properties"]


def test_capability_search(engine, client):
    asyncio.run(engine.index.index({
        "resource_name": "certificates.cert-manager.io",
        "kind": "Certificate",
        "api_version": "cert-manager.io/v1",
        "capabilities": ["tls", "certificates"],
        "providers": ["cert-manager"],
        "description": "X.509 certificate issued and renewed automatically",
    }))

    response = client.get("/capabilities/search", params={"q": "tls certificates for ingress"})

    assert response.status_code == 200
    assert [m["resource"] for m in response.json()] == ["certificates.cert-manager.io"]
    assert client.get("/capabilities/search", params={"q": " "}).status_code == 400


def test_scan_without_scanner(client):
    assert client.post("/capabilities/scan", json={}).status_code == 501


def test_scan_endpoint(engine):
    scanner = MagicMock()
    scanner.scan = AsyncMock(return_value=ScanSummary(
        indexed=["certificates.cert-manager.io"],
        failed={"widgets.example.io": "explain failed"},
    ))

    with TestClient(create_app(engine, scanner=scanner)) as client:
        response = client.post("/capabilities/scan", json={"resources": ["certificates.cert-manager.io"]})

    assert response.status_code == 200
    assert response.json() == {
        "indexed": ["certificates.cert-manager.io"],
        "failed": {"widgets.example.io": "explain failed"},
    }
    scanner.scan.assert_awaited_once_with(["certificates.cert-manager.io"])


def test_lifespan_starts_and_stops_discovery(engine):
    discovery = MagicMock()
    discovery.stop = AsyncMock()

    with TestClient(create_app(engine, discovery=discovery)) as client:
        discovery.start.assert_called_once()
        assert client.get("/health").status_code == 200

    discovery.stop.assert_awaited_once()
