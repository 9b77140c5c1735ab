import json

import pytest
from fastapi.testclient import TestClient

from app.api import auth
from app.config import get_settings
from app.main import app
from app.models.build_state import NO_BRANCH
from app.services.webhook_auth import compute_signature

ADMIN = {"Authorization": "Bearer test-admin-key"}


@pytest.fixture
def client(services):
    previous = app.dependency_overrides.get(auth.get_services)
    app.dependency_overrides[auth.get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides[auth.get_services] = previous


def _signed(payload: dict, event: str, secret: str = "test-webhook-secret"):
    body = json.dumps(payload).encode("utf-8")
    headers = {
        "X-GitHub-Event": event,
        "X-GitHub-Delivery": "delivery-1",
        "X-Hub-Signature-256": compute_signature(secret, body),
        "Content-Type": "application/json",
    }
    return body, headers


def test_signed_ping_is_acknowledged(client):
    body, headers = _signed({"zen": "Design for failure."}, "ping")

    resp = client.post("/webhooks/github", content=body, headers=headers)

    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "event": "ping", "delivery": "delivery-1", "action": None, "handled": False}


def test_bad_signature_is_rejected(client, ledger):
    body, headers = _signed({"ref": "refs/heads/3-B"}, "push", secret="wrong")

    resp = client.post("/webhooks/github", content=body, headers=headers)

    assert resp.status_code == 401
    assert resp.json()["ok"] is False
    assert ledger.rows == {}


def test_missing_signature_is_rejected(client):
    resp = client.post("/webhooks/github", content=b"{}", headers={"X-GitHub-Event": "ping"})

    assert resp.status_code == 401


def test_unconfigured_secret_is_server_error(client, monkeypatch):
    monkeypatch.setattr(get_settings(), "GITHUB_WEBHOOK_SECRET", "")
    body, headers = _signed({}, "ping")

    resp = client.post("/webhooks/github", content=body, headers=headers)

    assert resp.status_code == 500


def test_signed_non_json_body_is_bad_request(client):
    body = b"not json"
    headers = {"X-GitHub-Event": "push", "X-Hub-Signature-256": compute_signature("test-webhook-secret", body)}

    resp = client.post("/webhooks/github", content=body, headers=headers)

    assert resp.status_code == 400


def test_push_is_recorded(client, ledger):
    body, headers = _signed({
        "ref": "refs/heads/3-B",
        "after": "abc1234",
        "head_commit": {"id": "abc1234", "message": "Add users endpoint"},
        "repository": {"full_name": "acme/shop-api"},
    }, "push")

    resp = client.post("/webhooks/github", content=body, headers=headers)

    assert resp.status_code == 200
    assert resp.json()["handled"] is True
    assert ledger.get("Github", "3-B")["last_commit_id"] == "abc1234"


def test_malformed_payload_is_acknowledged_but_not_handled(client, ledger):
    body, headers = _signed({"action": "opened", "repository": {"full_name": "acme/shop-web"}}, "pull_request")

    resp = client.post("/webhooks/github", content=body, headers=headers)

    assert resp.status_code == 200
    assert resp.json()["handled"] is False
    assert ledger.rows == {}


def test_failed_workflow_run_is_recorded(client, ledger):
    body, headers = _signed({
        "action": "completed",
        "workflow_run": {"name": "CI", "conclusion": "failure", "head_branch": "3-B", "head_sha": "abc1234"},
        "repository": {"full_name": "acme/shop-api"},
    }, "workflow_run")

    resp = client.post("/webhooks/github", content=body, headers=headers)

    assert resp.status_code == 200
    assert ledger.get("PR-Failed", "3-B")["last_status"] == "FAILED"


def _railway_failure() -> dict:
    return {
        "type": "Deployment.failed",
        "details": {
            "status": "FAILED",
            "errorMessage": (
                "Unhandled exception. System.InvalidOperationException: No database provider configured\n"
                "   at Api.Program.Main(String[] args) in /src/Program.cs:line 27\n"
            ),
        },
        "resource": {"service": {"id": "svc-1", "name": "webapi_shop"}},
    }


@pytest.mark.parametrize("params,headers", [
    ({"token": "test-railway-token"}, {}),
    ({}, {"X-Webhook-Token": "test-railway-token"}),
])
def test_railway_token_accepted(client, ledger, params, headers):
    resp = client.post("/webhooks/railway", params=params, headers=headers, json=_railway_failure())

    assert resp.status_code == 200
    assert resp.json()["status"] == "FAILED"

    row = ledger.get("Railway", NO_BRANCH)
    assert (row["error_file"], row["error_line"]) == ("/src/Program.cs", 27)


@pytest.mark.parametrize("params", [{}, {"token": "nope"}])
def test_railway_bad_token_rejected(client, ledger, params):
    resp = client.post("/webhooks/railway", params=params, json=_railway_failure())

    assert resp.status_code == 401
    assert ledger.rows == {}


def test_build_states_require_admin_key(client):
    assert client.get("/build-states/shop").status_code == 401
    assert client.get("/build-states/shop", headers={"Authorization": "Bearer wrong"}).status_code == 403


def test_build_states_listing(client):
    client.post("/webhooks/railway", params={"token": "test-railway-token"}, json=_railway_failure())

    resp = client.get("/build-states/shop", headers=ADMIN, params={"source": "Railway"})

    assert resp.status_code == 200
    rows = resp.json()
    assert [r["source"] for r in rows] == ["Railway"]
    assert rows[0]["branch"] == ""


def test_direct_run_unknown_project(client):
    resp = client.post("/validation/nope/run", headers=ADMIN, json={"branch": "5-F"})

    assert resp.status_code == 404


def test_direct_run_rejects_unsequenced_success_source(client):
    resp = client.post("/validation/shop/run", headers=ADMIN, json={"branch": "5-F", "success_source": "Railway"})

    assert resp.status_code == 422


def test_direct_run_returns_outcome(client, github, ledger):
    resp = client.post("/validation/shop/run", headers=ADMIN, json={"branch": "5-F"})

    assert resp.status_code == 200
    outcome = resp.json()
    assert outcome["success"] is True
    assert outcome["ledger_source"] == "Mentor-Review-1"
    assert outcome["state"] == "LEDGER_UPDATED"
    assert github.states == ["pending", "success"]
    assert ledger.get("Mentor-Review-1", "5-F")["webhook"] is False
