"""API tests for the quick quote endpoints (session manager overridden with in-memory fakes)."""

import pytest
from fastapi.testclient import TestClient

from takaful_quote.api.main import app
from takaful_quote.api.quotes_router import get_session_manager

HEADERS = {"X-API-KEY": "test-key"}


@pytest.fixture
def client(manager, monkeypatch):
    monkeypatch.setenv("API_KEYS", "test-key")
    app.dependency_overrides[get_session_manager] = lambda: manager
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _post(client, path, json=None):
    return client.post(f"/api/v1{path}", json=json, headers=HEADERS)


def _patch(client, path, json):
    return client.patch(f"/api/v1{path}", json=json, headers=HEADERS)


def _session_at_quote_step(client, subscriber="33112233"):
    res = _post(client, "/quote-sessions", {"agent_id": "agent-1", "agent_name": "Agent One"})
    assert res.status_code == 200
    sid = res.json()["session_id"]

    assert _post(client, f"/quote-sessions/{sid}/customer/search", {"cpr": "880101234"}).status_code == 200
    fields = {
        "subscriber_number": subscriber,
        "full_name": "Sara Ali",
        "mobile": subscriber,
        "email": "sara@example.com",
        "vehicle_number": "123456",
    }
    assert _patch(client, f"/quote-sessions/{sid}/subscriber", {"fields": fields}).status_code == 200
    assert _post(client, f"/quote-sessions/{sid}/eligibility").status_code == 200
    assert _post(client, f"/quote-sessions/{sid}/next").json()["step"] == 2
    assert _post(client, f"/quote-sessions/{sid}/vehicle-lookup", {}).status_code == 200
    res = _post(client, f"/quote-sessions/{sid}/motor/submit")
    assert res.status_code == 200
    assert res.json()["step"] == 3
    return sid, res.json()


def test_health_is_open(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json()["status"] == "healthy"


def test_api_key_is_required(client):
    res = client.post("/api/v1/quote-sessions", json={})
    assert res.status_code == 401

    res = client.post("/api/v1/quote-sessions", json={}, headers={"X-API-KEY": "wrong"})
    assert res.status_code == 401


def test_create_session_returns_a_snapshot(client):
    res = _post(client, "/quote-sessions", {"agent_id": "agent-1"})

    assert res.status_code == 200
    body = res.json()
    assert body["session_id"]
    assert body["step"] == 1
    assert body["plans"] == []

    res = client.get(f"/api/v1/quote-sessions/{body['session_id']}", headers=HEADERS)
    assert res.status_code == 200
    assert res.json()["session_id"] == body["session_id"]


def test_unknown_session_and_quote_are_404(client):
    assert client.get("/api/v1/quote-sessions/missing", headers=HEADERS).status_code == 404
    assert _post(client, "/quote-sessions", {"quote_id": "missing"}).status_code == 404
    assert client.get("/api/v1/quotes/missing", headers=HEADERS).status_code == 404
    assert client.get("/api/v1/quotes/missing/audit", headers=HEADERS).status_code == 404


def test_validation_errors_are_422_with_field_errors(client):
    sid = _post(client, "/quote-sessions", {}).json()["session_id"]

    res = _post(client, f"/quote-sessions/{sid}/customer/search", {"cpr": " "})
    assert res.status_code == 422
    detail = res.json()["detail"]
    assert detail["error"] == "validation_error"
    assert detail["field_errors"] == {"cpr": "CPR is required"}

    res = _post(client, f"/quote-sessions/{sid}/insurance-type", {"insurance_type": "HEALTH"})
    assert res.status_code == 422


def test_full_installment_flow_over_http(client, manager, dispatcher):
    sid, snap = _session_at_quote_step(client)
    quote_id = snap["quote"]["id"]
    reference = snap["quote"]["quote_reference"]

    assert _post(client, f"/quote-sessions/{sid}/plan", {"plan_id": "zain-super"}).status_code == 200
    res = _post(client, f"/quote-sessions/{sid}/payment-method", {"payment_method": "INSTALLMENT"})
    assert res.json()["gates"]["can_send_link"] is False

    res = _post(client, f"/quote-sessions/{sid}/send-link")
    assert res.status_code == 422
    assert "send_link" in res.json()["detail"]["field_errors"]

    res = _post(client, f"/quote-sessions/{sid}/exception")
    assert res.json()["quote"]["status"] == "PENDING_APPROVAL"
    ticket_id = res.json()["approval_ticket_id"]

    listed = client.get("/api/v1/approvals", headers=HEADERS).json()
    assert [t["ticket_id"] for t in listed] == [ticket_id]

    res = _post(client, f"/approvals/{ticket_id}/decision", {"approved": True, "decided_by": "Fatima"})
    assert res.status_code == 200
    assert res.json()["state"] == "GRANTED"
    assert _post(client, f"/approvals/{ticket_id}/decision", {"approved": True}).status_code == 409

    res = _post(client, f"/quote-sessions/{sid}/send-link")
    assert res.status_code == 200
    assert res.json()["views"]["quote_sent"] is True
    assert len(dispatcher.sent) == 1

    res = _post(client, f"/quotes/{quote_id}/payment-confirmed")
    assert res.status_code == 200
    assert res.json()["quote"]["status"] == "ISSUED"

    res = _post(client, f"/quote-sessions/{sid}/plan", {"plan_id": "third-party"})
    assert res.status_code == 409

    assert client.get(f"/api/v1/quotes/{reference}", headers=HEADERS).json()["id"] == quote_id
    actions = [e["action"] for e in client.get(f"/api/v1/quotes/{quote_id}/audit", headers=HEADERS).json()]
    assert actions[0] == "QUOTE_CREATED"
    assert "APPROVAL_GRANTED" in actions
    notes = client.get("/api/v1/agents/agent-1/notifications", headers=HEADERS).json()
    assert [n["kind"] for n in notes] == ["APPROVAL_GRANTED"]


def test_discount_endpoints(client, authority):
    sid, _ = _session_at_quote_step(client)
    code = authority.codes_for("staff-4")[0].code

    res = _post(client, f"/quote-sessions/{sid}/discount", {"code": code})
    assert res.json()["discount"]["percent"] == 15.0

    res = _post(client, f"/quote-sessions/{sid}/discount", {"code": "BOGUS"})
    assert res.status_code == 200
    assert res.json()["discount"]["error"] == "Invalid discount code"

    res = client.delete(f"/api/v1/quote-sessions/{sid}/discount", headers=HEADERS)
    assert res.json()["discount"]["code"] is None


def test_process_approval_by_quote_id(client):
    sid, _ = _session_at_quote_step(client)
    _post(client, f"/quote-sessions/{sid}/plan", {"plan_id": "zain-super"})
    res = _post(client, f"/quote-sessions/{sid}/exception")
    quote_id = res.json()["quote"]["id"]

    res = _post(client, f"/quotes/{quote_id}/approval", {"approved": False})
    assert res.status_code == 200
    assert res.json()["state"] == "REJECTED"

    snap = client.get(f"/api/v1/quote-sessions/{sid}", headers=HEADERS).json()
    assert snap["quote"]["status"] == "APPROVAL_REJECTED"
    assert _post(client, "/quotes/missing/approval", {"approved": True}).status_code == 404


def test_save_and_exit_ends_the_session(client):
    sid, snap = _session_at_quote_step(client)

    res = _post(client, f"/quote-sessions/{sid}/save-exit")
    assert res.status_code == 200
    assert client.get(f"/api/v1/quote-sessions/{sid}", headers=HEADERS).status_code == 404

    res = _post(client, "/quote-sessions", {"quote_id": snap["quote"]["id"]})
    assert res.status_code == 200
    assert res.json()["step"] == 2


def test_payment_confirmed_after_the_session_closed(client, manager):
    sid, snap = _session_at_quote_step(client)
    quote_id = snap["quote"]["id"]
    _post(client, f"/quote-sessions/{sid}/plan", {"plan_id": "zain-super"})
    assert _post(client, f"/quote-sessions/{sid}/send-link").status_code == 200
    assert _post(client, f"/quote-sessions/{sid}/save-exit").status_code == 200

    res = _post(client, f"/quotes/{quote_id}/payment-confirmed")
    assert res.status_code == 200
    assert res.json()["quote"]["status"] == "ISSUED"
    assert manager._controllers == {}

    assert _post(client, f"/quotes/{quote_id}/payment-confirmed").status_code == 409
    assert _post(client, "/quotes/missing/payment-confirmed").status_code == 404


def test_agent_notifications_and_quotes(client, db):
    _session_at_quote_step(client)
    note = db.add_notification("agent-1", "q-1", "APPROVAL_GRANTED", "Approved")

    res = _post(client, f"/agents/agent-1/notifications/{note.id}/read")
    assert res.status_code == 200
    assert client.get("/api/v1/agents/agent-1/notifications?unread_only=true", headers=HEADERS).json() == []
    assert _post(client, "/agents/agent-1/notifications/missing/read").status_code == 404

    quotes = client.get("/api/v1/agents/agent-1/quotes", headers=HEADERS).json()
    assert [q["status"] for q in quotes] == ["DRAFT"]
    assert client.get("/api/v1/agents/agent-1/quotes?status=ISSUED", headers=HEADERS).json() == []
    assert client.get("/api/v1/agents/agent-2/quotes", headers=HEADERS).json() == []
