import json

import httpx
import pytest

from app.main import app
from app.modules.webhooks import service as webhook_service_module
from app.modules.webhooks.delivery import WebhookDeliveryClient
from app.modules.webhooks.routes import get_webhook_service
from app.modules.webhooks.service import WebhookService
from app.modules.webhooks.signature import verify_signature

BASE = "/api/v1/webhooks/endpoints"


class Receiver:
    """Stand-in for an n8n webhook URL; replies with queued status codes."""

    def __init__(self, *statuses):
        self.statuses = list(statuses) or [200]
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return httpx.Response(status, json={"received": True})

    def client(self) -> WebhookDeliveryClient:
        return WebhookDeliveryClient(transport=httpx.MockTransport(self), sleep=lambda seconds: None)


@pytest.fixture
def receiver(client, fake_supabase):
    receiver = Receiver()
    app.dependency_overrides[get_webhook_service] = lambda: WebhookService(fake_supabase, receiver.client())
    return receiver


def _create(client, **overrides):
    body = {
        "name": "notify-n8n",
        "url": "https://n8n.example.com/webhook/notify",
        "webhook_type": "outgoing",
        "secret": "outbound-secret",
        "retry_config": {"max_retries": 2, "retry_delay": 0},
    }
    body.update(overrides)
    return client.post(BASE, json=body)


def test_create_endpoint_hides_secret(client, fake_supabase):
    response = _create(client)
    assert response.status_code == 201
    endpoint = response.json()
    assert "secret" not in endpoint
    assert endpoint["has_secret"] is True
    assert endpoint["retry_config"] == {"max_retries": 2, "retry_delay": 0}
    assert endpoint["trigger_count"] == 0

    audit = fake_supabase.rows("audit_log")
    assert audit[-1]["action"] == "webhook_endpoint.create"
    assert audit[-1]["actor_id"] == "admin-0001"


def test_duplicate_name_is_conflict(client):
    _create(client)
    assert _create(client, url="https://elsewhere").status_code == 409


def test_list_get_update_delete(client, fake_supabase):
    outgoing = _create(client).json()
    _create(client, name="intake", webhook_type="incoming", secret=None)

    assert len(client.get(BASE).json()) == 2
    incoming = client.get(BASE, params={"webhook_type": "incoming"}).json()
    assert [e["name"] for e in incoming] == ["intake"]
    assert incoming[0]["has_secret"] is False

    updated = client.put(f"{BASE}/{outgoing['id']}", json={"is_active": False, "secret": "rotated"})
    assert updated.status_code == 200
    assert updated.json()["is_active"] is False
    assert fake_supabase.rows("webhook_endpoints")[0]["secret"] == "rotated"
    update_audit = fake_supabase.rows("audit_log")[-1]
    assert update_audit["action"] == "webhook_endpoint.update"
    assert "secret" not in update_audit["new_values"]
    assert client.get(BASE, params={"is_active": False}).json()[0]["id"] == outgoing["id"]

    assert client.delete(f"{BASE}/{outgoing['id']}").status_code == 204
    assert client.get(f"{BASE}/{outgoing['id']}").status_code == 404
    assert client.delete(f"{BASE}/{outgoing['id']}").status_code == 404


def test_deliver_signs_payload_and_logs_event(client, fake_supabase, receiver):
    endpoint = _create(client).json()

    response = client.post(f"{BASE}/{endpoint['id']}/deliver", json={"payload": {"action": "sync"}, "workflow_id": "wf-1"})
    assert response.status_code == 200
    result = response.json()
    assert result["success"] is True
    assert result["status_code"] == 200
    assert result["attempts"] == 1

    sent = receiver.requests[0]
    assert json.loads(sent.content) == {"action": "sync"}
    assert verify_signature(sent.content, sent.headers["X-Webhook-Signature"], "outbound-secret")

    event = fake_supabase.rows("webhook_events")[0]
    assert event["id"] == result["event_id"]
    assert event["source"] == "dashboard"
    assert event["status"] == "processed"
    assert event["workflow_id"] == "wf-1"
    assert event["metadata"]["direction"] == "outgoing"

    stored = fake_supabase.rows("webhook_endpoints")[0]
    assert stored["trigger_count"] == 1
    assert stored["success_count"] == 1


def test_failed_delivery_can_be_retried(client, fake_supabase, receiver):
    endpoint = _create(client).json()
    receiver.statuses = [503]

    result = client.post(f"{BASE}/{endpoint['id']}/deliver", json={"payload": {"n": 1}}).json()
    assert result["success"] is False
    assert result["attempts"] == 3
    assert result["error"] == "Server error (503)"

    event = fake_supabase.rows("webhook_events")[0]
    assert event["status"] == "failed"
    assert event["workflow_id"] == "endpoint:notify-n8n"
    assert fake_supabase.rows("webhook_endpoints")[0]["error_count"] == 1

    receiver.statuses = [200]
    retried = client.post(f"/api/v1/webhooks/events/{event['id']}/retry")
    assert retried.json()["status"] == "processed"
    assert json.loads(receiver.requests[-1].content) == {"n": 1}


@pytest.mark.parametrize("overrides", [
    {"webhook_type": "incoming"},
    {"is_active": False},
])
def test_deliver_rejects_unusable_endpoints(client, receiver, overrides):
    endpoint = _create(client, **overrides).json()
    response = client.post(f"{BASE}/{endpoint['id']}/deliver", json={"payload": {}})
    assert response.status_code == 400
    assert receiver.requests == []


def test_deliver_to_unknown_endpoint_is_404(client, receiver):
    assert client.post(f"{BASE}/missing/deliver", json={"payload": {}}).status_code == 404


def test_firing_linked_trigger_delivers(client, fake_supabase, monkeypatch):
    receiver = Receiver()
    monkeypatch.setattr(webhook_service_module, "WebhookDeliveryClient", lambda: receiver.client())
    endpoint = _create(client).json()
    trigger = client.post("/api/v1/workflows/triggers", json={
        "workflow_id": "wf-7",
        "trigger_type": "webhook",
        "endpoint_id": endpoint["id"],
    }).json()

    fired = client.post(f"/api/v1/workflows/triggers/{trigger['id']}/fire", json={"payload": {"lead": 42}})
    assert fired.status_code == 200
    assert fired.json()["delivered"] is True
    assert json.loads(receiver.requests[0].content) == {"lead": 42, "workflowId": "wf-7", "triggerId": trigger["id"]}
