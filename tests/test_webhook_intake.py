import json

import pytest

from app.config import settings
from app.modules.webhooks.signature import sign_payload

URL = "/api/v1/webhooks/n8n"


def _post(client, payload, headers=None, raw=None, params=None):
    body = raw if raw is not None else json.dumps(payload).encode()
    merged = {"Content-Type": "application/json", **(headers or {})}
    return client.post(URL, content=body, headers=merged, params=params)


def _started(workflow_id="wf-1", execution_id="ex-1", **extra):
    return {"workflowId": workflow_id, "execution": {"id": execution_id, "status": "running"}, **extra}


def test_started_event_is_stored_and_processed(client, fake_supabase):
    response = _post(client, _started(data={"rows": 2}))
    assert response.status_code == 200
    receipt = response.json()
    assert receipt["success"] is True
    assert receipt["duplicate"] is False
    assert receipt["status"] == "pending"

    event = fake_supabase.rows("webhook_events")[0]
    assert event["id"] == receipt["event_id"]
    assert event["event_type"] == "execution_started"
    assert event["status"] == "processed"
    assert event["processed_at"] is not None

    execution = fake_supabase.rows("workflow_executions")[0]
    assert execution["execution_id"] == "ex-1"
    assert execution["status"] == "running"
    assert execution["input_data"] == {"rows": 2}

    state = fake_supabase.rows("workflow_states")[0]
    assert state["current_state"] == "running"
    assert state["execution_id"] == "ex-1"


def test_completed_event_finishes_execution_and_state(client, fake_supabase):
    _post(client, _started())
    _post(client, {"workflowId": "wf-1", "execution": {"id": "ex-1", "status": "success"}, "data": {"ok": 1}})

    execution = fake_supabase.rows("workflow_executions")[0]
    assert execution["status"] == "completed"
    assert execution["output_data"] == {"ok": 1}
    assert fake_supabase.rows("workflow_states")[0]["current_state"] == "completed"


def test_failed_event_records_error_message(client, fake_supabase):
    _post(client, _started())
    _post(client, {
        "workflow": {"id": "wf-1"},
        "execution": {"id": "ex-1", "status": "error"},
        "error": {"message": "Node 'HTTP Request' failed"},
    })

    execution = fake_supabase.rows("workflow_executions")[0]
    assert execution["status"] == "failed"
    assert execution["error_message"] == "Node 'HTTP Request' failed"
    assert fake_supabase.rows("workflow_states")[0]["current_state"] == "failed"


def test_completion_without_prior_start_creates_records(client, fake_supabase):
    _post(client, {"workflowId": "wf-2", "executionId": "ex-9", "execution": {"status": "success"}})

    execution = fake_supabase.rows("workflow_executions")[0]
    assert execution["status"] == "completed"
    assert fake_supabase.rows("workflow_states")[0]["current_state"] == "completed"


def test_restart_after_completion_walks_through_idle(client, fake_supabase):
    _post(client, _started(execution_id="ex-1"))
    _post(client, {"workflowId": "wf-1", "execution": {"id": "ex-1", "status": "success"}})
    _post(client, _started(execution_id="ex-2"))

    state = fake_supabase.rows("workflow_states")[0]
    assert state["current_state"] == "running"
    assert state["execution_id"] == "ex-2"
    hops = [(t["from_state"], t["to_state"]) for t in fake_supabase.rows("workflow_state_transitions")]
    assert hops[-2:] == [("completed", "idle"), ("idle", "running")]


def test_workflow_updated_event_only_logs(client, fake_supabase):
    _post(client, {"workflow": {"id": "wf-1", "name": "Sync CRM"}})
    event = fake_supabase.rows("webhook_events")[0]
    assert event["event_type"] == "workflow_updated"
    assert event["status"] == "processed"
    assert fake_supabase.rows("workflow_executions") == []


def test_started_event_without_execution_id_uses_event_id(client, fake_supabase):
    receipt = _post(client, {"workflowId": "wf-1"}).json()
    assert fake_supabase.rows("workflow_executions")[0]["execution_id"] == receipt["event_id"]


def test_payload_is_sanitised(client, fake_supabase):
    _post(client, _started(data={"user": "a", "Password": "x", "nested": {"api_key": "k", "keep": 1}}))
    stored = fake_supabase.rows("webhook_events")[0]["payload"]
    assert stored["data"] == {"user": "a", "nested": {"keep": 1}}


def test_duplicate_idempotency_key_is_not_reprocessed(client, fake_supabase):
    first = _post(client, _started(), headers={"Idempotency-Key": "delivery-1"}).json()
    second = _post(client, _started(data={"changed": True}), headers={"Idempotency-Key": "delivery-1"})

    assert second.status_code == 200
    assert second.json()["duplicate"] is True
    assert second.json()["event_id"] == first["event_id"]
    assert second.json()["status"] == "processed"
    assert len(fake_supabase.rows("webhook_events")) == 1


def test_duplicate_detected_from_event_id_and_body_hash(client, fake_supabase):
    _post(client, _started(eventId="evt-1"))
    assert _post(client, _started(eventId="evt-1", extra=True)).json()["duplicate"] is True

    raw = json.dumps(_started(workflow_id="wf-2")).encode()
    _post(client, None, raw=raw)
    assert _post(client, None, raw=raw).json()["duplicate"] is True
    assert len(fake_supabase.rows("webhook_events")) == 2


@pytest.mark.parametrize("raw,content_type", [
    (b'{"workflowId": "wf-1"}', "text/plain"),
    (b"", "application/json"),
    (b"{not json", "application/json"),
    (b'["wf-1"]', "application/json"),
    (b'{"execution": {"status": "running"}}', "application/json"),
])
def test_malformed_requests_are_400(client, fake_supabase, raw, content_type):
    response = client.post(URL, content=raw, headers={"Content-Type": content_type})
    assert response.status_code == 400
    assert fake_supabase.rows("webhook_events") == []


def test_signature_required_when_secret_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "webhook_secret", "s3cret")
    raw = json.dumps(_started()).encode()

    assert _post(client, None, raw=raw).status_code == 401
    assert _post(client, None, raw=raw, headers={"X-Webhook-Signature": "sha256=deadbeef"}).status_code == 401

    signed = _post(client, None, raw=raw, headers={"X-Webhook-Signature": "sha256=" + sign_payload(raw, "s3cret")})
    assert signed.status_code == 200


def test_unsigned_requests_rejected_in_production_without_secret(client, monkeypatch):
    monkeypatch.setattr(settings, "webhook_secret", None)
    monkeypatch.setattr(settings, "environment", "production")
    assert _post(client, _started()).status_code == 401


def test_signature_is_checked_before_body(client, monkeypatch):
    monkeypatch.setattr(settings, "webhook_secret", "s3cret")
    response = client.post(URL, content=b"{broken", headers={"Content-Type": "application/json"})
    assert response.status_code == 401


def test_processing_failure_schedules_retry(client, fake_supabase):
    fake_supabase.failing_tables.add("workflow_executions")
    response = _post(client, _started())
    assert response.status_code == 200

    event = fake_supabase.rows("webhook_events")[0]
    assert event["status"] == "failed"
    assert event["retry_count"] == 1
    assert event["next_retry_at"] is not None
    assert "workflow_executions" in event["last_error"]


def test_named_endpoint_uses_its_secret_and_counts_hits(client, fake_supabase):
    endpoint = fake_supabase.seed(
        "webhook_endpoints", name="crm-sync", url="https://n8n.local/webhook/crm", webhook_type="incoming",
        method="POST", headers={}, secret="endpoint-secret", is_active=True, retry_config={},
        trigger_count=0, success_count=0, error_count=0,
    )
    raw = json.dumps(_started()).encode()

    assert _post(client, None, raw=raw, params={"endpoint": "crm-sync"}).status_code == 401
    ok = _post(client, None, raw=raw, params={"endpoint": "crm-sync"},
               headers={"X-Webhook-Signature": sign_payload(raw, "endpoint-secret")})
    assert ok.status_code == 200

    stored = fake_supabase.rows("webhook_endpoints")[0]
    assert stored["trigger_count"] == 1
    assert stored["success_count"] == 1
    assert stored["last_triggered"] is not None
    assert fake_supabase.rows("webhook_events")[0]["endpoint_id"] == endpoint["id"]


def test_unknown_endpoint_name_is_hidden_from_unsigned_callers(client, fake_supabase):
    fake_supabase.seed(
        "webhook_endpoints", name="crm-sync", url="https://n8n.local/webhook/crm", webhook_type="incoming",
        method="POST", headers={}, secret="endpoint-secret", is_active=True, retry_config={},
        trigger_count=0, success_count=0, error_count=0,
    )
    known = _post(client, _started(), params={"endpoint": "crm-sync"})
    unknown = _post(client, _started(), params={"endpoint": "nope"})
    assert known.status_code == unknown.status_code == 401
    assert known.json()["detail"] == unknown.json()["detail"]
    assert fake_supabase.rows("webhook_events") == []


def test_unknown_endpoint_name_is_404_when_signed_with_global_secret(client, monkeypatch):
    monkeypatch.setattr(settings, "webhook_secret", "s3cret")
    raw = json.dumps(_started()).encode()
    response = _post(client, None, raw=raw, params={"endpoint": "nope"},
                     headers={"X-Webhook-Signature": sign_payload(raw, "s3cret")})
    assert response.status_code == 404


def test_illegal_state_change_is_skipped_and_event_processed(client, fake_supabase):
    created = client.post("/api/v1/workflows/state", json={"workflow_id": "wf-1", "initial_state": "idle"})
    assert created.status_code == 201
    _post(client, {"workflowId": "wf-1", "execution": {"id": "ex-1", "status": "error"}, "error": {"message": "boom"}})

    assert fake_supabase.rows("webhook_events")[0]["status"] == "processed"
    assert fake_supabase.rows("workflow_executions")[0]["status"] == "failed"
    state = fake_supabase.rows("workflow_states")[0]
    assert state["current_state"] == "idle"
    assert state["version"] == 1
    assert [t["to_state"] for t in fake_supabase.rows("workflow_state_transitions")] == ["idle"]
