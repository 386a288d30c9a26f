from datetime import timedelta

import pytest

from app.config import settings
from app.core.timeutils import utcnow

BASE = "/api/v1/workflows/monitoring"


def _log(client, **overrides):
    body = {"workflow_id": "wf-1", "execution_id": "ex-1", "level": "info", "message": "node finished"}
    body.update(overrides)
    return client.post(f"{BASE}/logs", json=body)


def _error(client, **overrides):
    body = {"workflow_id": "wf-1", "execution_id": "ex-1", "error_message": "HTTP 502 from CRM", "error_type": "network"}
    body.update(overrides)
    return client.post(f"{BASE}/errors", json=body)


def _metrics(**overrides):
    body = {"workflow_id": "wf-1", "execution_id": "ex-1", "total_duration_ms": 1200, "node_count": 4, "successful_nodes": 4}
    body.update(overrides)
    return body


def test_logs_are_filtered_by_level_and_time(client):
    now = utcnow()
    _log(client, level="debug", timestamp=(now - timedelta(hours=2)).isoformat())
    _log(client, level="error", message="boom", timestamp=(now - timedelta(minutes=5)).isoformat())
    _log(client, level="fatal", message="crash", workflow_id="wf-2")

    assert _log(client).status_code == 201

    severe = client.get(f"{BASE}/logs", params={"levels": "error,FATAL"}).json()
    assert {log["level"] for log in severe} == {"error", "fatal"}

    recent = client.get(f"{BASE}/logs", params={
        "workflow_id": "wf-1",
        "start_time": (now - timedelta(hours=1)).isoformat(),
    }).json()
    assert [log["level"] for log in recent][-1] == "error"
    assert all(log["level"] != "debug" for log in recent)

    assert client.get(f"{BASE}/logs", params={"levels": "loud"}).status_code == 400


def test_log_validation(client):
    assert _log(client, message="").status_code == 422
    assert _log(client, level="verbose").status_code == 422


@pytest.mark.parametrize("severity,alert_severity", [
    ("low", None),
    ("medium", None),
    ("high", "warning"),
    ("critical", "critical"),
])
def test_error_severity_drives_alerts(client, severity, alert_severity):
    response = _error(client, severity=severity)
    assert response.status_code == 201
    alerts = response.json()["alerts"]
    if alert_severity is None:
        assert alerts == []
    else:
        assert len(alerts) == 1
        assert alerts[0]["alert_type"] == "error"
        assert alerts[0]["severity"] == alert_severity
        assert alerts[0]["metadata"]["error_id"] == response.json()["error"]["id"]


def test_resolve_error(client, fake_supabase):
    error = _error(client).json()["error"]
    resolved = client.post(f"{BASE}/errors/{error['id']}/resolve", json={"resolution_notes": "CRM back up"})
    assert resolved.status_code == 200
    assert resolved.json()["resolved"] is True
    assert resolved.json()["resolved_by"] == "admin-0001"

    assert client.get(f"{BASE}/errors", params={"resolved": False}).json() == []
    assert client.post(f"{BASE}/errors/nope/resolve", json={}).status_code == 404


def test_performance_thresholds_raise_alerts(client, monkeypatch):
    monkeypatch.setattr(settings, "long_execution_threshold_ms", 1000)
    monkeypatch.setattr(settings, "memory_peak_threshold_bytes", 1000)

    quiet = client.post(f"{BASE}/performance", json=_metrics(total_duration_ms=900, memory_peak=10))
    assert quiet.status_code == 201
    assert quiet.json()["alerts"] == []

    noisy = client.post(f"{BASE}/performance", json=_metrics(total_duration_ms=5000, memory_peak=5000, failed_nodes=1))
    kinds = {(a["alert_type"], a["severity"]) for a in noisy.json()["alerts"]}
    assert kinds == {("performance", "warning"), ("resource", "warning"), ("error", "critical")}

    assert len(client.get(f"{BASE}/performance", params={"workflow_id": "wf-1"}).json()) == 2


def test_alert_acknowledge_and_resolve(client, fake_supabase):
    alert = client.post(f"{BASE}/alerts", json={
        "workflow_id": "wf-1", "alert_type": "dependency", "severity": "warning",
        "title": "CRM API degraded", "description": "p95 above 4s",
    }).json()
    assert alert["acknowledged"] is False

    acked = client.post(f"{BASE}/alerts/{alert['id']}/acknowledge").json()
    assert acked["acknowledged"] is True
    assert acked["acknowledged_by"] == "admin-0001"
    assert client.get(f"{BASE}/alerts", params={"acknowledged": True}).json()[0]["id"] == alert["id"]

    resolved = client.post(f"{BASE}/alerts/{alert['id']}/resolve").json()
    assert resolved["resolved"] is True
    assert [row["action"] for row in fake_supabase.rows("audit_log")] == ["alert.acknowledge", "alert.resolve"]

    assert client.post(f"{BASE}/alerts/missing/acknowledge").status_code == 404


def test_live_status_of_running_workflow(client, fake_supabase):
    now = utcnow()
    fake_supabase.seed(
        "workflow_states", workflow_id="wf-1", current_state="running", execution_id="ex-1",
        progress_percentage=25, started_at=(now - timedelta(seconds=60)).isoformat(),
        updated_at=(now - timedelta(seconds=30)).isoformat(), version=2,
    )
    _error(client, severity="critical")
    _error(client, severity="low")
    _error(client, severity="medium")
    _log(client)

    status = client.get(f"{BASE}/live-status/wf-1").json()
    assert status["state"] == "running"
    assert status["execution_id"] == "ex-1"
    assert 60000 <= status["elapsed_ms"] < 70000
    assert status["estimated_remaining_ms"] == pytest.approx(status["elapsed_ms"] * 3, abs=3)
    assert status["error_count"] == 1
    assert status["warning_count"] == 2
    assert status["last_activity"] is not None


def test_live_status_of_finished_workflow(client, fake_supabase):
    fake_supabase.seed(
        "workflow_states", workflow_id="wf-2", current_state="completed", progress_percentage=100,
        duration_ms=4200, updated_at=utcnow().isoformat(), version=3,
    )
    status = client.get(f"{BASE}/live-status/wf-2").json()
    assert status["elapsed_ms"] == 4200
    assert status["estimated_remaining_ms"] is None
    assert client.get(f"{BASE}/live-status/unknown").status_code == 404


def test_dashboard_health(client, fake_supabase):
    fake_supabase.seed("workflow_states", workflow_id="wf-1", current_state="running", version=1)
    client.post(f"{BASE}/performance", json=_metrics(total_duration_ms=1000))
    client.post(f"{BASE}/performance", json=_metrics(total_duration_ms=3000))
    for _ in range(3):
        _error(client, workflow_id="wf-9")
    _error(client, workflow_id="wf-1")
    for i in range(12):
        _log(client, message=f"step {i}")

    dashboard = client.get(f"{BASE}/dashboard").json()
    assert dashboard["running_workflows"] == 1
    assert dashboard["unresolved_errors"] == 4
    assert dashboard["average_duration_ms"] == 2000.0
    assert dashboard["system_health"] == "healthy"
    assert len(dashboard["recent_logs"]) == 10
    assert dashboard["top_error_workflows"][0] == {"workflow_id": "wf-9", "error_count": 3}

    for _ in range(7):
        _error(client)
    assert client.get(f"{BASE}/dashboard").json()["system_health"] == "warning"

    _error(client, severity="critical")
    assert client.get(f"{BASE}/dashboard").json()["system_health"] == "critical"


def test_batch_records_items_independently(client, fake_supabase):
    response = client.post(f"{BASE}/batch", json={"items": [
        {"type": "log", "data": {"workflow_id": "wf-1", "execution_id": "ex-1", "message": "hi"}},
        {"type": "error", "data": {"workflow_id": "wf-1", "execution_id": "ex-1", "error_message": "x", "severity": "high"}},
        {"type": "performance", "data": {"workflow_id": "wf-1"}},
        {"type": "alert", "data": {"workflow_id": "wf-1", "alert_type": "timeout", "title": "t", "description": "d"}},
    ]})
    assert response.status_code == 200
    batch = response.json()
    assert batch["total"] == 4
    assert batch["succeeded"] == 3
    assert batch["failed"] == 1
    failed = batch["results"][2]
    assert failed["type"] == "performance"
    assert failed["success"] is False
    assert failed["error"]
    assert len(fake_supabase.rows("monitoring_alerts")) == 2


def test_batch_limits(client):
    assert client.post(f"{BASE}/batch", json={"items": []}).status_code == 422
    assert client.post(f"{BASE}/batch", json={"items": [{"type": "metric", "data": {}}]}).status_code == 422


def test_retention_keeps_unresolved_records(client, fake_supabase):
    old = (utcnow() - timedelta(days=40)).isoformat()
    _log(client, timestamp=old)
    _log(client)
    client.post(f"{BASE}/performance", json=_metrics(timestamp=old))
    open_error = _error(client, timestamp=old).json()["error"]
    closed_error = _error(client, timestamp=old).json()["error"]
    client.post(f"{BASE}/errors/{closed_error['id']}/resolve", json={})

    response = client.delete(BASE, params={"retention_days": 30})
    assert response.status_code == 200
    deleted = response.json()["deleted"]
    assert deleted == {
        "workflow_execution_logs": 1,
        "workflow_performance_metrics": 1,
        "workflow_errors": 1,
        "monitoring_alerts": 0,
    }
    assert [e["id"] for e in fake_supabase.rows("workflow_errors")] == [open_error["id"]]
    assert client.delete(BASE).status_code == 422
