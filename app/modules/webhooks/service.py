from supabase import Client
from postgrest.exceptions import APIError
from fastapi import HTTPException
from typing import List, Optional, Dict, Any, Tuple
from datetime import timedelta
import hashlib
import json
import logging
import uuid

from app.config import settings
from app.core.audit import record_audit_event
from app.core.timeutils import utcnow
from app.modules.webhooks.delivery import WebhookDeliveryClient
from app.modules.webhooks.retry_policy import next_retry_at
from app.modules.webhooks.schemas import (
    WebhookEventType, WebhookEventStatus, WebhookEventResponse, WebhookEndpointCreate,
    WebhookEndpointUpdate, WebhookEndpointResponse, DeliveryRequest, DeliveryResponse,
    OrchestrationStatus, RetrySweepResult
)

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"
SENSITIVE_KEYS = {"password", "secret", "token", "api_key"}
INCOMING_TYPES = ("incoming", "bidirectional")
OUTGOING_TYPES = ("outgoing", "bidirectional")


def parse_json_object(raw_body: bytes) -> Dict[str, Any]:
    """Decode an intake body; anything but a non-empty JSON object is a 400."""
    if not raw_body or not raw_body.strip():
        raise HTTPException(status_code=400, detail="Request body is empty")
    try:
        body = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Request body is not valid JSON")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return body


def extract_ids(body: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    """(workflow_id, execution_id) from either the flat or the nested n8n shape."""
    workflow = body.get("workflow") if isinstance(body.get("workflow"), dict) else {}
    execution = body.get("execution") if isinstance(body.get("execution"), dict) else {}
    workflow_id = body.get("workflowId") or workflow.get("id")
    execution_id = body.get("executionId") or execution.get("id")
    return (
        str(workflow_id) if workflow_id else None,
        str(execution_id) if execution_id else None,
    )


def determine_event_type(body: Dict[str, Any]) -> WebhookEventType:
    execution = body.get("execution") if isinstance(body.get("execution"), dict) else {}
    status = execution.get("status")
    if status == "running":
        return WebhookEventType.EXECUTION_STARTED
    if status == "success":
        return WebhookEventType.EXECUTION_COMPLETED
    if status == "error":
        return WebhookEventType.EXECUTION_FAILED
    if body.get("workflow"):
        return WebhookEventType.WORKFLOW_UPDATED
    return WebhookEventType.EXECUTION_STARTED


def sanitize_payload(data: Any) -> Any:
    """Drop credential-looking keys at any depth (case-insensitive)."""
    if isinstance(data, dict):
        return {
            key: sanitize_payload(value)
            for key, value in data.items()
            if str(key).lower() not in SENSITIVE_KEYS
        }
    if isinstance(data, list):
        return [sanitize_payload(item) for item in data]
    return data


def derive_idempotency_key(header_value: Optional[str], body: Dict[str, Any], raw_body: bytes) -> str:
    if header_value and header_value.strip():
        return header_value.strip()
    if body.get("eventId"):
        return str(body["eventId"])
    return hashlib.sha256(raw_body).hexdigest()


def _endpoint_response(row: Dict[str, Any]) -> WebhookEndpointResponse:
    data = {k: v for k, v in row.items() if k != "secret"}
    data["has_secret"] = bool(row.get("secret"))
    return WebhookEndpointResponse(**data)


class WebhookService:
    def __init__(self, supabase: Client, delivery_client: Optional[WebhookDeliveryClient] = None):
        self.supabase = supabase
        self.delivery_client = delivery_client or WebhookDeliveryClient()

    # Inbound events

    def _get_event_row(self, event_id: str) -> Optional[Dict[str, Any]]:
        result = self.supabase.table("webhook_events")\
            .select("*")\
            .eq("id", event_id)\
            .limit(1)\
            .execute()
        return result.data[0] if result.data else None

    def _get_event_by_key(self, idempotency_key: str) -> Optional[Dict[str, Any]]:
        result = self.supabase.table("webhook_events")\
            .select("*")\
            .eq("idempotency_key", idempotency_key)\
            .limit(1)\
            .execute()
        return result.data[0] if result.data else None

    def find_intake_endpoint(self, name: str) -> Optional[Dict[str, Any]]:
        """Active incoming/bidirectional endpoint by name (raw row, secret included), or None"""
        result = self.supabase.table("webhook_endpoints")\
            .select("*")\
            .eq("name", name)\
            .eq("is_active", True)\
            .in_("webhook_type", list(INCOMING_TYPES))\
            .limit(1)\
            .execute()
        return result.data[0] if result.data else None

    def ingest_event(
        self,
        body: Dict[str, Any],
        raw_body: bytes,
        idempotency_header: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        endpoint: Optional[Dict[str, Any]] = None,
    ) -> Tuple[WebhookEventResponse, bool]:
        """
        Store an inbound n8n event as pending.
        Returns (event, duplicate). A redelivery with a known idempotency key is not
        stored again; the original event is returned with duplicate=True.
        """
        workflow_id, execution_id = extract_ids(body)
        if not workflow_id:
            raise HTTPException(status_code=400, detail="Missing workflowId (or workflow.id) in payload")

        key = derive_idempotency_key(idempotency_header, body, raw_body)
        try:
            existing = self._get_event_by_key(key)
            if existing:
                logger.info(f"Duplicate webhook delivery {key[:16]} for event {existing['id']}")
                return WebhookEventResponse(**existing), True

            event_type = determine_event_type(body)
            now = utcnow().isoformat()
            data = {
                "workflow_id": workflow_id,
                "execution_id": execution_id,
                "event_type": event_type.value,
                "payload": sanitize_payload(body),
                "source": "n8n",
                "status": WebhookEventStatus.PENDING.value,
                "idempotency_key": key,
                "retry_count": 0,
                "metadata": {**(metadata or {}), "execution_id": execution_id},
                "endpoint_id": endpoint["id"] if endpoint else None,
                "created_at": now,
            }
            try:
                result = self.supabase.table("webhook_events").insert(data).execute()
            except APIError as e:
                if e.code == UNIQUE_VIOLATION:
                    existing = self._get_event_by_key(key)
                    if existing:
                        return WebhookEventResponse(**existing), True
                raise

            if not result.data:
                raise HTTPException(status_code=500, detail="Failed to store webhook event")
            if endpoint:
                self._bump_endpoint_counters(endpoint, triggered=True)
            event = WebhookEventResponse(**result.data[0])
            logger.info(f"Stored {event_type.value} event {event.id} for workflow {workflow_id}")
            return event, False
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error storing webhook event for workflow {workflow_id}: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def process_event(self, event_id: str) -> Optional[WebhookEventResponse]:
        """
        Apply an event to executions and workflow state, then mark it processed or
        failed. Failed events get next_retry_at from the backoff policy until they
        run out of retries. Runs outside the request, so nothing is raised.
        """
        try:
            row = self._get_event_row(event_id)
        except Exception as e:
            logger.error(f"Error loading webhook event {event_id}: {str(e)}")
            return None
        if not row:
            logger.warning(f"Webhook event {event_id} disappeared before processing")
            return None
        if row["status"] == WebhookEventStatus.PROCESSED.value:
            return WebhookEventResponse(**row)

        try:
            self._dispatch(row)
        except Exception as e:
            return self._mark_failed(row, e)
        return self._mark_processed(row)

    def _dispatch(self, event: Dict[str, Any]) -> None:
        from app.modules.executions.schemas import ExecutionCreate, ExecutionComplete, ExecutionFail
        from app.modules.executions.service import ExecutionService
        from app.modules.workflows.service import WorkflowStateService
        from app.modules.workflows.state_machine import WorkflowState

        if event.get("source") == "dashboard":
            self._redeliver(event)
            return

        event_type = WebhookEventType(event["event_type"])
        payload = event.get("payload") or {}
        workflow_id = event["workflow_id"]
        executions = ExecutionService(self.supabase)
        states = WorkflowStateService(self.supabase)

        if event_type == WebhookEventType.WORKFLOW_UPDATED:
            logger.info(f"Workflow {workflow_id} updated (event {event['id']})")
            return

        execution_id = event.get("execution_id")
        if event_type == WebhookEventType.EXECUTION_STARTED:
            execution_id = execution_id or event["id"]
            executions.start_execution(ExecutionCreate(
                workflow_id=workflow_id,
                execution_id=execution_id,
                input_data=payload.get("data") if isinstance(payload.get("data"), dict) else {},
                triggered_by="webhook",
            ))
            target = WorkflowState.RUNNING
        elif event_type == WebhookEventType.EXECUTION_COMPLETED:
            execution_id = execution_id or self._current_execution_id(workflow_id)
            if execution_id:
                executions.complete_execution(execution_id, ExecutionComplete(
                    output_data=payload.get("data"),
                    workflow_id=workflow_id,
                ))
            target = WorkflowState.COMPLETED
        else:
            error = payload.get("error") if isinstance(payload.get("error"), dict) else {}
            execution_id = execution_id or self._current_execution_id(workflow_id)
            if execution_id:
                executions.fail_execution(execution_id, ExecutionFail(
                    error_message=error.get("message") or "Workflow execution failed",
                    error_details=error or None,
                    workflow_id=workflow_id,
                ))
            target = WorkflowState.FAILED

        if not execution_id:
            logger.warning(f"Event {event['id']} for workflow {workflow_id} carries no execution id; execution not updated")

        # A 409 here means concurrent writers kept winning; the event fails and is retried
        states.sync_to_state(
            workflow_id,
            target,
            execution_id=execution_id,
            triggered_by="webhook",
            reason=f"n8n {event_type.value}",
        )

    def _current_execution_id(self, workflow_id: str) -> Optional[str]:
        result = self.supabase.table("workflow_states")\
            .select("execution_id")\
            .eq("workflow_id", workflow_id)\
            .limit(1)\
            .execute()
        return result.data[0].get("execution_id") if result.data else None

    def _redeliver(self, event: Dict[str, Any]) -> None:
        endpoint = self._get_endpoint_row(event.get("endpoint_id")) if event.get("endpoint_id") else None
        if not endpoint:
            raise RuntimeError("Delivery event has no endpoint to send to")
        outcome = self._send_to_endpoint(endpoint, event.get("payload") or {})
        if not outcome.success:
            raise RuntimeError(outcome.error or "Delivery failed")

    def _mark_processed(self, event: Dict[str, Any]) -> WebhookEventResponse:
        now = utcnow().isoformat()
        try:
            result = self.supabase.table("webhook_events")\
                .update({
                    "status": WebhookEventStatus.PROCESSED.value,
                    "processed_at": now,
                    "updated_at": now,
                    "next_retry_at": None,
                    "last_error": None,
                })\
                .eq("id", event["id"])\
                .execute()
        except Exception as e:
            # Left as stored; the sweep picks up stale pending events and failed ones
            logger.error(f"Error marking webhook event {event['id']} processed: {str(e)}")
            return WebhookEventResponse(**event)
        if event.get("endpoint_id") and event.get("source") == "n8n":
            self._bump_endpoint_counters({"id": event["endpoint_id"]}, success=True)
        logger.info(f"Processed webhook event {event['id']} ({event['event_type']})")
        return WebhookEventResponse(**(result.data[0] if result.data else event))

    def _mark_failed(self, event: Dict[str, Any], error: Exception) -> WebhookEventResponse:
        retry_count = (event.get("retry_count") or 0) + 1
        retry_at = next_retry_at(retry_count)
        update_data = {
            "status": WebhookEventStatus.FAILED.value,
            "retry_count": retry_count,
            "last_error": str(error)[:1000],
            "next_retry_at": retry_at.isoformat() if retry_at else None,
            "updated_at": utcnow().isoformat(),
        }
        if retry_at:
            logger.warning(f"Webhook event {event['id']} failed (attempt {retry_count}), retrying at {retry_at.isoformat()}: {error}")
        else:
            logger.error(f"Webhook event {event['id']} failed permanently after {retry_count} attempt(s): {error}")
        try:
            result = self.supabase.table("webhook_events")\
                .update(update_data)\
                .eq("id", event["id"])\
                .execute()
        except Exception as e:
            logger.error(f"Error recording failure of webhook event {event['id']}: {str(e)}")
            return WebhookEventResponse(**{**event, **update_data})
        if event.get("endpoint_id") and event.get("source") == "n8n":
            self._bump_endpoint_counters({"id": event["endpoint_id"]}, success=False)
        return WebhookEventResponse(**(result.data[0] if result.data else {**event, **update_data}))

    def retry_due_events(self, limit: int = 100) -> RetrySweepResult:
        """
        Reprocess failed events whose next_retry_at has passed, and pending events
        older than webhook_pending_grace_seconds. A pending event that old lost its
        background task (worker restart or crash after the 200 was sent).
        """
        now = utcnow()
        due = self.supabase.table("webhook_events")\
            .select("id")\
            .eq("status", WebhookEventStatus.FAILED.value)\
            .lt("retry_count", settings.webhook_max_retries)\
            .lte("next_retry_at", now.isoformat())\
            .order("next_retry_at")\
            .limit(limit)\
            .execute()
        event_ids = [row["id"] for row in due.data or []]

        stale_before = now - timedelta(seconds=settings.webhook_pending_grace_seconds)
        stranded = self.supabase.table("webhook_events")\
            .select("id")\
            .eq("status", WebhookEventStatus.PENDING.value)\
            .lt("created_at", stale_before.isoformat())\
            .order("created_at")\
            .limit(max(limit - len(event_ids), 0))\
            .execute()
        stranded_ids = [row["id"] for row in stranded.data or [] if row["id"] not in event_ids]
        if stranded_ids:
            logger.warning(f"Retry sweep: {len(stranded_ids)} pending event(s) never processed, picking them up")
        event_ids += stranded_ids
        processed = failed = 0
        for event_id in event_ids:
            event = self.process_event(event_id)
            if event and event.status == WebhookEventStatus.PROCESSED:
                processed += 1
            else:
                failed += 1
        if event_ids:
            logger.info(f"Retry sweep: {processed} processed, {failed} still failing of {len(event_ids)}")
        return RetrySweepResult(attempted=len(event_ids), processed=processed, failed=failed, event_ids=event_ids)

    def retry_event(self, event_id: str) -> WebhookEventResponse:
        """Reprocess one event now, ignoring its schedule and retry budget"""
        row = self._get_event_row(event_id)
        if not row:
            raise HTTPException(status_code=404, detail="Webhook event not found")
        if row["status"] == WebhookEventStatus.PROCESSED.value:
            raise HTTPException(status_code=400, detail="Webhook event was already processed")
        event = self.process_event(event_id)
        if event is None:
            raise HTTPException(status_code=500, detail="Webhook event could not be reprocessed")
        return event

    def get_event(self, event_id: str) -> WebhookEventResponse:
        try:
            row = self._get_event_row(event_id)
            if not row:
                raise HTTPException(status_code=404, detail="Webhook event not found")
            return WebhookEventResponse(**row)
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error getting webhook event {event_id}: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def list_events(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[WebhookEventStatus] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[WebhookEventResponse]:
        try:
            query = self.supabase.table("webhook_events").select("*")
            if workflow_id:
                query = query.eq("workflow_id", workflow_id)
            if status:
                query = query.eq("status", status.value)
            result = query.order("created_at", desc=True)\
                .range(offset, offset + limit - 1)\
                .execute()
            return [WebhookEventResponse(**row) for row in result.data]
        except Exception as e:
            logger.error(f"Error listing webhook events: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    # Endpoints

    def _get_endpoint_row(self, endpoint_id: str) -> Optional[Dict[str, Any]]:
        result = self.supabase.table("webhook_endpoints")\
            .select("*")\
            .eq("id", endpoint_id)\
            .limit(1)\
            .execute()
        return result.data[0] if result.data else None

    def create_endpoint(self, endpoint_data: WebhookEndpointCreate, actor_id: Optional[str] = None) -> WebhookEndpointResponse:
        """Register a webhook endpoint; names are unique"""
        try:
            existing = self.supabase.table("webhook_endpoints")\
                .select("id")\
                .eq("name", endpoint_data.name)\
                .limit(1)\
                .execute()
            if existing.data:
                raise HTTPException(status_code=409, detail=f"Webhook endpoint '{endpoint_data.name}' already exists")

            data = endpoint_data.model_dump()
            data.update({
                "trigger_count": 0,
                "success_count": 0,
                "error_count": 0,
                "created_at": utcnow().isoformat(),
            })
            try:
                result = self.supabase.table("webhook_endpoints").insert(data).execute()
            except APIError as e:
                if e.code == UNIQUE_VIOLATION:
                    raise HTTPException(status_code=409, detail=f"Webhook endpoint '{endpoint_data.name}' already exists")
                raise
            if not result.data:
                raise HTTPException(status_code=500, detail="Failed to create webhook endpoint")

            created = result.data[0]
            record_audit_event(
                self.supabase, "webhook_endpoint.create", "webhook_endpoint", created["id"],
                actor_id=actor_id, new_values={"name": created["name"], "url": created["url"]},
            )
            return _endpoint_response(created)
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error creating webhook endpoint: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def get_endpoint(self, endpoint_id: str) -> WebhookEndpointResponse:
        try:
            row = self._get_endpoint_row(endpoint_id)
            if not row:
                raise HTTPException(status_code=404, detail="Webhook endpoint not found")
            return _endpoint_response(row)
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error getting webhook endpoint: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def list_endpoints(self, webhook_type: Optional[str] = None, is_active: Optional[bool] = None) -> List[WebhookEndpointResponse]:
        try:
            query = self.supabase.table("webhook_endpoints").select("*")
            if webhook_type:
                query = query.eq("webhook_type", webhook_type)
            if is_active is not None:
                query = query.eq("is_active", is_active)
            result = query.order("created_at", desc=True).execute()
            return [_endpoint_response(row) for row in result.data]
        except Exception as e:
            logger.error(f"Error listing webhook endpoints: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def update_endpoint(
        self,
        endpoint_id: str,
        endpoint_data: WebhookEndpointUpdate,
        actor_id: Optional[str] = None
    ) -> WebhookEndpointResponse:
        try:
            current = self._get_endpoint_row(endpoint_id)
            if not current:
                raise HTTPException(status_code=404, detail="Webhook endpoint not found")

            update_data = endpoint_data.model_dump(exclude_unset=True)
            if not update_data:
                return _endpoint_response(current)
            update_data["updated_at"] = utcnow().isoformat()

            result = self.supabase.table("webhook_endpoints")\
                .update(update_data)\
                .eq("id", endpoint_id)\
                .execute()
            if not result.data:
                raise HTTPException(status_code=404, detail="Webhook endpoint not found")

            changed = [k for k in update_data if k != "updated_at"]
            record_audit_event(
                self.supabase, "webhook_endpoint.update", "webhook_endpoint", endpoint_id,
                actor_id=actor_id,
                old_values={k: current.get(k) for k in changed if k != "secret"},
                new_values={k: update_data[k] for k in changed if k != "secret"},
            )
            return _endpoint_response(result.data[0])
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error updating webhook endpoint: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def delete_endpoint(self, endpoint_id: str, actor_id: Optional[str] = None) -> None:
        try:
            current = self._get_endpoint_row(endpoint_id)
            if not current:
                raise HTTPException(status_code=404, detail="Webhook endpoint not found")
            self.supabase.table("webhook_endpoints").delete().eq("id", endpoint_id).execute()
            record_audit_event(
                self.supabase, "webhook_endpoint.delete", "webhook_endpoint", endpoint_id,
                actor_id=actor_id, old_values={"name": current["name"], "url": current["url"]},
            )
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error deleting webhook endpoint: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def _bump_endpoint_counters(self, endpoint: Dict[str, Any], triggered: bool = False, success: Optional[bool] = None) -> None:
        """Read-modify-write of endpoint counters; a lost update only skews statistics"""
        try:
            row = endpoint if "trigger_count" in endpoint else self._get_endpoint_row(endpoint["id"])
            if not row:
                return
            update_data: Dict[str, Any] = {}
            if triggered:
                update_data["trigger_count"] = (row.get("trigger_count") or 0) + 1
                update_data["last_triggered"] = utcnow().isoformat()
            if success is True:
                update_data["success_count"] = (row.get("success_count") or 0) + 1
            elif success is False:
                update_data["error_count"] = (row.get("error_count") or 0) + 1
            if update_data:
                self.supabase.table("webhook_endpoints").update(update_data).eq("id", row["id"]).execute()
        except Exception as e:
            logger.error(f"Error updating counters for webhook endpoint {endpoint.get('id')}: {str(e)}")

    def _send_to_endpoint(self, endpoint: Dict[str, Any], payload: Dict[str, Any]):
        retry_config = endpoint.get("retry_config") or {}
        outcome = self.delivery_client.send(
            endpoint["url"],
            payload,
            method=endpoint.get("method") or "POST",
            headers=endpoint.get("headers") or {},
            secret=endpoint.get("secret"),
            max_retries=int(retry_config.get("max_retries", 3)),
            retry_delay=float(retry_config.get("retry_delay", 1.0)),
        )
        self._bump_endpoint_counters(endpoint, triggered=True, success=outcome.success)
        return outcome

    def deliver(self, endpoint_id: str, delivery: DeliveryRequest) -> DeliveryResponse:
        """Send a payload to an outgoing endpoint and log it as a dashboard event"""
        endpoint = self._get_endpoint_row(endpoint_id)
        if not endpoint:
            raise HTTPException(status_code=404, detail="Webhook endpoint not found")
        if not endpoint.get("is_active"):
            raise HTTPException(status_code=400, detail="Webhook endpoint is inactive")
        if endpoint.get("webhook_type") not in OUTGOING_TYPES:
            raise HTTPException(status_code=400, detail="Webhook endpoint does not accept outgoing deliveries")

        outcome = self._send_to_endpoint(endpoint, delivery.payload)

        now = utcnow().isoformat()
        event_id = None
        try:
            result = self.supabase.table("webhook_events").insert({
                "workflow_id": delivery.workflow_id or f"endpoint:{endpoint['name']}",
                "execution_id": None,
                "event_type": WebhookEventType.WORKFLOW_UPDATED.value,
                "payload": sanitize_payload(delivery.payload),
                "source": "dashboard",
                "status": (WebhookEventStatus.PROCESSED if outcome.success else WebhookEventStatus.FAILED).value,
                "idempotency_key": f"delivery:{uuid.uuid4()}",
                "retry_count": max(outcome.attempts - 1, 0),
                "last_error": outcome.error,
                "metadata": {
                    "direction": "outgoing",
                    "status_code": outcome.status_code,
                    "attempts": outcome.attempts,
                    "duration_ms": outcome.duration_ms,
                },
                "endpoint_id": endpoint["id"],
                "created_at": now,
                "processed_at": now if outcome.success else None,
            }).execute()
            if result.data:
                event_id = result.data[0]["id"]
        except Exception as e:
            logger.error(f"Error logging delivery to endpoint {endpoint_id}: {str(e)}")

        return DeliveryResponse(
            success=outcome.success,
            status_code=outcome.status_code,
            error=outcome.error,
            attempts=outcome.attempts,
            duration_ms=outcome.duration_ms,
            event_id=event_id,
        )

    def get_orchestration_status(self) -> OrchestrationStatus:
        """Event counts and health over the last 24 hours"""
        try:
            since = (utcnow() - timedelta(hours=24)).isoformat()
            endpoints = self.supabase.table("webhook_endpoints")\
                .select("id")\
                .eq("is_active", True)\
                .execute()
            events = self.supabase.table("webhook_events")\
                .select("status, retry_count, next_retry_at")\
                .gte("created_at", since)\
                .execute()

            pending = processed = failed = dead = 0
            for event in events.data or []:
                if event["status"] == WebhookEventStatus.PENDING.value:
                    pending += 1
                elif event["status"] == WebhookEventStatus.PROCESSED.value:
                    processed += 1
                else:
                    failed += 1
                    if not event.get("next_retry_at"):
                        dead += 1

            finished = processed + failed
            success_rate = round(processed / finished * 100, 2) if finished else 100.0
            if success_rate > 95:
                health = "healthy"
            elif success_rate > 80:
                health = "warning"
            else:
                health = "critical"

            return OrchestrationStatus(
                active_endpoints=len(endpoints.data or []),
                pending_events=pending,
                processed_events=processed,
                failed_events=failed,
                dead_events=dead,
                success_rate=success_rate,
                system_health=health,
            )
        except Exception as e:
            logger.error(f"Error computing orchestration status: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))
