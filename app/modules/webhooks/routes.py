from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from app.database.supabase_client import get_supabase
from app.modules.webhooks.schemas import (
    WebhookEventResponse, WebhookEventStatus, WebhookReceipt, WebhookEndpointCreate,
    WebhookEndpointUpdate, WebhookEndpointResponse, DeliveryRequest, DeliveryResponse,
    OrchestrationStatus
)
from app.modules.webhooks.service import WebhookService, parse_json_object
from app.modules.webhooks.signature import verify_signature
from app.core.dependencies import require_permission
from app.core.limiter import limiter
from app.config import settings
from supabase import Client
from typing import List, Optional, Dict
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def get_webhook_service(supabase: Client = Depends(get_supabase)) -> WebhookService:
    return WebhookService(supabase)


def _check_signature(raw_body: bytes, request: Request, secret: Optional[str]) -> None:
    if secret:
        if not verify_signature(raw_body, request.headers.get(settings.webhook_signature_header), secret):
            raise HTTPException(status_code=401, detail="Invalid webhook signature")
        return
    if settings.is_production and settings.webhook_require_signature:
        raise HTTPException(status_code=401, detail="Webhook signature required")
    logger.warning("No webhook secret configured; accepting unsigned n8n webhook")


@router.post("/n8n", response_model=WebhookReceipt)
@limiter.limit(settings.webhook_rate_limit)
async def receive_n8n_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    endpoint: Optional[str] = Query(None, description="Name of a registered incoming endpoint"),
    service: WebhookService = Depends(get_webhook_service)
):
    """
    Intake for n8n execution events, authenticated by HMAC signature rather than JWT.
    The event is stored and acknowledged immediately; processing runs after the response.
    """
    raw_body = await request.body()
    endpoint_row = service.find_intake_endpoint(endpoint) if endpoint else None
    if endpoint and endpoint_row is None:
        # Only a caller holding the global secret learns that the name is unknown
        if not settings.webhook_secret or not verify_signature(
            raw_body, request.headers.get(settings.webhook_signature_header), settings.webhook_secret
        ):
            raise HTTPException(status_code=401, detail="Invalid webhook signature")
        raise HTTPException(status_code=404, detail=f"No active incoming webhook endpoint named '{endpoint}'")
    secret = (endpoint_row or {}).get("secret") or settings.webhook_secret
    _check_signature(raw_body, request, secret)

    if "application/json" not in request.headers.get("content-type", "").lower():
        raise HTTPException(status_code=400, detail="Content-Type must be application/json")
    body = parse_json_object(raw_body)

    event, duplicate = service.ingest_event(
        body,
        raw_body,
        idempotency_header=request.headers.get("Idempotency-Key"),
        metadata={
            "user_agent": request.headers.get("user-agent"),
            "ip_address": request.headers.get("x-forwarded-for")
            or request.headers.get("x-real-ip")
            or (request.client.host if request.client else None),
        },
        endpoint=endpoint_row,
    )
    if duplicate:
        return WebhookReceipt(
            event_id=event.id,
            status=event.status,
            duplicate=True,
            message="Duplicate webhook ignored",
        )

    background_tasks.add_task(service.process_event, event.id)
    return WebhookReceipt(event_id=event.id, status=event.status, message="Webhook accepted")


@router.get("/events", response_model=List[WebhookEventResponse])
async def list_webhook_events(
    workflow_id: Optional[str] = None,
    status: Optional[WebhookEventStatus] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user_data: Dict = Depends(require_permission("webhooks:read")),
    service: WebhookService = Depends(get_webhook_service)
):
    """List webhook events, newest first (requires webhooks:read permission)"""
    return service.list_events(workflow_id=workflow_id, status=status, limit=limit, offset=offset)


@router.get("/events/{event_id}", response_model=WebhookEventResponse)
async def get_webhook_event(
    event_id: str,
    user_data: Dict = Depends(require_permission("webhooks:read")),
    service: WebhookService = Depends(get_webhook_service)
):
    return service.get_event(event_id)


@router.post("/events/{event_id}/retry", response_model=WebhookEventResponse)
def retry_webhook_event(
    event_id: str,
    user_data: Dict = Depends(require_permission("webhooks:retry")),
    service: WebhookService = Depends(get_webhook_service)
):
    """Reprocess a failed event now (requires webhooks:retry permission)"""
    return service.retry_event(event_id)


@router.get("/status", response_model=OrchestrationStatus)
async def get_orchestration_status(
    user_data: Dict = Depends(require_permission("webhooks:read")),
    service: WebhookService = Depends(get_webhook_service)
):
    return service.get_orchestration_status()


@router.post("/endpoints", response_model=WebhookEndpointResponse, status_code=201)
async def create_webhook_endpoint(
    endpoint_data: WebhookEndpointCreate,
    user_data: Dict = Depends(require_permission("webhooks:create")),
    service: WebhookService = Depends(get_webhook_service)
):
    """Register a webhook endpoint (requires webhooks:create permission)"""
    return service.create_endpoint(endpoint_data, user_data["id"])


@router.get("/endpoints", response_model=List[WebhookEndpointResponse])
async def list_webhook_endpoints(
    webhook_type: Optional[str] = None,
    is_active: Optional[bool] = None,
    user_data: Dict = Depends(require_permission("webhooks:read")),
    service: WebhookService = Depends(get_webhook_service)
):
    return service.list_endpoints(webhook_type=webhook_type, is_active=is_active)


@router.get("/endpoints/{endpoint_id}", response_model=WebhookEndpointResponse)
async def get_webhook_endpoint(
    endpoint_id: str,
    user_data: Dict = Depends(require_permission("webhooks:read")),
    service: WebhookService = Depends(get_webhook_service)
):
    return service.get_endpoint(endpoint_id)


@router.put("/endpoints/{endpoint_id}", response_model=WebhookEndpointResponse)
async def update_webhook_endpoint(
    endpoint_id: str,
    endpoint_data: WebhookEndpointUpdate,
    user_data: Dict = Depends(require_permission("webhooks:update")),
    service: WebhookService = Depends(get_webhook_service)
):
    """Update a webhook endpoint (requires webhooks:update permission)"""
    return service.update_endpoint(endpoint_id, endpoint_data, user_data["id"])


@router.delete("/endpoints/{endpoint_id}", status_code=204)
async def delete_webhook_endpoint(
    endpoint_id: str,
    user_data: Dict = Depends(require_permission("webhooks:delete")),
    service: WebhookService = Depends(get_webhook_service)
):
    """Delete a webhook endpoint (requires webhooks:delete permission)"""
    service.delete_endpoint(endpoint_id, user_data["id"])
    return None


@router.post("/endpoints/{endpoint_id}/deliver", response_model=DeliveryResponse)
def deliver_to_webhook_endpoint(
    endpoint_id: str,
    delivery: DeliveryRequest,
    user_data: Dict = Depends(require_permission("webhooks:deliver")),
    service: WebhookService = Depends(get_webhook_service)
):
    """Send a payload to an outgoing endpoint (requires webhooks:deliver permission)"""
    return service.deliver(endpoint_id, delivery)
