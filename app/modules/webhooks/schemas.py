from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List, Literal
from datetime import datetime
from enum import Enum


class WebhookEventType(str, Enum):
    EXECUTION_STARTED = "execution_started"
    EXECUTION_COMPLETED = "execution_completed"
    EXECUTION_FAILED = "execution_failed"
    WORKFLOW_UPDATED = "workflow_updated"


class WebhookEventStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


class WebhookEventResponse(BaseModel):
    id: str
    workflow_id: str
    execution_id: Optional[str] = None
    event_type: WebhookEventType
    payload: Dict[str, Any] = {}
    source: Literal["n8n", "dashboard"] = "n8n"
    status: WebhookEventStatus
    idempotency_key: str
    retry_count: int = 0
    next_retry_at: Optional[datetime] = None
    last_error: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    endpoint_id: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class WebhookReceipt(BaseModel):
    success: bool = True
    event_id: str
    status: WebhookEventStatus
    duplicate: bool = False
    message: str


class RetryConfig(BaseModel):
    max_retries: int = Field(3, ge=0, le=10)
    retry_delay: float = Field(5.0, ge=0)


class WebhookEndpointCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    url: str
    webhook_type: Literal["incoming", "outgoing", "bidirectional"]
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "POST"
    headers: Dict[str, str] = {}
    secret: Optional[str] = None
    is_active: bool = True
    retry_config: RetryConfig = RetryConfig()


class WebhookEndpointUpdate(BaseModel):
    url: Optional[str] = None
    method: Optional[Literal["GET", "POST", "PUT", "PATCH", "DELETE"]] = None
    headers: Optional[Dict[str, str]] = None
    secret: Optional[str] = None
    is_active: Optional[bool] = None
    retry_config: Optional[RetryConfig] = None


class WebhookEndpointResponse(BaseModel):
    id: str
    name: str
    url: str
    webhook_type: str
    method: str
    headers: Dict[str, str] = {}
    has_secret: bool = False
    is_active: bool
    retry_config: Dict[str, Any] = {}
    trigger_count: int = 0
    success_count: int = 0
    error_count: int = 0
    last_triggered: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DeliveryRequest(BaseModel):
    payload: Dict[str, Any]
    workflow_id: Optional[str] = None


class DeliveryResponse(BaseModel):
    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    attempts: int
    duration_ms: float
    event_id: Optional[str] = None


class OrchestrationStatus(BaseModel):
    active_endpoints: int
    pending_events: int
    processed_events: int
    failed_events: int
    dead_events: int
    success_rate: float
    system_health: Literal["healthy", "warning", "critical"]


class RetrySweepResult(BaseModel):
    attempted: int
    processed: int
    failed: int
    event_ids: List[str] = []
