from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List, Literal
from datetime import datetime

from app.modules.workflows.state_machine import TransitionType


class WorkflowStateCreate(BaseModel):
    workflow_id: str = Field(..., min_length=1)
    initial_state: str = "idle"
    execution_id: Optional[str] = None
    metadata: Dict[str, Any] = {}


class StateTransitionRequest(BaseModel):
    # Plain str so an unknown state is answered with 400 instead of a 422 schema error
    target_state: str
    transition_type: Optional[TransitionType] = None
    expected_state: Optional[str] = None
    execution_id: Optional[str] = None
    progress_percentage: Optional[int] = Field(None, ge=0, le=100)
    metadata: Dict[str, Any] = {}
    triggered_by: Optional[str] = None
    reason: Optional[str] = None


class WorkflowStateResponse(BaseModel):
    id: str
    workflow_id: str
    current_state: str
    previous_state: Optional[str] = None
    execution_id: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    progress_percentage: int = 0
    metadata: Dict[str, Any] = {}
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: datetime

    class Config:
        from_attributes = True


class StateTransitionRecord(BaseModel):
    id: str
    workflow_state_id: str
    workflow_id: Optional[str] = None
    from_state: Optional[str] = None
    to_state: str
    transition_type: str
    duration_in_previous_state_ms: Optional[int] = None
    triggered_by: Optional[str] = None
    reason: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True


class StateStatistics(BaseModel):
    count: int = 0
    total_duration_ms: int = 0
    average_duration_ms: float = 0.0


class WorkflowStateHistory(BaseModel):
    workflow_id: str
    current: WorkflowStateResponse
    total_runs: int
    successful_runs: int
    failed_runs: int
    cancelled_runs: int
    success_rate: float
    average_run_duration_ms: float
    transitions: List[StateTransitionRecord]
    state_statistics: Dict[str, StateStatistics]


class CleanupResponse(BaseModel):
    deleted: int
    older_than_days: int


class WorkflowTriggerCreate(BaseModel):
    workflow_id: str = Field(..., min_length=1)
    trigger_type: Literal["webhook", "schedule", "manual", "event"]
    conditions: Dict[str, Any] = {}
    enabled: bool = True
    endpoint_id: Optional[str] = None


class WorkflowTriggerUpdate(BaseModel):
    conditions: Optional[Dict[str, Any]] = None
    enabled: Optional[bool] = None
    endpoint_id: Optional[str] = None


class WorkflowTriggerResponse(BaseModel):
    id: str
    workflow_id: str
    trigger_type: str
    conditions: Dict[str, Any] = {}
    enabled: bool
    endpoint_id: Optional[str] = None
    trigger_count: int = 0
    last_triggered: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TriggerFireRequest(BaseModel):
    payload: Dict[str, Any] = {}


class TriggerFireResponse(BaseModel):
    trigger: WorkflowTriggerResponse
    delivered: Optional[bool] = None
    delivery_error: Optional[str] = None
