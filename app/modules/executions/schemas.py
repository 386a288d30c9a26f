from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime
from enum import Enum


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_EXECUTION_STATUSES = {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED}


class ExecutionCreate(BaseModel):
    workflow_id: str = Field(..., min_length=1)
    execution_id: str = Field(..., min_length=1)
    input_data: Dict[str, Any] = {}
    triggered_by: Optional[str] = None


class ExecutionComplete(BaseModel):
    output_data: Optional[Any] = None
    workflow_id: Optional[str] = None


class ExecutionFail(BaseModel):
    error_message: str
    error_details: Optional[Dict[str, Any]] = None
    workflow_id: Optional[str] = None


class ExecutionResponse(BaseModel):
    id: str
    workflow_id: str
    execution_id: str
    status: ExecutionStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    input_data: Optional[Dict[str, Any]] = None
    output_data: Optional[Any] = None
    error_message: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None
    triggered_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
