from fastapi import APIRouter, Depends, Query
from app.database.supabase_client import get_supabase
from app.modules.executions.schemas import (
    ExecutionCreate, ExecutionComplete, ExecutionFail, ExecutionResponse, ExecutionStatus
)
from app.modules.executions.service import ExecutionService
from app.core.dependencies import require_permission
from supabase import Client
from typing import List, Optional, Dict

router = APIRouter(prefix="/executions", tags=["executions"])


def get_execution_service(supabase: Client = Depends(get_supabase)) -> ExecutionService:
    return ExecutionService(supabase)


@router.post("", response_model=ExecutionResponse, status_code=201)
async def start_execution(
    execution_data: ExecutionCreate,
    user_data: Dict = Depends(require_permission("executions:create")),
    service: ExecutionService = Depends(get_execution_service)
):
    """Record a running execution (requires executions:create permission)"""
    return service.start_execution(execution_data)


@router.get("", response_model=List[ExecutionResponse])
async def list_executions(
    workflow_id: Optional[str] = None,
    status: Optional[ExecutionStatus] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user_data: Dict = Depends(require_permission("executions:read")),
    service: ExecutionService = Depends(get_execution_service)
):
    return service.list_executions(workflow_id=workflow_id, status=status, limit=limit, offset=offset)


@router.get("/{execution_id}", response_model=ExecutionResponse)
async def get_execution(
    execution_id: str,
    user_data: Dict = Depends(require_permission("executions:read")),
    service: ExecutionService = Depends(get_execution_service)
):
    return service.get_execution(execution_id)


@router.post("/{execution_id}/complete", response_model=ExecutionResponse)
async def complete_execution(
    execution_id: str,
    data: ExecutionComplete,
    user_data: Dict = Depends(require_permission("executions:update")),
    service: ExecutionService = Depends(get_execution_service)
):
    """Mark an execution completed (requires executions:update permission)"""
    return service.complete_execution(execution_id, data)


@router.post("/{execution_id}/fail", response_model=ExecutionResponse)
async def fail_execution(
    execution_id: str,
    data: ExecutionFail,
    user_data: Dict = Depends(require_permission("executions:update")),
    service: ExecutionService = Depends(get_execution_service)
):
    """Mark an execution failed (requires executions:update permission)"""
    return service.fail_execution(execution_id, data)


@router.post("/{execution_id}/cancel", response_model=ExecutionResponse)
async def cancel_execution(
    execution_id: str,
    user_data: Dict = Depends(require_permission("executions:update")),
    service: ExecutionService = Depends(get_execution_service)
):
    return service.cancel_execution(execution_id)
