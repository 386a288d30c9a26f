from fastapi import APIRouter, Depends, Query
from app.database.supabase_client import get_supabase
from app.modules.workflows.schemas import (
    WorkflowStateCreate, StateTransitionRequest, WorkflowStateResponse, WorkflowStateHistory,
    CleanupResponse, WorkflowTriggerCreate, WorkflowTriggerUpdate, WorkflowTriggerResponse,
    TriggerFireRequest, TriggerFireResponse
)
from app.modules.workflows.service import WorkflowStateService, WorkflowTriggerService
from app.core.dependencies import require_permission
from app.config import settings
from supabase import Client
from typing import List, Optional, Dict

router = APIRouter(prefix="/workflows", tags=["workflows"])


def get_workflow_state_service(supabase: Client = Depends(get_supabase)) -> WorkflowStateService:
    return WorkflowStateService(supabase)


def get_workflow_trigger_service(supabase: Client = Depends(get_supabase)) -> WorkflowTriggerService:
    return WorkflowTriggerService(supabase)


@router.post("/state", response_model=WorkflowStateResponse, status_code=201)
async def create_workflow_state(
    state_data: WorkflowStateCreate,
    user_data: Dict = Depends(require_permission("workflows:create")),
    service: WorkflowStateService = Depends(get_workflow_state_service)
):
    """Create the state row for a workflow (requires workflows:create permission)"""
    return service.create_state(state_data, user_data["id"])


@router.get("/state", response_model=List[WorkflowStateResponse])
async def list_workflow_states(
    workflow_ids: Optional[str] = Query(None, description="Comma-separated workflow ids"),
    state: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user_data: Dict = Depends(require_permission("workflows:read")),
    service: WorkflowStateService = Depends(get_workflow_state_service)
):
    """List workflow states (requires workflows:read permission)"""
    ids = [w.strip() for w in workflow_ids.split(",") if w.strip()] if workflow_ids else None
    return service.list_states(workflow_ids=ids, state=state, limit=limit, offset=offset)


@router.delete("/state", response_model=CleanupResponse)
async def cleanup_workflow_states(
    older_than_days: int = Query(settings.state_retention_days, ge=0),
    user_data: Dict = Depends(require_permission("workflows:delete")),
    service: WorkflowStateService = Depends(get_workflow_state_service)
):
    """Delete idle and finished workflow states older than the horizon (requires workflows:delete permission)"""
    deleted = service.cleanup_old_states(older_than_days)
    return CleanupResponse(deleted=deleted, older_than_days=older_than_days)


@router.get("/state/{workflow_id}", response_model=WorkflowStateResponse)
async def get_workflow_state(
    workflow_id: str,
    user_data: Dict = Depends(require_permission("workflows:read")),
    service: WorkflowStateService = Depends(get_workflow_state_service)
):
    """Get current workflow state (requires workflows:read permission)"""
    return service.get_state(workflow_id)


@router.post("/state/{workflow_id}/transition", response_model=WorkflowStateResponse)
async def transition_workflow_state(
    workflow_id: str,
    transition: StateTransitionRequest,
    user_data: Dict = Depends(require_permission("workflows:transition")),
    service: WorkflowStateService = Depends(get_workflow_state_service)
):
    """Move a workflow to a new state (requires workflows:transition permission)"""
    return service.transition(workflow_id, transition, user_data["id"])


@router.get("/state/{workflow_id}/history", response_model=WorkflowStateHistory)
async def get_workflow_state_history(
    workflow_id: str,
    limit: int = Query(50, ge=1, le=1000),
    user_data: Dict = Depends(require_permission("workflows:read")),
    service: WorkflowStateService = Depends(get_workflow_state_service)
):
    """Transition history and run statistics (requires workflows:read permission)"""
    return service.get_history(workflow_id, limit)


@router.post("/triggers", response_model=WorkflowTriggerResponse, status_code=201)
async def create_workflow_trigger(
    trigger_data: WorkflowTriggerCreate,
    user_data: Dict = Depends(require_permission("workflows:create")),
    service: WorkflowTriggerService = Depends(get_workflow_trigger_service)
):
    return service.create_trigger(trigger_data)


@router.get("/triggers", response_model=List[WorkflowTriggerResponse])
async def list_workflow_triggers(
    workflow_id: Optional[str] = None,
    enabled: Optional[bool] = None,
    user_data: Dict = Depends(require_permission("workflows:read")),
    service: WorkflowTriggerService = Depends(get_workflow_trigger_service)
):
    return service.list_triggers(workflow_id=workflow_id, enabled=enabled)


@router.patch("/triggers/{trigger_id}", response_model=WorkflowTriggerResponse)
async def update_workflow_trigger(
    trigger_id: str,
    trigger_data: WorkflowTriggerUpdate,
    user_data: Dict = Depends(require_permission("workflows:update")),
    service: WorkflowTriggerService = Depends(get_workflow_trigger_service)
):
    """Enable/disable a trigger or change its conditions (requires workflows:update permission)"""
    return service.update_trigger(trigger_id, trigger_data)


@router.post("/triggers/{trigger_id}/fire", response_model=TriggerFireResponse)
def fire_workflow_trigger(
    trigger_id: str,
    fire_request: TriggerFireRequest,
    user_data: Dict = Depends(require_permission("workflows:trigger")),
    service: WorkflowTriggerService = Depends(get_workflow_trigger_service)
):
    """Fire a trigger, delivering to its endpoint when linked (requires workflows:trigger permission)"""
    return service.fire_trigger(trigger_id, fire_request.payload)
