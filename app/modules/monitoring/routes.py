from fastapi import APIRouter, Depends, HTTPException, Query
from app.database.supabase_client import get_supabase
from app.modules.monitoring.schemas import (
    LogLevel, ErrorSeverity, AlertSeverity, ExecutionLogCreate, ExecutionLogResponse,
    WorkflowErrorCreate, WorkflowErrorResponse, ErrorRecordResponse, ErrorResolveRequest,
    PerformanceMetricsCreate, PerformanceMetricsResponse, PerformanceRecordResponse,
    AlertCreate, AlertResponse, LiveStatusResponse, DashboardResponse, BatchRequest,
    BatchResponse, RetentionResponse
)
from app.modules.monitoring.service import MonitoringService
from app.core.dependencies import require_permission
from supabase import Client
from typing import List, Optional, Dict
from datetime import datetime

router = APIRouter(prefix="/workflows/monitoring", tags=["monitoring"])


def get_monitoring_service(supabase: Client = Depends(get_supabase)) -> MonitoringService:
    return MonitoringService(supabase)


def _parse_levels(levels: Optional[str]) -> Optional[List[LogLevel]]:
    if not levels:
        return None
    try:
        return [LogLevel(level.strip().lower()) for level in levels.split(",") if level.strip()]
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid log level in '{levels}'")


@router.post("/logs", response_model=ExecutionLogResponse, status_code=201)
async def record_execution_log(
    log_data: ExecutionLogCreate,
    user_data: Dict = Depends(require_permission("monitoring:create")),
    service: MonitoringService = Depends(get_monitoring_service)
):
    return service.record_log(log_data)


@router.get("/logs", response_model=List[ExecutionLogResponse])
async def query_execution_logs(
    workflow_id: Optional[str] = None,
    execution_id: Optional[str] = None,
    levels: Optional[str] = Query(None, description="Comma-separated levels, e.g. error,fatal"),
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=1000),
    user_data: Dict = Depends(require_permission("monitoring:read")),
    service: MonitoringService = Depends(get_monitoring_service)
):
    """Query execution logs (requires monitoring:read permission)"""
    return service.query_logs(
        workflow_id=workflow_id,
        execution_id=execution_id,
        levels=_parse_levels(levels),
        start_time=start_time,
        end_time=end_time,
        limit=limit
    )


@router.post("/errors", response_model=ErrorRecordResponse, status_code=201)
async def record_workflow_error(
    error_data: WorkflowErrorCreate,
    user_data: Dict = Depends(require_permission("monitoring:create")),
    service: MonitoringService = Depends(get_monitoring_service)
):
    """Record a workflow error; high/critical errors raise an alert (requires monitoring:create permission)"""
    return service.record_error(error_data)


@router.get("/errors", response_model=List[WorkflowErrorResponse])
async def list_workflow_errors(
    workflow_id: Optional[str] = None,
    execution_id: Optional[str] = None,
    resolved: Optional[bool] = None,
    severity: Optional[ErrorSeverity] = None,
    limit: int = Query(100, ge=1, le=1000),
    user_data: Dict = Depends(require_permission("monitoring:read")),
    service: MonitoringService = Depends(get_monitoring_service)
):
    return service.list_errors(
        workflow_id=workflow_id,
        execution_id=execution_id,
        resolved=resolved,
        severity=severity,
        limit=limit
    )


@router.post("/errors/{error_id}/resolve", response_model=WorkflowErrorResponse)
async def resolve_workflow_error(
    error_id: str,
    resolve_request: ErrorResolveRequest,
    user_data: Dict = Depends(require_permission("monitoring:update")),
    service: MonitoringService = Depends(get_monitoring_service)
):
    return service.resolve_error(error_id, user_data["id"], resolve_request.resolution_notes)


@router.post("/performance", response_model=PerformanceRecordResponse, status_code=201)
async def record_performance_metrics(
    metrics_data: PerformanceMetricsCreate,
    user_data: Dict = Depends(require_permission("monitoring:create")),
    service: MonitoringService = Depends(get_monitoring_service)
):
    """Record execution performance; threshold breaches raise alerts (requires monitoring:create permission)"""
    return service.record_performance(metrics_data)


@router.get("/performance", response_model=List[PerformanceMetricsResponse])
async def list_performance_metrics(
    workflow_id: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    user_data: Dict = Depends(require_permission("monitoring:read")),
    service: MonitoringService = Depends(get_monitoring_service)
):
    return service.list_performance(workflow_id=workflow_id, limit=limit)


@router.post("/alerts", response_model=AlertResponse, status_code=201)
async def create_alert(
    alert_data: AlertCreate,
    user_data: Dict = Depends(require_permission("monitoring:create")),
    service: MonitoringService = Depends(get_monitoring_service)
):
    return service.create_alert(alert_data)


@router.get("/alerts", response_model=List[AlertResponse])
async def list_alerts(
    workflow_id: Optional[str] = None,
    acknowledged: Optional[bool] = None,
    resolved: Optional[bool] = None,
    severity: Optional[AlertSeverity] = None,
    limit: int = Query(100, ge=1, le=1000),
    user_data: Dict = Depends(require_permission("monitoring:read")),
    service: MonitoringService = Depends(get_monitoring_service)
):
    return service.list_alerts(
        workflow_id=workflow_id,
        acknowledged=acknowledged,
        resolved=resolved,
        severity=severity,
        limit=limit
    )


@router.post("/alerts/{alert_id}/acknowledge", response_model=AlertResponse)
async def acknowledge_alert(
    alert_id: str,
    user_data: Dict = Depends(require_permission("monitoring:acknowledge")),
    service: MonitoringService = Depends(get_monitoring_service)
):
    """Acknowledge an alert as the current user (requires monitoring:acknowledge permission)"""
    return service.acknowledge_alert(alert_id, user_data["id"])


@router.post("/alerts/{alert_id}/resolve", response_model=AlertResponse)
async def resolve_alert(
    alert_id: str,
    user_data: Dict = Depends(require_permission("monitoring:acknowledge")),
    service: MonitoringService = Depends(get_monitoring_service)
):
    return service.resolve_alert(alert_id, user_data["id"])


@router.get("/live-status/{workflow_id}", response_model=LiveStatusResponse)
async def get_live_status(
    workflow_id: str,
    user_data: Dict = Depends(require_permission("monitoring:read")),
    service: MonitoringService = Depends(get_monitoring_service)
):
    """Live view of a workflow's current run (requires monitoring:read permission)"""
    return service.get_live_status(workflow_id)


@router.get("/dashboard", response_model=DashboardResponse)
async def get_monitoring_dashboard(
    user_data: Dict = Depends(require_permission("monitoring:read")),
    service: MonitoringService = Depends(get_monitoring_service)
):
    return service.get_dashboard()


@router.post("/batch", response_model=BatchResponse)
async def process_monitoring_batch(
    batch: BatchRequest,
    user_data: Dict = Depends(require_permission("monitoring:create")),
    service: MonitoringService = Depends(get_monitoring_service)
):
    """Record a mixed batch of logs, errors, metrics and alerts (requires monitoring:create permission)"""
    return service.process_batch(batch.items)


@router.delete("", response_model=RetentionResponse)
async def apply_monitoring_retention(
    retention_days: int = Query(..., ge=0),
    user_data: Dict = Depends(require_permission("monitoring:delete")),
    service: MonitoringService = Depends(get_monitoring_service)
):
    """Delete monitoring data older than retention_days (requires monitoring:delete permission)"""
    return service.apply_retention(retention_days)
