from supabase import Client
from fastapi import HTTPException
from pydantic import ValidationError
from typing import List, Optional, Dict, Any
from datetime import datetime, timedelta
from collections import Counter
import logging

from app.config import settings
from app.core.audit import record_audit_event
from app.core.timeutils import utcnow, parse_timestamp, elapsed_ms
from app.modules.monitoring.schemas import (
    LogLevel, ErrorSeverity, AlertType, AlertSeverity, ExecutionLogCreate, ExecutionLogResponse,
    WorkflowErrorCreate, WorkflowErrorResponse, ErrorRecordResponse, PerformanceMetricsCreate,
    PerformanceMetricsResponse, PerformanceRecordResponse, AlertCreate, AlertResponse,
    LiveStatusResponse, DashboardResponse, WorkflowErrorCount, BatchItem, BatchItemResult,
    BatchResponse, RetentionResponse
)

logger = logging.getLogger(__name__)

UNRESOLVED_ERROR_WARNING_LIMIT = 10


def _timestamp(value: Optional[datetime]) -> str:
    return (value or utcnow()).isoformat()


class MonitoringService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    # Logs

    def record_log(self, log_data: ExecutionLogCreate) -> ExecutionLogResponse:
        try:
            data = log_data.model_dump(mode="json")
            data["timestamp"] = _timestamp(log_data.timestamp)
            data["created_at"] = utcnow().isoformat()
            result = self.supabase.table("workflow_execution_logs").insert(data).execute()
            if not result.data:
                raise HTTPException(status_code=500, detail="Failed to store execution log")
            return ExecutionLogResponse(**result.data[0])
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error storing execution log for workflow {log_data.workflow_id}: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def query_logs(
        self,
        workflow_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        levels: Optional[List[LogLevel]] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100
    ) -> List[ExecutionLogResponse]:
        """Execution logs, newest first"""
        try:
            query = self.supabase.table("workflow_execution_logs").select("*")
            if workflow_id:
                query = query.eq("workflow_id", workflow_id)
            if execution_id:
                query = query.eq("execution_id", execution_id)
            if levels:
                query = query.in_("level", [level.value for level in levels])
            if start_time:
                query = query.gte("timestamp", start_time.isoformat())
            if end_time:
                query = query.lte("timestamp", end_time.isoformat())
            result = query.order("timestamp", desc=True).limit(limit).execute()
            return [ExecutionLogResponse(**row) for row in result.data]
        except Exception as e:
            logger.error(f"Error querying execution logs: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    # Errors

    def record_error(self, error_data: WorkflowErrorCreate) -> ErrorRecordResponse:
        """Store a workflow error; high and critical errors also raise an error alert"""
        try:
            now = utcnow().isoformat()
            data = error_data.model_dump(mode="json")
            data.update({
                "timestamp": _timestamp(error_data.timestamp),
                "resolved": False,
                "created_at": now,
                "updated_at": now,
            })
            result = self.supabase.table("workflow_errors").insert(data).execute()
            if not result.data:
                raise HTTPException(status_code=500, detail="Failed to store workflow error")
            error = WorkflowErrorResponse(**result.data[0])
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error storing workflow error for workflow {error_data.workflow_id}: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

        alerts = []
        if error.severity in (ErrorSeverity.HIGH, ErrorSeverity.CRITICAL):
            alerts.append(self.create_alert(AlertCreate(
                workflow_id=error.workflow_id,
                alert_type=AlertType.ERROR,
                severity=AlertSeverity.CRITICAL if error.severity == ErrorSeverity.CRITICAL else AlertSeverity.WARNING,
                title=f"{error.severity.value.capitalize()} error in workflow {error.workflow_id}",
                description=error.error_message,
                metadata={
                    "error_id": error.id,
                    "execution_id": error.execution_id,
                    "error_type": error.error_type.value,
                    "node_id": error.node_id,
                },
            )))
        return ErrorRecordResponse(error=error, alerts=alerts)

    def list_errors(
        self,
        workflow_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        resolved: Optional[bool] = None,
        severity: Optional[ErrorSeverity] = None,
        limit: int = 100
    ) -> List[WorkflowErrorResponse]:
        try:
            query = self.supabase.table("workflow_errors").select("*")
            if workflow_id:
                query = query.eq("workflow_id", workflow_id)
            if execution_id:
                query = query.eq("execution_id", execution_id)
            if resolved is not None:
                query = query.eq("resolved", resolved)
            if severity:
                query = query.eq("severity", severity.value)
            result = query.order("timestamp", desc=True).limit(limit).execute()
            return [WorkflowErrorResponse(**row) for row in result.data]
        except Exception as e:
            logger.error(f"Error listing workflow errors: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def resolve_error(self, error_id: str, resolved_by: str, resolution_notes: Optional[str] = None) -> WorkflowErrorResponse:
        try:
            now = utcnow().isoformat()
            result = self.supabase.table("workflow_errors")\
                .update({
                    "resolved": True,
                    "resolved_at": now,
                    "resolved_by": resolved_by,
                    "resolution_notes": resolution_notes,
                    "updated_at": now,
                })\
                .eq("id", error_id)\
                .execute()
            if not result.data:
                raise HTTPException(status_code=404, detail="Workflow error not found")
            return WorkflowErrorResponse(**result.data[0])
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error resolving workflow error {error_id}: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    # Performance

    def record_performance(self, metrics_data: PerformanceMetricsCreate) -> PerformanceRecordResponse:
        """Store execution metrics and raise alerts for slow, memory-heavy or partially failed runs"""
        try:
            data = metrics_data.model_dump(mode="json")
            data["timestamp"] = _timestamp(metrics_data.timestamp)
            data["created_at"] = utcnow().isoformat()
            result = self.supabase.table("workflow_performance_metrics").insert(data).execute()
            if not result.data:
                raise HTTPException(status_code=500, detail="Failed to store performance metrics")
            metrics = PerformanceMetricsResponse(**result.data[0])
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error storing performance metrics for workflow {metrics_data.workflow_id}: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

        pending = []
        context = {"execution_id": metrics.execution_id, "metrics_id": metrics.id}
        if metrics.total_duration_ms > settings.long_execution_threshold_ms:
            pending.append(AlertCreate(
                workflow_id=metrics.workflow_id,
                alert_type=AlertType.PERFORMANCE,
                severity=AlertSeverity.WARNING,
                title="Long running workflow execution",
                description=(
                    f"Execution {metrics.execution_id} took {metrics.total_duration_ms}ms "
                    f"(threshold {settings.long_execution_threshold_ms}ms)"
                ),
                metadata={**context, "total_duration_ms": metrics.total_duration_ms},
            ))
        if metrics.memory_peak > settings.memory_peak_threshold_bytes:
            pending.append(AlertCreate(
                workflow_id=metrics.workflow_id,
                alert_type=AlertType.RESOURCE,
                severity=AlertSeverity.WARNING,
                title="High memory usage",
                description=(
                    f"Execution {metrics.execution_id} peaked at {metrics.memory_peak} bytes "
                    f"(threshold {settings.memory_peak_threshold_bytes} bytes)"
                ),
                metadata={**context, "memory_peak": metrics.memory_peak},
            ))
        if metrics.failed_nodes > 0:
            pending.append(AlertCreate(
                workflow_id=metrics.workflow_id,
                alert_type=AlertType.ERROR,
                severity=AlertSeverity.CRITICAL,
                title="Failed workflow nodes",
                description=f"{metrics.failed_nodes} of {metrics.node_count} nodes failed in execution {metrics.execution_id}",
                metadata={**context, "failed_nodes": metrics.failed_nodes},
            ))
        return PerformanceRecordResponse(metrics=metrics, alerts=[self.create_alert(a) for a in pending])

    def list_performance(self, workflow_id: Optional[str] = None, limit: int = 100) -> List[PerformanceMetricsResponse]:
        try:
            query = self.supabase.table("workflow_performance_metrics").select("*")
            if workflow_id:
                query = query.eq("workflow_id", workflow_id)
            result = query.order("timestamp", desc=True).limit(limit).execute()
            return [PerformanceMetricsResponse(**row) for row in result.data]
        except Exception as e:
            logger.error(f"Error listing performance metrics: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    # Alerts

    def create_alert(self, alert_data: AlertCreate) -> AlertResponse:
        try:
            now = utcnow().isoformat()
            data = alert_data.model_dump(mode="json")
            data.update({
                "timestamp": now,
                "acknowledged": False,
                "resolved": False,
                "created_at": now,
                "updated_at": now,
            })
            result = self.supabase.table("monitoring_alerts").insert(data).execute()
            if not result.data:
                raise HTTPException(status_code=500, detail="Failed to create alert")
            alert = AlertResponse(**result.data[0])
            logger.warning(f"Alert [{alert.severity.value}] {alert.alert_type.value} for workflow {alert.workflow_id}: {alert.title}")
            return alert
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error creating alert for workflow {alert_data.workflow_id}: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def list_alerts(
        self,
        workflow_id: Optional[str] = None,
        acknowledged: Optional[bool] = None,
        resolved: Optional[bool] = None,
        severity: Optional[AlertSeverity] = None,
        limit: int = 100
    ) -> List[AlertResponse]:
        try:
            query = self.supabase.table("monitoring_alerts").select("*")
            if workflow_id:
                query = query.eq("workflow_id", workflow_id)
            if acknowledged is not None:
                query = query.eq("acknowledged", acknowledged)
            if resolved is not None:
                query = query.eq("resolved", resolved)
            if severity:
                query = query.eq("severity", severity.value)
            result = query.order("timestamp", desc=True).limit(limit).execute()
            return [AlertResponse(**row) for row in result.data]
        except Exception as e:
            logger.error(f"Error listing alerts: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def acknowledge_alert(self, alert_id: str, user_id: str) -> AlertResponse:
        return self._close_alert(alert_id, user_id, "acknowledged", "alert.acknowledge")

    def resolve_alert(self, alert_id: str, user_id: str) -> AlertResponse:
        return self._close_alert(alert_id, user_id, "resolved", "alert.resolve")

    def _close_alert(self, alert_id: str, user_id: str, flag: str, action: str) -> AlertResponse:
        try:
            now = utcnow().isoformat()
            update_data = {
                flag: True,
                f"{flag}_by": user_id,
                f"{flag}_at": now,
                "updated_at": now,
            }
            result = self.supabase.table("monitoring_alerts")\
                .update(update_data)\
                .eq("id", alert_id)\
                .execute()
            if not result.data:
                raise HTTPException(status_code=404, detail="Alert not found")
            record_audit_event(
                self.supabase, action, "monitoring_alert", alert_id,
                actor_id=user_id, new_values={flag: True},
            )
            return AlertResponse(**result.data[0])
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error updating alert {alert_id}: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    # Aggregates

    def get_live_status(self, workflow_id: str) -> LiveStatusResponse:
        """Current run of a workflow: elapsed time, remaining estimate and open problems"""
        try:
            state_result = self.supabase.table("workflow_states")\
                .select("*")\
                .eq("workflow_id", workflow_id)\
                .limit(1)\
                .execute()
            if not state_result.data:
                raise HTTPException(status_code=404, detail=f"No state recorded for workflow '{workflow_id}'")
            state = state_result.data[0]

            errors = self.supabase.table("workflow_errors")\
                .select("severity")\
                .eq("workflow_id", workflow_id)\
                .eq("resolved", False)\
                .execute()
            severities = Counter(e["severity"] for e in errors.data or [])

            last_log = self.supabase.table("workflow_execution_logs")\
                .select("timestamp")\
                .eq("workflow_id", workflow_id)\
                .order("timestamp", desc=True)\
                .limit(1)\
                .execute()

            now = utcnow()
            progress = state.get("progress_percentage") or 0
            elapsed = elapsed_ms(state.get("started_at"), now) if state["current_state"] == "running" else state.get("duration_ms")
            remaining = None
            if state["current_state"] == "running" and elapsed is not None and 0 < progress < 100:
                remaining = int(elapsed * (100 - progress) / progress)

            candidates = [parse_timestamp(state.get("updated_at"))]
            if last_log.data:
                candidates.append(parse_timestamp(last_log.data[0]["timestamp"]))
            last_activity = max((c for c in candidates if c is not None), default=None)

            return LiveStatusResponse(
                workflow_id=workflow_id,
                execution_id=state.get("execution_id"),
                state=state["current_state"],
                progress_percentage=progress,
                started_at=state.get("started_at"),
                elapsed_ms=elapsed,
                estimated_remaining_ms=remaining,
                error_count=severities["high"] + severities["critical"],
                warning_count=severities["low"] + severities["medium"],
                last_activity=last_activity,
            )
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error getting live status for workflow {workflow_id}: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def get_dashboard(self) -> DashboardResponse:
        try:
            since = (utcnow() - timedelta(hours=24)).isoformat()
            running = self.supabase.table("workflow_states")\
                .select("id")\
                .eq("current_state", "running")\
                .execute()
            errors = self.supabase.table("workflow_errors")\
                .select("workflow_id")\
                .eq("resolved", False)\
                .execute()
            critical_alerts = self.supabase.table("monitoring_alerts")\
                .select("id")\
                .eq("severity", AlertSeverity.CRITICAL.value)\
                .eq("resolved", False)\
                .execute()
            durations = self.supabase.table("workflow_performance_metrics")\
                .select("total_duration_ms")\
                .gte("timestamp", since)\
                .execute()
            recent_logs = self.supabase.table("workflow_execution_logs")\
                .select("*")\
                .order("timestamp", desc=True)\
                .limit(10)\
                .execute()

            unresolved = errors.data or []
            critical_count = len(critical_alerts.data or [])
            values = [row["total_duration_ms"] for row in durations.data or [] if row.get("total_duration_ms") is not None]

            if critical_count > 0:
                health = "critical"
            elif len(unresolved) > UNRESOLVED_ERROR_WARNING_LIMIT:
                health = "warning"
            else:
                health = "healthy"

            by_workflow = Counter(e["workflow_id"] for e in unresolved)
            return DashboardResponse(
                running_workflows=len(running.data or []),
                unresolved_errors=len(unresolved),
                critical_alerts=critical_count,
                average_duration_ms=round(sum(values) / len(values), 2) if values else 0.0,
                system_health=health,
                recent_logs=[ExecutionLogResponse(**row) for row in recent_logs.data or []],
                top_error_workflows=[
                    WorkflowErrorCount(workflow_id=wf, error_count=count)
                    for wf, count in by_workflow.most_common(5)
                ],
            )
        except Exception as e:
            logger.error(f"Error building monitoring dashboard: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def process_batch(self, items: List[BatchItem]) -> BatchResponse:
        """Record each item on its own; one bad item does not stop the rest"""
        handlers = {
            "log": lambda data: self.record_log(ExecutionLogCreate(**data)).id,
            "error": lambda data: self.record_error(WorkflowErrorCreate(**data)).error.id,
            "performance": lambda data: self.record_performance(PerformanceMetricsCreate(**data)).metrics.id,
            "alert": lambda data: self.create_alert(AlertCreate(**data)).id,
        }
        results = []
        for index, item in enumerate(items):
            try:
                record_id = handlers[item.type](item.data)
                results.append(BatchItemResult(index=index, type=item.type, success=True, id=record_id))
            except ValidationError as e:
                results.append(BatchItemResult(index=index, type=item.type, success=False, error=str(e)))
            except HTTPException as e:
                results.append(BatchItemResult(index=index, type=item.type, success=False, error=str(e.detail)))
        succeeded = sum(1 for r in results if r.success)
        if succeeded < len(results):
            logger.warning(f"Monitoring batch: {len(results) - succeeded} of {len(results)} item(s) failed")
        return BatchResponse(total=len(results), succeeded=succeeded, failed=len(results) - succeeded, results=results)

    def apply_retention(self, retention_days: int) -> RetentionResponse:
        """Delete monitoring data older than retention_days; unresolved errors and alerts are kept"""
        try:
            cutoff = (utcnow() - timedelta(days=retention_days)).isoformat()
            deleted = {}
            for table in ("workflow_execution_logs", "workflow_performance_metrics"):
                result = self.supabase.table(table).delete().lt("timestamp", cutoff).execute()
                deleted[table] = len(result.data or [])
            for table in ("workflow_errors", "monitoring_alerts"):
                result = self.supabase.table(table)\
                    .delete()\
                    .lt("timestamp", cutoff)\
                    .eq("resolved", True)\
                    .execute()
                deleted[table] = len(result.data or [])
            logger.info(f"Monitoring retention ({retention_days} days) removed {deleted}")
            return RetentionResponse(retention_days=retention_days, deleted=deleted)
        except Exception as e:
            logger.error(f"Error applying monitoring retention: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))
