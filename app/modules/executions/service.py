from supabase import Client
from postgrest.exceptions import APIError
from fastapi import HTTPException
from typing import List, Optional, Dict, Any
import logging

from app.core.timeutils import utcnow, elapsed_ms
from app.modules.executions.schemas import (
    ExecutionCreate, ExecutionComplete, ExecutionFail, ExecutionResponse, ExecutionStatus,
    TERMINAL_EXECUTION_STATUSES
)

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


class ExecutionService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def _get_execution_row(self, execution_id: str) -> Optional[Dict[str, Any]]:
        result = self.supabase.table("workflow_executions")\
            .select("*")\
            .eq("execution_id", execution_id)\
            .limit(1)\
            .execute()
        return result.data[0] if result.data else None

    def start_execution(self, execution_data: ExecutionCreate) -> ExecutionResponse:
        """Record a running execution. Starting an execution id twice returns the existing row."""
        try:
            existing = self._get_execution_row(execution_data.execution_id)
            if existing:
                logger.info(f"Execution {execution_data.execution_id} already recorded as {existing['status']}")
                return ExecutionResponse(**existing)

            now = utcnow().isoformat()
            try:
                result = self.supabase.table("workflow_executions").insert({
                    "workflow_id": execution_data.workflow_id,
                    "execution_id": execution_data.execution_id,
                    "status": ExecutionStatus.RUNNING.value,
                    "started_at": now,
                    "input_data": execution_data.input_data,
                    "triggered_by": execution_data.triggered_by,
                    "created_at": now,
                }).execute()
            except APIError as e:
                # Lost a race with a concurrent start for the same execution id
                if e.code == UNIQUE_VIOLATION:
                    existing = self._get_execution_row(execution_data.execution_id)
                    if existing:
                        return ExecutionResponse(**existing)
                raise

            if not result.data:
                raise HTTPException(status_code=500, detail="Failed to record execution")
            logger.info(f"Execution {execution_data.execution_id} started for workflow {execution_data.workflow_id}")
            return ExecutionResponse(**result.data[0])
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error starting execution {execution_data.execution_id}: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def complete_execution(self, execution_id: str, data: ExecutionComplete) -> ExecutionResponse:
        return self._finish(
            execution_id,
            ExecutionStatus.COMPLETED,
            {"output_data": data.output_data},
            workflow_id=data.workflow_id,
        )

    def fail_execution(self, execution_id: str, data: ExecutionFail) -> ExecutionResponse:
        return self._finish(
            execution_id,
            ExecutionStatus.FAILED,
            {"error_message": data.error_message, "error_details": data.error_details},
            workflow_id=data.workflow_id,
        )

    def cancel_execution(self, execution_id: str) -> ExecutionResponse:
        return self._finish(execution_id, ExecutionStatus.CANCELLED, {})

    def _finish(
        self,
        execution_id: str,
        status: ExecutionStatus,
        fields: Dict[str, Any],
        workflow_id: Optional[str] = None
    ) -> ExecutionResponse:
        """
        Move an execution to a terminal status.
        A row that is already terminal is returned unchanged. When no row exists and
        the workflow is known, the execution is recorded directly as finished, since
        n8n may only report the end of a run.
        """
        try:
            row = self._get_execution_row(execution_id)
            now = utcnow()

            if not row:
                if not workflow_id or status == ExecutionStatus.CANCELLED:
                    raise HTTPException(status_code=404, detail=f"Execution '{execution_id}' not found")
                try:
                    result = self.supabase.table("workflow_executions").insert({
                        "workflow_id": workflow_id,
                        "execution_id": execution_id,
                        "status": status.value,
                        "started_at": now.isoformat(),
                        "completed_at": now.isoformat(),
                        "duration_ms": 0,
                        "input_data": {},
                        "created_at": now.isoformat(),
                        **fields,
                    }).execute()
                except APIError as e:
                    if e.code != UNIQUE_VIOLATION:
                        raise
                    # Created concurrently; fall through to the update path
                    row = self._get_execution_row(execution_id)
                    if not row:
                        raise
                else:
                    logger.info(f"Execution {execution_id} recorded directly as {status.value}")
                    return ExecutionResponse(**result.data[0])

            if ExecutionStatus(row["status"]) in TERMINAL_EXECUTION_STATUSES:
                logger.info(f"Execution {execution_id} already {row['status']}; ignoring {status.value}")
                return ExecutionResponse(**row)

            update_data = {
                "status": status.value,
                "completed_at": now.isoformat(),
                "duration_ms": elapsed_ms(row.get("started_at"), now),
                "updated_at": now.isoformat(),
                **fields,
            }
            result = self.supabase.table("workflow_executions")\
                .update(update_data)\
                .eq("id", row["id"])\
                .eq("status", ExecutionStatus.RUNNING.value)\
                .execute()
            if not result.data:
                # Another writer finished it first
                return ExecutionResponse(**self._get_execution_row(execution_id))
            logger.info(f"Execution {execution_id} {status.value} after {update_data['duration_ms']}ms")
            return ExecutionResponse(**result.data[0])
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error finishing execution {execution_id} as {status.value}: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def get_execution(self, execution_id: str) -> ExecutionResponse:
        try:
            row = self._get_execution_row(execution_id)
            if not row:
                raise HTTPException(status_code=404, detail=f"Execution '{execution_id}' not found")
            return ExecutionResponse(**row)
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error getting execution {execution_id}: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[ExecutionResponse]:
        """List executions, newest first"""
        try:
            query = self.supabase.table("workflow_executions").select("*")
            if workflow_id:
                query = query.eq("workflow_id", workflow_id)
            if status:
                query = query.eq("status", status.value)
            result = query.order("started_at", desc=True)\
                .range(offset, offset + limit - 1)\
                .execute()
            return [ExecutionResponse(**row) for row in result.data]
        except Exception as e:
            logger.error(f"Error listing executions: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))
