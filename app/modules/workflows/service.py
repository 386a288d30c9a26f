from supabase import Client
from postgrest.exceptions import APIError
from fastapi import HTTPException
from typing import List, Optional, Dict, Any
from datetime import timedelta
import logging

from app.core.audit import record_audit_event
from app.core.timeutils import utcnow, elapsed_ms
from app.modules.workflows.schemas import (
    WorkflowStateCreate, StateTransitionRequest, WorkflowStateResponse, StateTransitionRecord,
    StateStatistics, WorkflowStateHistory, WorkflowTriggerCreate, WorkflowTriggerUpdate,
    WorkflowTriggerResponse, TriggerFireResponse
)
from app.modules.workflows.state_machine import (
    WorkflowState, TransitionType, TERMINAL_STATES, RESET_STATES, InvalidStateError,
    parse_state, is_valid_transition, default_transition_type, sync_path
)

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"
SYNC_ATTEMPTS = 3


class WorkflowStateService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def _get_state_row(self, workflow_id: str) -> Optional[Dict[str, Any]]:
        result = self.supabase.table("workflow_states")\
            .select("*")\
            .eq("workflow_id", workflow_id)\
            .limit(1)\
            .execute()
        return result.data[0] if result.data else None

    def get_state(self, workflow_id: str) -> WorkflowStateResponse:
        """Get the current state of a workflow"""
        try:
            row = self._get_state_row(workflow_id)
            if not row:
                raise HTTPException(status_code=404, detail=f"No state recorded for workflow '{workflow_id}'")
            return WorkflowStateResponse(**row)
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error getting workflow state for {workflow_id}: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def create_state(self, state_data: WorkflowStateCreate, actor_id: Optional[str] = None) -> WorkflowStateResponse:
        """Create the state row for a workflow; 409 if one already exists"""
        try:
            initial = parse_state(state_data.initial_state)
            if self._get_state_row(state_data.workflow_id):
                raise HTTPException(status_code=409, detail=f"Workflow '{state_data.workflow_id}' already has a state")
            return self._insert_state(
                state_data.workflow_id,
                initial,
                execution_id=state_data.execution_id,
                metadata=state_data.metadata,
                triggered_by=actor_id,
                reason="Initial state creation",
                actor_id=actor_id,
            )
        except InvalidStateError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error creating workflow state for {state_data.workflow_id}: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def transition(
        self,
        workflow_id: str,
        request: StateTransitionRequest,
        actor_id: Optional[str] = None
    ) -> WorkflowStateResponse:
        """
        Move a workflow to request.target_state.
        Creates the state row when the workflow has none. Otherwise the move must be
        legal from the stored state, and the write is a compare-and-swap on version.
        """
        try:
            target = parse_state(request.target_state)
            expected = parse_state(request.expected_state) if request.expected_state else None
        except InvalidStateError as e:
            raise HTTPException(status_code=400, detail=str(e))

        try:
            row = self._get_state_row(workflow_id)
            if not row:
                if expected is not None:
                    raise HTTPException(
                        status_code=409,
                        detail=f"Expected state '{expected.value}' but workflow '{workflow_id}' has no state"
                    )
                return self._insert_state(
                    workflow_id,
                    target,
                    execution_id=request.execution_id,
                    metadata=request.metadata,
                    progress=request.progress_percentage,
                    triggered_by=request.triggered_by or actor_id,
                    reason=request.reason,
                    actor_id=actor_id,
                )

            current = WorkflowState(row["current_state"])
            if expected is not None and current != expected:
                raise HTTPException(
                    status_code=409,
                    detail=f"Expected state '{expected.value}' but workflow is '{current.value}'"
                )
            if not is_valid_transition(current, target):
                raise HTTPException(
                    status_code=409,
                    detail=f"Invalid transition: {current.value} -> {target.value}"
                )
            return self._apply_transition(
                row,
                target,
                request.transition_type or default_transition_type(current, target),
                execution_id=request.execution_id,
                progress=request.progress_percentage,
                metadata=request.metadata,
                triggered_by=request.triggered_by or actor_id,
                reason=request.reason,
                actor_id=actor_id,
            )
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error transitioning workflow {workflow_id} to {target.value}: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def sync_to_state(
        self,
        workflow_id: str,
        target: WorkflowState,
        execution_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        triggered_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> WorkflowStateResponse:
        """
        Move a workflow to the state n8n reports for it.
        A start event for a finished workflow is a new run and goes through idle.
        Any other illegal move is logged and skipped, leaving the state as it is.
        A lost version race re-reads the row and plans again; the 409 is raised only
        once SYNC_ATTEMPTS plans have all lost.
        """
        for attempt in range(1, SYNC_ATTEMPTS + 1):
            try:
                return self._sync_once(workflow_id, target, execution_id, metadata, triggered_by, reason)
            except HTTPException as e:
                if e.status_code != 409 or attempt == SYNC_ATTEMPTS:
                    raise
                logger.info(f"Workflow {workflow_id} changed during sync to {target.value} (attempt {attempt}); re-reading")

    def _sync_once(
        self,
        workflow_id: str,
        target: WorkflowState,
        execution_id: Optional[str],
        metadata: Optional[Dict[str, Any]],
        triggered_by: Optional[str],
        reason: Optional[str],
    ) -> WorkflowStateResponse:
        row = self._get_state_row(workflow_id)
        if not row:
            return self._insert_state(
                workflow_id, target, execution_id=execution_id, metadata=metadata or {},
                triggered_by=triggered_by, reason=reason,
            )
        current = WorkflowState(row["current_state"])
        state = WorkflowStateResponse(**row)
        path = sync_path(current, target)
        if path is None:
            logger.warning(f"Skipping state change for workflow {workflow_id}: {current.value} -> {target.value} is not allowed")
            return state
        if not path and execution_id and execution_id != row.get("execution_id"):
            logger.info(f"Workflow {workflow_id} already {target.value}; execution {execution_id} not applied")
        for hop in path:
            state = self._apply_transition(
                row,
                hop,
                default_transition_type(WorkflowState(row["current_state"]), hop),
                execution_id=execution_id,
                metadata=metadata or {},
                triggered_by=triggered_by,
                reason=reason,
            )
            row = state.model_dump(mode="json")
        return state

    def _insert_state(
        self,
        workflow_id: str,
        state: WorkflowState,
        execution_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        progress: Optional[int] = None,
        triggered_by: Optional[str] = None,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> WorkflowStateResponse:
        now = utcnow().isoformat()
        data = {
            "workflow_id": workflow_id,
            "current_state": state.value,
            "previous_state": None,
            "execution_id": execution_id,
            "started_at": now if state == WorkflowState.RUNNING else None,
            "completed_at": now if state in TERMINAL_STATES else None,
            "duration_ms": 0 if state in TERMINAL_STATES else None,
            "progress_percentage": progress if progress is not None else (100 if state == WorkflowState.COMPLETED else 0),
            "metadata": metadata or {},
            "version": 1,
            "created_at": now,
            "updated_at": now,
        }
        try:
            result = self.supabase.table("workflow_states").insert(data).execute()
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                raise HTTPException(status_code=409, detail=f"Workflow '{workflow_id}' already has a state")
            raise
        if not result.data:
            raise HTTPException(status_code=500, detail="Failed to create workflow state")
        created = result.data[0]
        self._record_transition(
            created, None, state, TransitionType.START,
            duration_in_previous_state_ms=None, triggered_by=triggered_by,
            reason=reason, metadata=metadata,
        )
        record_audit_event(
            self.supabase, "workflow_state.create", "workflow", workflow_id,
            actor_id=actor_id, new_values={"current_state": state.value},
        )
        return WorkflowStateResponse(**created)

    def _apply_transition(
        self,
        row: Dict[str, Any],
        target: WorkflowState,
        transition_type: TransitionType,
        execution_id: Optional[str] = None,
        progress: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        triggered_by: Optional[str] = None,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> WorkflowStateResponse:
        now = utcnow()
        current = WorkflowState(row["current_state"])
        version = row.get("version") or 1
        update_data: Dict[str, Any] = {
            "current_state": target.value,
            "previous_state": current.value,
            "updated_at": now.isoformat(),
            "version": version + 1,
            "metadata": {**(row.get("metadata") or {}), **(metadata or {})},
        }
        if execution_id:
            update_data["execution_id"] = execution_id
        if progress is not None:
            update_data["progress_percentage"] = progress

        started_at = row.get("started_at")
        if target == WorkflowState.RUNNING and not started_at:
            started_at = now.isoformat()
            update_data["started_at"] = started_at
        if target in TERMINAL_STATES:
            update_data["completed_at"] = now.isoformat()
            update_data["duration_ms"] = elapsed_ms(started_at, now)
            if target == WorkflowState.COMPLETED and progress is None:
                update_data["progress_percentage"] = 100
        if target in RESET_STATES:
            update_data.update({"started_at": None, "completed_at": None, "duration_ms": None})
            if progress is None:
                update_data["progress_percentage"] = 0

        result = self.supabase.table("workflow_states")\
            .update(update_data)\
            .eq("id", row["id"])\
            .eq("version", version)\
            .execute()
        if not result.data:
            raise HTTPException(
                status_code=409,
                detail=f"Workflow '{row['workflow_id']}' was modified concurrently; reload and retry"
            )
        updated = result.data[0]

        transition_metadata = dict(metadata or {})
        if target in TERMINAL_STATES and update_data.get("duration_ms") is not None:
            transition_metadata["run_duration_ms"] = update_data["duration_ms"]
        self._record_transition(
            updated, current, target, transition_type,
            duration_in_previous_state_ms=elapsed_ms(row.get("updated_at"), now),
            triggered_by=triggered_by, reason=reason, metadata=transition_metadata,
        )
        record_audit_event(
            self.supabase, "workflow_state.transition", "workflow", row["workflow_id"],
            actor_id=actor_id,
            old_values={"current_state": current.value, "version": version},
            new_values={"current_state": target.value, "version": version + 1},
        )
        logger.info(f"Workflow {row['workflow_id']}: {current.value} -> {target.value} ({transition_type.value})")
        return WorkflowStateResponse(**updated)

    def _record_transition(
        self,
        state_row: Dict[str, Any],
        from_state: Optional[WorkflowState],
        to_state: WorkflowState,
        transition_type: TransitionType,
        duration_in_previous_state_ms: Optional[int] = None,
        triggered_by: Optional[str] = None,
        reason: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.supabase.table("workflow_state_transitions").insert({
            "workflow_state_id": state_row["id"],
            "workflow_id": state_row["workflow_id"],
            "from_state": from_state.value if from_state else None,
            "to_state": to_state.value,
            "transition_type": transition_type.value,
            "duration_in_previous_state_ms": duration_in_previous_state_ms,
            "triggered_by": triggered_by,
            "reason": reason,
            "metadata": metadata or {},
            "created_at": utcnow().isoformat(),
        }).execute()

    def list_states(
        self,
        workflow_ids: Optional[List[str]] = None,
        state: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[WorkflowStateResponse]:
        """List workflow states, optionally restricted to ids and/or a current state"""
        try:
            query = self.supabase.table("workflow_states").select("*")
            if workflow_ids:
                query = query.in_("workflow_id", workflow_ids)
            if state:
                query = query.eq("current_state", parse_state(state).value)
            result = query.order("updated_at", desc=True)\
                .range(offset, offset + limit - 1)\
                .execute()
            return [WorkflowStateResponse(**row) for row in result.data]
        except InvalidStateError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except Exception as e:
            logger.error(f"Error listing workflow states: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def get_history(self, workflow_id: str, limit: int = 50) -> WorkflowStateHistory:
        """Transition history (newest first) with run and per-state statistics"""
        current = self.get_state(workflow_id)
        try:
            result = self.supabase.table("workflow_state_transitions")\
                .select("*")\
                .eq("workflow_state_id", current.id)\
                .order("created_at", desc=True)\
                .limit(limit)\
                .execute()
            transitions = [StateTransitionRecord(**t) for t in result.data]
        except Exception as e:
            logger.error(f"Error getting workflow history for {workflow_id}: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

        entries: Dict[str, int] = {s.value: 0 for s in WorkflowState}
        time_in: Dict[str, List[int]] = {s.value: [] for s in WorkflowState}
        run_durations: List[int] = []
        total_runs = 0
        for t in transitions:
            entries[t.to_state] = entries.get(t.to_state, 0) + 1
            if t.from_state and t.duration_in_previous_state_ms is not None:
                time_in.setdefault(t.from_state, []).append(t.duration_in_previous_state_ms)
            if t.to_state == WorkflowState.RUNNING.value and t.transition_type == TransitionType.START.value:
                total_runs += 1
            if t.to_state in {s.value for s in TERMINAL_STATES}:
                run_duration = (t.metadata or {}).get("run_duration_ms")
                if run_duration is not None:
                    run_durations.append(run_duration)

        successful = entries[WorkflowState.COMPLETED.value]
        failed = entries[WorkflowState.FAILED.value]
        cancelled = entries[WorkflowState.CANCELLED.value]
        finished = successful + failed + cancelled

        statistics = {}
        for state_name, count in entries.items():
            durations = time_in.get(state_name, [])
            total = sum(durations)
            statistics[state_name] = StateStatistics(
                count=count,
                total_duration_ms=total,
                average_duration_ms=(total / len(durations)) if durations else 0.0,
            )

        return WorkflowStateHistory(
            workflow_id=workflow_id,
            current=current,
            total_runs=total_runs,
            successful_runs=successful,
            failed_runs=failed,
            cancelled_runs=cancelled,
            success_rate=round(successful / finished * 100, 2) if finished else 0.0,
            average_run_duration_ms=(sum(run_durations) / len(run_durations)) if run_durations else 0.0,
            transitions=transitions,
            state_statistics=statistics,
        )

    def cleanup_old_states(self, older_than_days: int) -> int:
        """Delete idle/terminal workflow states not touched within older_than_days"""
        try:
            cutoff = (utcnow() - timedelta(days=older_than_days)).isoformat()
            removable = [WorkflowState.IDLE.value] + [s.value for s in TERMINAL_STATES]
            result = self.supabase.table("workflow_states")\
                .delete()\
                .lt("updated_at", cutoff)\
                .in_("current_state", removable)\
                .execute()
            deleted = len(result.data or [])
            logger.info(f"Removed {deleted} workflow state(s) older than {older_than_days} days")
            return deleted
        except Exception as e:
            logger.error(f"Error cleaning up workflow states: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))


class WorkflowTriggerService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def create_trigger(self, trigger_data: WorkflowTriggerCreate) -> WorkflowTriggerResponse:
        """Register a workflow trigger"""
        try:
            now = utcnow().isoformat()
            result = self.supabase.table("workflow_triggers").insert({
                "workflow_id": trigger_data.workflow_id,
                "trigger_type": trigger_data.trigger_type,
                "conditions": trigger_data.conditions,
                "enabled": trigger_data.enabled,
                "endpoint_id": trigger_data.endpoint_id,
                "trigger_count": 0,
                "created_at": now,
            }).execute()
            if not result.data:
                raise HTTPException(status_code=500, detail="Failed to create workflow trigger")
            return WorkflowTriggerResponse(**result.data[0])
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error creating workflow trigger: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def get_trigger(self, trigger_id: str) -> WorkflowTriggerResponse:
        try:
            result = self.supabase.table("workflow_triggers")\
                .select("*")\
                .eq("id", trigger_id)\
                .limit(1)\
                .execute()
            if not result.data:
                raise HTTPException(status_code=404, detail="Workflow trigger not found")
            return WorkflowTriggerResponse(**result.data[0])
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error getting workflow trigger: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def list_triggers(self, workflow_id: Optional[str] = None, enabled: Optional[bool] = None) -> List[WorkflowTriggerResponse]:
        try:
            query = self.supabase.table("workflow_triggers").select("*")
            if workflow_id:
                query = query.eq("workflow_id", workflow_id)
            if enabled is not None:
                query = query.eq("enabled", enabled)
            result = query.order("created_at", desc=True).execute()
            return [WorkflowTriggerResponse(**t) for t in result.data]
        except Exception as e:
            logger.error(f"Error listing workflow triggers: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def update_trigger(self, trigger_id: str, trigger_data: WorkflowTriggerUpdate) -> WorkflowTriggerResponse:
        try:
            update_data = trigger_data.model_dump(exclude_unset=True)
            if not update_data:
                return self.get_trigger(trigger_id)
            update_data["updated_at"] = utcnow().isoformat()
            result = self.supabase.table("workflow_triggers")\
                .update(update_data)\
                .eq("id", trigger_id)\
                .execute()
            if not result.data:
                raise HTTPException(status_code=404, detail="Workflow trigger not found")
            return WorkflowTriggerResponse(**result.data[0])
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error updating workflow trigger: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def fire_trigger(self, trigger_id: str, payload: Dict[str, Any]) -> TriggerFireResponse:
        """Count a firing and, when the trigger is linked to an endpoint, deliver payload to it"""
        trigger = self.get_trigger(trigger_id)
        if not trigger.enabled:
            raise HTTPException(status_code=400, detail="Workflow trigger is disabled")

        now = utcnow().isoformat()
        result = self.supabase.table("workflow_triggers")\
            .update({
                "trigger_count": trigger.trigger_count + 1,
                "last_triggered": now,
                "updated_at": now,
            })\
            .eq("id", trigger_id)\
            .execute()
        updated = WorkflowTriggerResponse(**result.data[0]) if result.data else trigger

        if not trigger.endpoint_id:
            return TriggerFireResponse(trigger=updated)

        from app.modules.webhooks.schemas import DeliveryRequest
        from app.modules.webhooks.service import WebhookService
        delivery = WebhookService(self.supabase).deliver(
            trigger.endpoint_id,
            DeliveryRequest(
                payload={**payload, "workflowId": trigger.workflow_id, "triggerId": trigger.id},
                workflow_id=trigger.workflow_id,
            ),
        )
        return TriggerFireResponse(trigger=updated, delivered=delivery.success, delivery_error=delivery.error)
