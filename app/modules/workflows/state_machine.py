"""Workflow lifecycle states and the legal transitions between them."""
from enum import Enum
from typing import Dict, FrozenSet, List, Optional


class WorkflowState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    RETRYING = "retrying"
    SCHEDULED = "scheduled"


class TransitionType(str, Enum):
    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    COMPLETE = "complete"
    FAIL = "fail"
    CANCEL = "cancel"
    RETRY = "retry"
    SCHEDULE = "schedule"
    RESET = "reset"


TERMINAL_STATES: FrozenSet[WorkflowState] = frozenset({
    WorkflowState.COMPLETED,
    WorkflowState.FAILED,
    WorkflowState.CANCELLED,
})

# States that clear run timestamps when entered (re-runs start from here)
RESET_STATES: FrozenSet[WorkflowState] = frozenset({WorkflowState.IDLE, WorkflowState.PENDING})

VALID_TRANSITIONS: Dict[WorkflowState, FrozenSet[WorkflowState]] = {
    WorkflowState.IDLE: frozenset({WorkflowState.PENDING, WorkflowState.SCHEDULED, WorkflowState.RUNNING}),
    WorkflowState.PENDING: frozenset({WorkflowState.RUNNING, WorkflowState.CANCELLED, WorkflowState.FAILED}),
    WorkflowState.RUNNING: frozenset({WorkflowState.PAUSED, WorkflowState.COMPLETED, WorkflowState.FAILED, WorkflowState.CANCELLED}),
    WorkflowState.PAUSED: frozenset({WorkflowState.RUNNING, WorkflowState.CANCELLED, WorkflowState.FAILED}),
    WorkflowState.COMPLETED: frozenset({WorkflowState.IDLE, WorkflowState.PENDING}),
    WorkflowState.FAILED: frozenset({WorkflowState.RETRYING, WorkflowState.CANCELLED, WorkflowState.IDLE}),
    WorkflowState.CANCELLED: frozenset({WorkflowState.IDLE, WorkflowState.PENDING}),
    WorkflowState.RETRYING: frozenset({WorkflowState.RUNNING, WorkflowState.FAILED, WorkflowState.CANCELLED}),
    WorkflowState.SCHEDULED: frozenset({WorkflowState.PENDING, WorkflowState.RUNNING, WorkflowState.CANCELLED}),
}


class InvalidStateError(ValueError):
    """Raised for a state name outside WorkflowState."""


def parse_state(value: str) -> WorkflowState:
    try:
        return WorkflowState(value)
    except ValueError:
        allowed = ", ".join(s.value for s in WorkflowState)
        raise InvalidStateError(f"Invalid state '{value}'. Must be one of: {allowed}")


def is_valid_transition(current: WorkflowState, target: WorkflowState) -> bool:
    return target in VALID_TRANSITIONS.get(current, frozenset())


def default_transition_type(current: Optional[WorkflowState], target: WorkflowState) -> TransitionType:
    """Transition type implied by moving from current to target."""
    if target == WorkflowState.RUNNING:
        return TransitionType.RESUME if current == WorkflowState.PAUSED else TransitionType.START
    return {
        WorkflowState.PAUSED: TransitionType.PAUSE,
        WorkflowState.COMPLETED: TransitionType.COMPLETE,
        WorkflowState.FAILED: TransitionType.FAIL,
        WorkflowState.CANCELLED: TransitionType.CANCEL,
        WorkflowState.RETRYING: TransitionType.RETRY,
        WorkflowState.SCHEDULED: TransitionType.SCHEDULE,
        WorkflowState.IDLE: TransitionType.RESET,
        WorkflowState.PENDING: TransitionType.RESET,
    }[target]


def sync_path(current: WorkflowState, target: WorkflowState) -> Optional[List[WorkflowState]]:
    """
    Hops that move a workflow from current to target when n8n reports target.
    Empty list when already there. A finished run restarts through IDLE. None when
    target is not a legal move from current.
    """
    if current == target:
        return []
    if is_valid_transition(current, target):
        return [target]
    if current in TERMINAL_STATES and is_valid_transition(current, WorkflowState.IDLE) \
            and is_valid_transition(WorkflowState.IDLE, target):
        return [WorkflowState.IDLE, target]
    return None
