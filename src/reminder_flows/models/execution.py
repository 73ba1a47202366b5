"""
Reminder flow execution models
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from ..clock import utcnow
from ..exceptions import StateTransitionError
from .flow import TriggerEvent


class ExecutionStatus(Enum):
    """Execution lifecycle status"""
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({
    ExecutionStatus.COMPLETED,
    ExecutionStatus.CANCELLED,
    ExecutionStatus.FAILED,
})

# Statuses that block a second execution for the same (flow, entity)
BLOCKING_STATUSES = frozenset({
    ExecutionStatus.ACTIVE,
    ExecutionStatus.PAUSED,
    ExecutionStatus.COMPLETED,
})


@dataclass
class DomainEvent:
    """An external fact that may start executions"""
    event_type: TriggerEvent
    entity_id: str
    occurred_at: datetime = field(default_factory=utcnow)
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class EntityState:
    """Point-in-time facts about a loan used by conditions"""
    entity_id: str
    task_statuses: Dict[str, str] = field(default_factory=dict)
    last_activity_at: Optional[datetime] = None
    loan_status: Optional[str] = None
    evaluated_at: datetime = field(default_factory=utcnow)


@dataclass
class FlowExecution:
    """One run of a flow against one loan"""
    id: str = field(default_factory=lambda: str(uuid4()))
    flow_id: str = ""
    flow_version: int = 1
    entity_id: str = ""
    trigger_event: Optional[str] = None
    status: ExecutionStatus = ExecutionStatus.ACTIVE
    current_step_key: Optional[str] = None
    next_execution_at: Optional[datetime] = None
    context: Dict[str, Any] = field(default_factory=dict)
    history: List[Dict[str, Any]] = field(default_factory=list)
    failure_reason: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def dedupe_key(self) -> Optional[str]:
        """Unique while the execution blocks re-creation for its (flow, entity)"""
        if self.status in BLOCKING_STATUSES:
            return f"{self.flow_id}:{self.entity_id}"
        return None

    def is_terminal_state(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_due(self, now: datetime) -> bool:
        return (
            self.status == ExecutionStatus.ACTIVE
            and self.next_execution_at is not None
            and self.next_execution_at <= now
        )

    def record_step(self, step_key: str, step_type: str, at: datetime, **details):
        """Append a history entry for a step that has just been entered"""
        entry = {"step_key": step_key, "step_type": step_type, "at": at.isoformat()}
        entry.update(details)
        self.history.append(entry)

    def complete(self, now: datetime = None):
        self._ensure_not_terminal(ExecutionStatus.COMPLETED)
        now = now or utcnow()
        self.status = ExecutionStatus.COMPLETED
        self.next_execution_at = None
        self.completed_at = now
        self.updated_at = now

    def fail(self, reason: str, now: datetime = None):
        self._ensure_not_terminal(ExecutionStatus.FAILED)
        now = now or utcnow()
        self.status = ExecutionStatus.FAILED
        self.failure_reason = reason
        self.next_execution_at = None
        self.completed_at = now
        self.updated_at = now

    def pause(self, now: datetime = None):
        if self.status != ExecutionStatus.ACTIVE:
            raise StateTransitionError(self.status.value, ExecutionStatus.PAUSED.value)
        self.status = ExecutionStatus.PAUSED
        self.updated_at = now or utcnow()

    def resume(self, now: datetime = None):
        if self.status != ExecutionStatus.PAUSED:
            raise StateTransitionError(self.status.value, ExecutionStatus.ACTIVE.value)
        self.status = ExecutionStatus.ACTIVE
        self.updated_at = now or utcnow()

    def cancel(self, now: datetime = None):
        self._ensure_not_terminal(ExecutionStatus.CANCELLED)
        now = now or utcnow()
        self.status = ExecutionStatus.CANCELLED
        self.next_execution_at = None
        self.completed_at = now
        self.updated_at = now

    def _ensure_not_terminal(self, target: ExecutionStatus):
        if self.is_terminal_state():
            raise StateTransitionError(
                self.status.value, target.value, "execution already finished"
            )


@dataclass
class ExecutionFilter:
    """Query for the executions read model"""
    flow_id: Optional[str] = None
    entity_id: Optional[str] = None
    status: Optional[ExecutionStatus] = None
    offset: int = 0
    limit: int = 100

    def matches(self, execution: FlowExecution) -> bool:
        if self.flow_id and execution.flow_id != self.flow_id:
            return False
        if self.entity_id and execution.entity_id != self.entity_id:
            return False
        if self.status and execution.status != self.status:
            return False
        return True


class ExecutionEventType(Enum):
    """Lifecycle events published by the execution manager"""
    EXECUTION_CREATED = "execution_created"
    STEP_ENTERED = "step_entered"
    DISPATCH_FAILED = "dispatch_failed"
    EXECUTION_WAITING = "execution_waiting"
    EXECUTION_COMPLETED = "execution_completed"
    EXECUTION_FAILED = "execution_failed"
    EXECUTION_PAUSED = "execution_paused"
    EXECUTION_RESUMED = "execution_resumed"
    EXECUTION_CANCELLED = "execution_cancelled"


@dataclass
class ExecutionEvent:
    """Lifecycle event payload"""
    execution_id: str
    event_type: ExecutionEventType
    step_key: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=utcnow)
    data: Dict[str, Any] = field(default_factory=dict)
