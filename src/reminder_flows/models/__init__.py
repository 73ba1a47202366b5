"""Flow and execution models"""

from .flow import (
    Flow, Step, Connection, TriggerEvent, StepType, EdgeType, ConditionType,
    WaitConfig, MessageConfig, ConditionConfig, SEND_STEP_TYPES
)
from .execution import (
    FlowExecution, ExecutionStatus, ExecutionFilter, DomainEvent, EntityState,
    ExecutionEvent, ExecutionEventType, TERMINAL_STATUSES, BLOCKING_STATUSES
)

__all__ = [
    "Flow",
    "Step",
    "Connection",
    "TriggerEvent",
    "StepType",
    "EdgeType",
    "ConditionType",
    "WaitConfig",
    "MessageConfig",
    "ConditionConfig",
    "SEND_STEP_TYPES",
    "FlowExecution",
    "ExecutionStatus",
    "ExecutionFilter",
    "DomainEvent",
    "EntityState",
    "ExecutionEvent",
    "ExecutionEventType",
    "TERMINAL_STATUSES",
    "BLOCKING_STATUSES"
]
