"""
Reminder Flows - execution runtime for broker reminder flows
"""

__version__ = "1.0.0"

from .core.manager import ExecutionManager
from .core.scheduler import WakeScheduler
from .core.parser import FlowParser
from .core.flow_store import FlowStore
from .models.flow import Flow, Step, Connection
from .models.execution import FlowExecution, DomainEvent

__all__ = [
    "ExecutionManager",
    "WakeScheduler",
    "FlowParser",
    "FlowStore",
    "Flow",
    "Step",
    "Connection",
    "FlowExecution",
    "DomainEvent"
]
