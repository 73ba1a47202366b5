"""
Reminder flow runtime components
"""
from .conditions import ConditionEvaluator
from .flow_store import FlowStore
from .graph import GraphWalker
from .manager import ExecutionManager, StepOutcome
from .parser import FlowParser, flow_to_dict
from .renderer import MessageRenderer
from .scheduler import WakeScheduler, TickResult

__all__ = [
    "ConditionEvaluator",
    "FlowStore",
    "GraphWalker",
    "ExecutionManager",
    "StepOutcome",
    "FlowParser",
    "flow_to_dict",
    "MessageRenderer",
    "WakeScheduler",
    "TickResult"
]
