"""
FastAPI dependencies
"""
import logging

from fastapi import HTTPException, status

from .state import get_app_state
from ..core import ExecutionManager, FlowStore, WakeScheduler
from ..runtime import ReminderRuntime


logger = logging.getLogger(__name__)


def _require(key: str, label: str):
    component = get_app_state().get(key)
    if component is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": "service_unavailable",
                "message": f"{label} not initialized"
            }
        )
    return component


def get_runtime() -> ReminderRuntime:
    return _require("runtime", "Runtime")


def get_execution_manager() -> ExecutionManager:
    return _require("manager", "Execution manager")


def get_flow_store() -> FlowStore:
    return _require("flow_store", "Flow store")


def get_scheduler() -> WakeScheduler:
    return _require("scheduler", "Scheduler")
