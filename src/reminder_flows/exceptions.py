"""
Reminder flow engine exceptions
"""
from typing import List, Optional


class ReminderFlowError(Exception):
    """Base class for reminder flow errors"""
    pass


class FlowParseError(ReminderFlowError):
    """Raised when a flow document cannot be read"""
    pass


class FlowValidationError(ReminderFlowError):
    """Raised when a flow document fails validation at save time"""
    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(f"Flow validation failed: {self.errors}")


class FlowNotFoundError(ReminderFlowError):
    """Flow does not exist"""
    def __init__(self, flow_id: str, version: Optional[int] = None):
        self.flow_id = flow_id
        self.version = version
        msg = f"Flow not found: {flow_id}"
        if version is not None:
            msg += f" (version {version})"
        super().__init__(msg)


class ExecutionNotFoundError(ReminderFlowError):
    """Execution does not exist"""
    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Execution not found: {execution_id}")


class ConfigurationError(ReminderFlowError):
    """Malformed graph discovered while running an execution"""
    def __init__(self, message: str, step_key: str = None):
        self.step_key = step_key
        if step_key:
            message = f"Step '{step_key}': {message}"
        super().__init__(message)


class DispatchError(ReminderFlowError):
    """Channel provider failed to deliver a message"""
    def __init__(self, channel: str, message: str):
        self.channel = channel
        super().__init__(f"Dispatch over '{channel}' failed: {message}")


class ConcurrencyConflict(ReminderFlowError):
    """Another worker holds the execution lock"""
    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Execution '{execution_id}' is locked by another worker")


class StateTransitionError(ReminderFlowError):
    """Illegal execution status transition"""
    def __init__(self, current_state: str, target_state: str, message: str = None):
        self.current_state = current_state
        self.target_state = target_state
        msg = f"Invalid state transition from '{current_state}' to '{target_state}'"
        if message:
            msg += f": {message}"
        super().__init__(msg)
