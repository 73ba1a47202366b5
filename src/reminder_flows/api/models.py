"""
API request and response models
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ConfigDict

from ..clock import utcnow
from ..models.flow import TriggerEvent, StepType, EdgeType
from ..models.execution import ExecutionStatus


# Flow models

class StepDefinition(BaseModel):
    """Step of a flow document"""
    step_key: str = Field(..., min_length=1, description="Unique key within the flow")
    step_type: StepType = Field(..., description="Step type")
    label: Optional[str] = Field(None, description="Display label")
    description: Optional[str] = Field(None, description="Description")
    config: Dict[str, Any] = Field(default_factory=dict, description="Type specific config")
    position_x: Optional[float] = Field(None, description="Editor position, ignored")
    position_y: Optional[float] = Field(None, description="Editor position, ignored")


class ConnectionDefinition(BaseModel):
    """Connection of a flow document"""
    edge_key: Optional[str] = Field(None, description="Unique key within the flow")
    source_step_key: str = Field(..., description="Source step key")
    target_step_key: str = Field(..., description="Target step key")
    edge_type: EdgeType = Field(EdgeType.DEFAULT, description="Edge kind")
    label: Optional[str] = Field(None, description="Display label")


class FlowDocument(BaseModel):
    """Create or replace a flow"""
    id: Optional[str] = Field(None, description="Flow ID, generated when omitted")
    name: str = Field(..., min_length=1, description="Flow name")
    description: Optional[str] = Field(None, description="Description")
    trigger_event: TriggerEvent = Field(..., description="Event that starts the flow")
    trigger_delay_days: int = Field(0, ge=0, description="Days between trigger and first step")
    is_active: bool = Field(False, description="Whether events start new executions")
    apply_to_all: bool = Field(True, description="Apply to every loan")
    target_entity_ids: List[str] = Field(default_factory=list, description="Loans when not applying to all")
    steps: List[StepDefinition] = Field(..., description="Steps")
    connections: List[ConnectionDefinition] = Field(default_factory=list, description="Connections")

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class FlowToggleRequest(BaseModel):
    """Activate or deactivate; flips the flag when omitted"""
    is_active: Optional[bool] = Field(None, description="Target state")


class FlowResponse(BaseModel):
    """Flow summary"""
    id: str = Field(..., description="Flow ID")
    name: str = Field(..., description="Flow name")
    description: Optional[str] = Field(None, description="Description")
    trigger_event: str = Field(..., description="Trigger event")
    trigger_delay_days: int = Field(..., description="Trigger delay in days")
    is_active: bool = Field(..., description="Whether active")
    apply_to_all: bool = Field(..., description="Apply to every loan")
    version: int = Field(..., description="Current version")
    step_count: int = Field(..., description="Number of steps")
    active_executions: int = Field(0, description="Executions currently active")
    created_at: datetime = Field(..., description="Created at")
    updated_at: datetime = Field(..., description="Updated at")

    model_config = ConfigDict(from_attributes=True)


class FlowDetailResponse(FlowResponse):
    """Flow with its graph"""
    target_entity_ids: List[str] = Field(default_factory=list, description="Targeted loans")
    steps: List[Dict[str, Any]] = Field(default_factory=list, description="Steps")
    connections: List[Dict[str, Any]] = Field(default_factory=list, description="Connections")


class ValidationResultResponse(BaseModel):
    """Result of a dry-run validation"""
    valid: bool = Field(..., description="Whether the document is valid")
    errors: List[str] = Field(default_factory=list, description="Validation errors")


# Execution models

class ExecutionResponse(BaseModel):
    """Dashboard row for an execution"""
    id: str = Field(..., description="Execution ID")
    flow_id: str = Field(..., description="Flow ID")
    flow_name: Optional[str] = Field(None, description="Flow name")
    flow_version: int = Field(..., description="Pinned flow version")
    entity_id: str = Field(..., description="Loan application ID")
    client_name: Optional[str] = Field(None, description="Client name")
    application_number: Optional[str] = Field(None, description="Application number")
    status: ExecutionStatus = Field(..., description="Status")
    current_step_key: Optional[str] = Field(None, description="Current step")
    next_execution_at: Optional[datetime] = Field(None, description="Next due time")
    failure_reason: Optional[str] = Field(None, description="Failure reason")
    created_at: datetime = Field(..., description="Created at")
    updated_at: datetime = Field(..., description="Updated at")
    completed_at: Optional[datetime] = Field(None, description="Finished at")


class ExecutionDetailResponse(ExecutionResponse):
    """Execution with context snapshot and step history"""
    trigger_event: Optional[str] = Field(None, description="Trigger event")
    context: Dict[str, Any] = Field(default_factory=dict, description="Context snapshot")
    history: List[Dict[str, Any]] = Field(default_factory=list, description="Steps entered")


class TriggerEventRequest(BaseModel):
    """Domain event that may start executions"""
    event_type: TriggerEvent = Field(..., description="Event type")
    entity_id: str = Field(..., min_length=1, description="Loan application ID")
    occurred_at: Optional[datetime] = Field(None, description="When it happened")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Event payload")


class TriggerEventResponse(BaseModel):
    """Executions created by an event"""
    event_type: str = Field(..., description="Event type")
    entity_id: str = Field(..., description="Loan application ID")
    executions: List[ExecutionResponse] = Field(default_factory=list, description="Created executions")


# Monitoring models

class HealthCheckResponse(BaseModel):
    """Health check"""
    status: str = Field(..., description="healthy or unhealthy")
    version: str = Field(..., description="Service version")
    timestamp: datetime = Field(default_factory=utcnow, description="Checked at")
    checks: Dict[str, Any] = Field(default_factory=dict, description="Component checks")


class SchedulerStatsResponse(BaseModel):
    """Scheduler state"""
    running: bool = Field(..., description="Whether the tick loop runs")
    pending_wakes: int = Field(..., description="Wakes in the in-memory queue")
    ticks: int = Field(..., description="Ticks since start")
    last_tick_at: Optional[str] = Field(None, description="Last tick time")
    total_advanced: int = Field(..., description="Executions advanced")
    total_failed: int = Field(..., description="Advances that raised")
    total_skipped: int = Field(0, description="Advances skipped because another worker held the lock")
    interval_seconds: float = Field(..., description="Tick interval")
    concurrency: int = Field(..., description="Parallel advances per tick")
    executions_by_status: Dict[str, int] = Field(default_factory=dict, description="Execution counts")


class TickResponse(BaseModel):
    """Result of a manual tick"""
    advanced: List[str] = Field(default_factory=list, description="Executions advanced")
    failed: List[str] = Field(default_factory=list, description="Executions whose advance raised")
    skipped: List[str] = Field(default_factory=list, description="Executions locked by another worker")


# Common models

class ErrorResponse(BaseModel):
    """Error body"""
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Details")
    request_id: Optional[str] = Field(None, description="Request ID")
    timestamp: datetime = Field(default_factory=utcnow, description="Timestamp")


class SuccessResponse(BaseModel):
    """Generic success body"""
    success: bool = Field(True, description="Whether it succeeded")
    message: str = Field(..., description="Message")
    data: Optional[Dict[str, Any]] = Field(None, description="Extra data")

