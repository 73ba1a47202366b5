"""
Trigger event ingestion
"""
import logging

from fastapi import APIRouter, Depends, status

from ..models import TriggerEventRequest, TriggerEventResponse
from ..dependencies import get_execution_manager
from .executions import execution_response, flow_names
from ...clock import utcnow
from ...models.execution import DomainEvent


logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/", response_model=TriggerEventResponse, status_code=status.HTTP_202_ACCEPTED)
async def ingest_event(
    request: TriggerEventRequest,
    manager = Depends(get_execution_manager)
) -> TriggerEventResponse:
    """Queue executions of matching flows; the scheduler walks them"""
    occurred_at = request.occurred_at or utcnow()
    if occurred_at.tzinfo is not None:
        occurred_at = occurred_at.replace(tzinfo=None) - occurred_at.utcoffset()

    event = DomainEvent(
        event_type=request.event_type,
        entity_id=request.entity_id,
        occurred_at=occurred_at,
        payload=request.payload
    )
    executions = await manager.handle_trigger_event(event, start=False)
    names = await flow_names(manager, executions)

    return TriggerEventResponse(
        event_type=event.event_type.value,
        entity_id=event.entity_id,
        executions=[execution_response(e, names.get(e.flow_id)) for e in executions]
    )
