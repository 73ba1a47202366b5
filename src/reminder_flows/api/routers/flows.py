"""
Flow definition API routes
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query, status

from ..models import (
    FlowDocument, FlowToggleRequest, FlowResponse, FlowDetailResponse,
    ValidationResultResponse, SuccessResponse
)
from ..dependencies import get_flow_store, get_execution_manager
from ...core.parser import flow_to_dict
from ...exceptions import FlowParseError, FlowValidationError
from ...models.execution import ExecutionStatus
from ...models.flow import Flow


logger = logging.getLogger(__name__)
router = APIRouter()


async def _active_count(manager, flow_id: str) -> int:
    counts = await manager.execution_repository.count_by_status(flow_id)
    return counts.get(ExecutionStatus.ACTIVE.value, 0)


def _flow_response(flow: Flow, active_executions: int = 0) -> FlowResponse:
    return FlowResponse(
        id=flow.id,
        name=flow.name,
        description=flow.description,
        trigger_event=flow.trigger_event.value,
        trigger_delay_days=flow.trigger_delay_days,
        is_active=flow.is_active,
        apply_to_all=flow.apply_to_all,
        version=flow.version,
        step_count=len(flow.steps),
        active_executions=active_executions,
        created_at=flow.created_at,
        updated_at=flow.updated_at
    )


def _flow_detail(flow: Flow, active_executions: int = 0) -> FlowDetailResponse:
    document = flow_to_dict(flow)
    return FlowDetailResponse(
        **_flow_response(flow, active_executions).model_dump(),
        target_entity_ids=document['target_entity_ids'],
        steps=document['steps'],
        connections=document['connections']
    )


@router.post("/", response_model=FlowDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_flow(
    request: FlowDocument,
    store = Depends(get_flow_store)
) -> FlowDetailResponse:
    """Validate and store a new flow"""
    flow = await store.create(request.to_document())
    return _flow_detail(flow)


@router.post("/validate", response_model=ValidationResultResponse)
async def validate_flow(
    document: Dict[str, Any] = Body(...),
    store = Depends(get_flow_store)
) -> ValidationResultResponse:
    """Check a flow document without saving it"""
    try:
        store.parser.parse(document)
    except FlowValidationError as e:
        return ValidationResultResponse(valid=False, errors=e.errors)
    except FlowParseError as e:
        return ValidationResultResponse(valid=False, errors=[str(e)])
    return ValidationResultResponse(valid=True)


@router.get("/", response_model=List[FlowResponse])
async def list_flows(
    is_active: Optional[bool] = Query(None, description="Filter by active flag"),
    offset: int = Query(0, ge=0, description="Offset"),
    limit: int = Query(20, ge=1, le=100, description="Page size"),
    store = Depends(get_flow_store),
    manager = Depends(get_execution_manager)
) -> List[FlowResponse]:
    flows = await store.list(offset=offset, limit=limit, is_active=is_active)
    return [_flow_response(f, await _active_count(manager, f.id)) for f in flows]


@router.get("/{flow_id}", response_model=FlowDetailResponse)
async def get_flow(
    flow_id: str,
    version: Optional[int] = Query(None, ge=1, description="Specific version"),
    store = Depends(get_flow_store),
    manager = Depends(get_execution_manager)
) -> FlowDetailResponse:
    flow = await store.get(flow_id, version)
    return _flow_detail(flow, await _active_count(manager, flow_id))


@router.put("/{flow_id}", response_model=FlowDetailResponse)
async def update_flow(
    flow_id: str,
    request: FlowDocument,
    store = Depends(get_flow_store),
    manager = Depends(get_execution_manager)
) -> FlowDetailResponse:
    """Replace a flow's definition with a new version"""
    flow = await store.update(flow_id, request.to_document())
    return _flow_detail(flow, await _active_count(manager, flow_id))


@router.post("/{flow_id}/toggle", response_model=FlowResponse)
async def toggle_flow(
    flow_id: str,
    request: Optional[FlowToggleRequest] = None,
    store = Depends(get_flow_store),
    manager = Depends(get_execution_manager)
) -> FlowResponse:
    flow = await store.toggle(flow_id, request.is_active if request else None)
    return _flow_response(flow, await _active_count(manager, flow_id))


@router.delete("/{flow_id}", response_model=SuccessResponse)
async def delete_flow(
    flow_id: str,
    store = Depends(get_flow_store),
    manager = Depends(get_execution_manager)
) -> SuccessResponse:
    """Delete a flow after cancelling its live executions"""
    await store.get(flow_id)
    cancelled = await manager.cancel_for_flow(flow_id)
    await store.delete(flow_id)

    return SuccessResponse(
        message=f"Flow {flow_id} deleted",
        data={"cancelled_executions": cancelled}
    )
