"""
Execution API routes
"""
import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from ..models import ExecutionResponse, ExecutionDetailResponse
from ..dependencies import get_execution_manager
from ...models.execution import ExecutionFilter, ExecutionStatus, FlowExecution


logger = logging.getLogger(__name__)
router = APIRouter()


async def flow_names(manager, executions: List[FlowExecution]) -> Dict[str, str]:
    names = {}
    for flow_id in {e.flow_id for e in executions}:
        flow = await manager.flow_repository.get(flow_id)
        if flow:
            names[flow_id] = flow.name
    return names


def execution_response(execution: FlowExecution, flow_name: str = None) -> ExecutionResponse:
    return ExecutionResponse(
        id=execution.id,
        flow_id=execution.flow_id,
        flow_name=flow_name,
        flow_version=execution.flow_version,
        entity_id=execution.entity_id,
        client_name=execution.context.get("client_name"),
        application_number=execution.context.get("application_number"),
        status=execution.status,
        current_step_key=execution.current_step_key,
        next_execution_at=execution.next_execution_at,
        failure_reason=execution.failure_reason,
        created_at=execution.created_at,
        updated_at=execution.updated_at,
        completed_at=execution.completed_at
    )


async def _detail(manager, execution: FlowExecution) -> ExecutionDetailResponse:
    names = await flow_names(manager, [execution])
    return ExecutionDetailResponse(
        **execution_response(execution, names.get(execution.flow_id)).model_dump(),
        trigger_event=execution.trigger_event,
        context=execution.context,
        history=execution.history
    )


@router.get("/", response_model=List[ExecutionResponse])
async def list_executions(
    flow_id: Optional[str] = Query(None, description="Flow ID"),
    entity_id: Optional[str] = Query(None, description="Loan application ID"),
    status: Optional[ExecutionStatus] = Query(None, description="Execution status"),
    offset: int = Query(0, ge=0, description="Offset"),
    limit: int = Query(20, ge=1, le=100, description="Page size"),
    manager = Depends(get_execution_manager)
) -> List[ExecutionResponse]:
    executions = await manager.list_executions(
        ExecutionFilter(
            flow_id=flow_id,
            entity_id=entity_id,
            status=status,
            offset=offset,
            limit=limit
        )
    )
    names = await flow_names(manager, executions)
    return [execution_response(e, names.get(e.flow_id)) for e in executions]


@router.get("/{execution_id}", response_model=ExecutionDetailResponse)
async def get_execution(
    execution_id: str,
    manager = Depends(get_execution_manager)
) -> ExecutionDetailResponse:
    return await _detail(manager, await manager.get_execution(execution_id))


@router.post("/{execution_id}/pause", response_model=ExecutionDetailResponse)
async def pause_execution(
    execution_id: str,
    manager = Depends(get_execution_manager)
) -> ExecutionDetailResponse:
    return await _detail(manager, await manager.pause(execution_id))


@router.post("/{execution_id}/resume", response_model=ExecutionDetailResponse)
async def resume_execution(
    execution_id: str,
    manager = Depends(get_execution_manager)
) -> ExecutionDetailResponse:
    return await _detail(manager, await manager.resume(execution_id))


@router.post("/{execution_id}/cancel", response_model=ExecutionDetailResponse)
async def cancel_execution(
    execution_id: str,
    manager = Depends(get_execution_manager)
) -> ExecutionDetailResponse:
    return await _detail(manager, await manager.cancel(execution_id))
