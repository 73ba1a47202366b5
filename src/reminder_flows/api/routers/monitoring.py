"""
Monitoring API routes
"""
import logging

from fastapi import APIRouter, Depends

from ..models import HealthCheckResponse, SchedulerStatsResponse, TickResponse
from ..dependencies import get_runtime, get_scheduler
from ... import __version__
from ...clock import utcnow


logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(runtime = Depends(get_runtime)) -> HealthCheckResponse:
    checks = {}

    try:
        await runtime.flow_repository.list(limit=1)
        checks["database"] = True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        checks["database"] = False

    checks["scheduler"] = runtime.scheduler.is_running or not runtime.settings.scheduler_enabled
    checks["channels"] = sorted(c.value for c in runtime.dispatcher.providers)
    checks["event_delivery_failures"] = runtime.event_bus.delivery_failures

    healthy = checks["database"] and checks["scheduler"]
    return HealthCheckResponse(
        status="healthy" if healthy else "unhealthy",
        version=__version__,
        timestamp=utcnow(),
        checks=checks
    )


@router.get("/scheduler", response_model=SchedulerStatsResponse)
async def scheduler_stats(
    runtime = Depends(get_runtime),
    scheduler = Depends(get_scheduler)
) -> SchedulerStatsResponse:
    counts = await runtime.execution_repository.count_by_status()
    return SchedulerStatsResponse(**scheduler.stats(), executions_by_status=counts)


@router.post("/scheduler/tick", response_model=TickResponse)
async def run_tick(scheduler = Depends(get_scheduler)) -> TickResponse:
    """Advance everything that is due now"""
    result = await scheduler.tick()
    return TickResponse(advanced=result.advanced, failed=result.failed, skipped=result.skipped)
