"""
FastAPI application
"""
import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .middleware import RequestLoggingMiddleware
from .models import ErrorResponse
from .routers import flows, executions, events, monitoring
from .state import app_state
from .. import __version__
from ..config import Settings
from ..exceptions import (
    ReminderFlowError, FlowParseError, FlowValidationError, FlowNotFoundError,
    ExecutionNotFoundError, ConcurrencyConflict, StateTransitionError
)
from ..integrations import Channel, ChannelProvider, EntityDirectory
from ..runtime import build_runtime


logger = logging.getLogger(__name__)


def create_app(
    settings: Settings = None,
    entities: EntityDirectory = None,
    providers: Optional[Dict[Channel, ChannelProvider]] = None,
    in_memory: bool = False
) -> FastAPI:
    """Build the API; the runtime is created in the lifespan"""
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Reminder Flow API...")

        runtime = await build_runtime(
            settings,
            entities=entities,
            providers=providers,
            in_memory=in_memory
        )
        await runtime.start()

        app_state.update({
            "runtime": runtime,
            "manager": runtime.manager,
            "flow_store": runtime.flow_store,
            "scheduler": runtime.scheduler,
            "event_bus": runtime.event_bus
        })
        logger.info("Reminder Flow API started successfully")

        yield

        logger.info("Shutting down Reminder Flow API...")
        await runtime.close()
        app_state.clear()
        logger.info("Reminder Flow API shut down successfully")

    app = FastAPI(
        title="Reminder Flow API",
        description="Execution runtime for broker reminder flows",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware, worker_id=settings.worker_id)

    app.include_router(flows.router, prefix="/api/v1/flows", tags=["flows"])
    app.include_router(executions.router, prefix="/api/v1/executions", tags=["executions"])
    app.include_router(events.router, prefix="/api/v1/events", tags=["events"])
    app.include_router(monitoring.router, prefix="/api/v1/monitoring", tags=["monitoring"])

    register_exception_handlers(app)

    @app.get("/", tags=["root"])
    async def root():
        return {
            "name": "Reminder Flow API",
            "version": __version__,
            "status": "running",
            "docs": "/docs",
            "health": "/api/v1/monitoring/health"
        }

    return app


# Domain errors and the HTTP status they map to; first match wins
ERROR_STATUS = (
    (FlowNotFoundError, status.HTTP_404_NOT_FOUND, "not_found"),
    (ExecutionNotFoundError, status.HTTP_404_NOT_FOUND, "not_found"),
    (ConcurrencyConflict, status.HTTP_409_CONFLICT, "concurrency_conflict"),
    (StateTransitionError, status.HTTP_409_CONFLICT, "invalid_state_transition"),
    (FlowValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY, "validation_error"),
    (FlowParseError, status.HTTP_400_BAD_REQUEST, "parse_error"),
)


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


def register_exception_handlers(app: FastAPI):

    @app.exception_handler(ReminderFlowError)
    async def domain_exception_handler(request: Request, exc: ReminderFlowError):
        for error_type, status_code, error in ERROR_STATUS:
            if isinstance(exc, error_type):
                break
        else:
            status_code, error = status.HTTP_400_BAD_REQUEST, "reminder_flow_error"

        body = ErrorResponse(
            error=error,
            message=str(exc),
            details={"errors": exc.errors} if isinstance(exc, FlowValidationError) else None,
            request_id=_request_id(request)
        )

        logger.info(f"{request.method} {request.url.path} -> {status_code}: {exc}")
        return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)

        body = ErrorResponse(
            error="internal_server_error",
            message="An unexpected error occurred",
            request_id=_request_id(request)
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=body.model_dump(mode="json")
        )
