"""
API middleware
"""
import logging
import re
import time
import uuid
from typing import Callable, Dict

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware


logger = logging.getLogger(__name__)


# /api/v1/executions/<id>/pause, /api/v1/flows/<id>/toggle, ...
RESOURCE_PATH = re.compile(r"^/api/v1/(?P<kind>executions|flows)/(?P<id>[^/]+)")
NON_ID_SEGMENTS = {"validate"}


def resource_fields(path: str) -> Dict[str, str]:
    """``execution_id`` or ``flow_id`` named in a request path, for log records"""
    match = RESOURCE_PATH.match(path)
    if not match or match.group("id") in NON_ID_SEGMENTS:
        return {}
    field_name = "execution_id" if match.group("kind") == "executions" else "flow_id"
    return {field_name: match.group("id")}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    One log record per request, carrying the execution or flow it touched

    Stamps ``X-Request-ID`` (kept when the caller sends one), ``X-Process-Time``
    in seconds and ``X-Worker-ID``, so an admin call answered with 409 can be
    matched to the worker whose lock it waited on. Health checks log at DEBUG.
    """

    QUIET_PATHS = {"/api/v1/monitoring/health"}

    def __init__(self, app, worker_id: str = None):
        super().__init__(app)
        self.worker_id = worker_id

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id
        path = request.url.path

        started = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - started

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        if self.worker_id:
            response.headers["X-Worker-ID"] = self.worker_id

        level = logging.DEBUG if path in self.QUIET_PATHS else logging.INFO
        logger.log(
            level,
            f"{request.method} {path} -> {response.status_code} ({elapsed * 1000:.1f}ms)",
            extra={
                "request_id": request_id,
                "status_code": response.status_code,
                "duration_ms": round(elapsed * 1000, 1),
                **resource_fields(path)
            }
        )
        return response
