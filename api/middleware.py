# ============================================================================
# File: api/middleware.py
# ============================================================================

import time
import uuid
import logging
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from schemas.api import APIResponse

logger = logging.getLogger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Injects:
    - request_id
    - api_latency_ms
    """

    async def dispatch(self, request: Request, call_next):
        request_id = f"req_{uuid.uuid4().hex[:12]}"
        start_time = time.perf_counter()

        # Attach request_id to request state
        request.state.request_id = request_id
        request.state.start_time = start_time

        response: Response = await call_next(request)

        latency_ms = int((time.perf_counter() - start_time) * 1000)

        # Attach headers (useful for debugging)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-API-Latency-ms"] = str(latency_ms)

        logger.info(f"[{request_id}] {request.method} {request.url.path} -> {response.status_code} ({latency_ms}ms)")
        return response


def api_response(request: Request, data) -> APIResponse:
    """Wrap route data with the request id and latency so far"""
    start_time = getattr(request.state, "start_time", None)
    latency_ms = int((time.perf_counter() - start_time) * 1000) if start_time else 0
    return APIResponse(
        request_id=getattr(request.state, "request_id", f"req_{uuid.uuid4().hex[:12]}"),
        api_latency_ms=latency_ms,
        data=data,
    )
