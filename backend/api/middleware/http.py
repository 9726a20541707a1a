"""
HTTP middleware for the LLM Navigator API.

Registered in this order (outermost last):
- security headers
- request id (``X-Request-ID``, UUIDs only)
- request logging with timing, health probes excluded
- request body size cap
"""

import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

MAX_BODY_BYTES = 1024 * 1024
QUIET_PATH_PREFIX = "/api/v1/health"

_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


def resolve_request_id(incoming: str | None) -> str:
    """Echo a caller's request id when it is a UUID, otherwise mint one."""
    if incoming:
        try:
            return str(uuid.UUID(incoming))
        except ValueError:
            pass
    return str(uuid.uuid4())


def register_http_middleware(app: FastAPI, *, production: bool) -> None:
    @app.middleware("http")
    async def reject_oversized_body(request: Request, call_next):
        declared = request.headers.get("content-length", "")
        if request.method in ("POST", "PUT", "PATCH") and declared.isdigit():
            if int(declared) > MAX_BODY_BYTES:
                return JSONResponse(
                    status_code=413,
                    content={"detail": "Request body too large (max 1MB)"},
                )
        return await call_next(request)

    @app.middleware("http")
    async def log_request(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - started) * 1000, 1)
        response.headers["X-Response-Time"] = f"{duration_ms}ms"

        path = request.url.path
        if not path.startswith(QUIET_PATH_PREFIX):
            logger.info(
                "%s %s %s %.1fms",
                request.method,
                path,
                response.status_code,
                duration_ms,
                extra={
                    "request_id": getattr(request.state, "request_id", None),
                    "method": request.method,
                    "path": path,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                },
            )
        return response

    @app.middleware("http")
    async def attach_request_id(request: Request, call_next):
        request.state.request_id = resolve_request_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = request.state.request_id
        return response

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.update(_SECURITY_HEADERS)
        if production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response
