"""Middleware binding trace_id/request_id to the log context of each request."""
from __future__ import annotations

import re
import time
from uuid import UUID, uuid4

import structlog
from aiohttp import web

TRACE_ID_HEADER = "X-Trace-Id"
REQUEST_ID_HEADER = "X-Request-Id"

logger = structlog.get_logger(__name__)

SENSITIVE_HEADERS = {
    "authorization",
    "cookie",
    "set-cookie",
    "x-api-key",
    "x-webhook-signature",
}

# The inbound URL embeds the endpoint's capability token.
_RECEIVE_PATH = re.compile(r"^(/receive/[^/]+/)[^/]+")


def is_valid_uuid(value: str) -> bool:
    try:
        UUID(value)
        return True
    except (ValueError, AttributeError):
        return False


def redact_path(path: str) -> str:
    return _RECEIVE_PATH.sub(r"\1***", path)


def get_safe_headers(headers) -> dict[str, str]:
    return {k: v for k, v in headers.items() if k.lower() not in SENSITIVE_HEADERS}


def create_trace_middleware(service_name: str):
    """Create trace middleware with specified service name."""

    @web.middleware
    async def trace_middleware(request: web.Request, handler):
        start_time = time.perf_counter()

        trace_id = request.headers.get(TRACE_ID_HEADER)
        if not trace_id or not is_valid_uuid(trace_id):
            trace_id = str(uuid4())
        request_id = request.headers.get(REQUEST_ID_HEADER)
        if not request_id or not is_valid_uuid(request_id):
            request_id = str(uuid4())

        request["trace_id"] = trace_id
        request["request_id"] = request_id

        path = redact_path(request.path)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            trace_id=trace_id,
            request_id=request_id,
            service=service_name,
            method=request.method,
            path=path,
        )
        logger.info(
            "Incoming request",
            remote=request.remote,
            content_length=request.content_length,
            headers=get_safe_headers(request.headers),
        )

        try:
            response = await handler(request)
            duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
            log = logger.warning if response.status >= 400 else logger.info
            log("Request completed", status_code=response.status, duration_ms=duration_ms)
            response.headers[TRACE_ID_HEADER] = trace_id
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        except web.HTTPException as exc:
            logger.warning(
                "Request failed with HTTP exception",
                status_code=exc.status_code,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                error=exc.text,
            )
            exc.headers[TRACE_ID_HEADER] = trace_id
            exc.headers[REQUEST_ID_HEADER] = request_id
            raise
        except Exception:
            logger.exception(
                "Request failed with exception",
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
            raise
        finally:
            structlog.contextvars.clear_contextvars()

    return trace_middleware
