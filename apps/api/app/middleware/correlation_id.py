from __future__ import annotations

import uuid

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.context import reset_correlation_id, set_correlation_id


_HEADER_NAMES = ("x-correlation-id", "x-request-id")
_MAX_LENGTH = 128


def resolve_correlation_id(request: Request) -> str:
    """Caller-supplied id when usable, else a ``req-`` id alongside the scheduler's ``job-`` ids."""
    for header in _HEADER_NAMES:
        value = (request.headers.get(header) or "").strip()
        if value and len(value) <= _MAX_LENGTH and value.isprintable():
            return value
    return f"req-{uuid.uuid4()}"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = resolve_correlation_id(request)
        request.state.correlation_id = correlation_id
        token = set_correlation_id(correlation_id)
        span = trace.get_current_span()
        if span is not None and span.is_recording():
            span.set_attribute("correlation_id", correlation_id)
        try:
            response = await call_next(request)
        finally:
            reset_correlation_id(token)

        response.headers["x-correlation-id"] = correlation_id
        return response
