from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.metrics import observe_http_request, observe_job_trigger, resolve_http_path_label


logger = logging.getLogger("app.request")

_BILLING_PATH_PARAMS = ("subscription_id", "cycle_id", "order_id", "customer_id", "route_sheet_id")
_JOB_RUN_LABEL = "/billing/jobs/{id}/run"


def resolve_billing_context(request: Request, path: str) -> dict[str, str]:
    """Billing identifiers from the matched route, for log correlation with job and entity records."""
    params = request.scope.get("path_params") or {}
    context = {key: str(params[key]) for key in _BILLING_PATH_PARAMS if key in params}
    if path == _JOB_RUN_LABEL and "name" in params:
        context["job_type"] = str(params["name"])
    return context


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        method = request.method

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            path = resolve_http_path_label(request)
            observe_http_request(method=method, path=path, status=500, duration=duration_ms / 1000)
            logger.error(
                "http.error",
                exc_info=True,
                extra={
                    "method": method,
                    "path": path,
                    "status_code": 500,
                    "duration_ms": duration_ms,
                    **resolve_billing_context(request, path),
                },
            )
            raise

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        # The route is only known once the router has matched it.
        path = resolve_http_path_label(request)
        context = resolve_billing_context(request, path)
        observe_http_request(
            method=method,
            path=path,
            status=response.status_code,
            duration=duration_ms / 1000,
        )
        # Unknown job names answer 404 and stay out of the job_type label.
        if "job_type" in context and response.status_code != 404:
            observe_job_trigger(job_type=context["job_type"], status=response.status_code)
        logger.info(
            "http.request",
            extra={
                "method": method,
                "path": path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
                **context,
            },
        )
        return response
