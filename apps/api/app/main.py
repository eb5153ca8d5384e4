from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from app.api.routes import router as api_router
from app.core.config import get_settings
from app.core.errors import DomainError
from app.core.events import InternalEvent, event_bus
from app.logging import configure_logging
from app.middleware.correlation_id import CorrelationIdMiddleware
from app.middleware.request_logging import RequestLoggingMiddleware
from app.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("app.lifecycle")
_subscriptions_registered = False

_billing_event_types = [
    "cycle.created",
    "cycle.late_fee_applied",
    "cycle.payment_applied",
    "collection_order.created",
    "collection_order.cycle_linked",
    "collection_order.cancelled",
    "delivery.rescheduled",
    "cancellation.rescheduled",
    "subscription.cancelled",
]


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system_event", extra={"event_name": event.name})


def _on_billing_event(event: InternalEvent) -> None:
    payload = event.payload
    logger.info(
        "billing_event",
        extra={
            "event_name": event.name,
            "subscription_id": payload.get("subscription_id"),
            "cycle_id": payload.get("cycle_id"),
            "order_id": payload.get("order_id"),
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _subscriptions_registered
    if not _subscriptions_registered:
        event_bus.subscribe("system.started", _on_system_started)
        for event_name in _billing_event_types:
            event_bus.subscribe(event_name, _on_billing_event)
        _subscriptions_registered = True
    event_bus.publish("system.started", {"service": "billing-api"})
    yield


app = FastAPI(title="Cycle Billing API", version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    content: dict[str, object] = {
        "detail": exc.detail,
        "correlation_id": getattr(request.state, "correlation_id", None),
    }
    reasons = getattr(exc, "reasons", None)
    if reasons:
        content["reasons"] = reasons
    return JSONResponse(status_code=exc.status_code, content=content)


settings = get_settings()
if settings.otel_enabled:
    setup_otel("billing-api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
