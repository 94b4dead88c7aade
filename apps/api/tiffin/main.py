from contextlib import asynccontextmanager, contextmanager
import logging
from typing import Any
import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from tiffin.api.routes import router as api_router
from tiffin.business.billing.service import billing_service
from tiffin.context import reset_caused_by, set_caused_by
from tiffin.core.config import get_settings
from tiffin.core.database import SessionLocal, get_db
from tiffin.core.errors import EngineError
from tiffin.core.events import InternalEvent, event_bus
from tiffin.logging import configure_logging
from tiffin.middleware.correlation_id import CorrelationIdMiddleware
from tiffin.middleware.request_logging import RequestLoggingMiddleware
from tiffin.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("tiffin.lifecycle")
_subscriptions_registered = False


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system_event", extra={"event_name": event.name})


@contextmanager
def _event_session_scope():
    override = app.dependency_overrides.get(get_db) if "app" in globals() else None
    if override is None:
        session = SessionLocal()
        try:
            yield session
        finally:
            session.close()
        return

    generator = override()
    session = next(generator)
    try:
        yield session
    finally:
        try:
            next(generator)
        except StopIteration:
            pass


def _on_calendar_entry_changed(event: InternalEvent) -> None:
    if not isinstance(event.payload, dict):
        return
    envelope: dict[str, Any] = event.payload

    order_id_raw = envelope.get("order_id")
    billing_month = envelope.get("billing_month")
    if not isinstance(order_id_raw, str) or not isinstance(billing_month, str):
        return
    try:
        order_id = uuid.UUID(order_id_raw)
    except ValueError:
        return

    token = set_caused_by(event.name)
    try:
        with _event_session_scope() as session:
            billing_service.handle_calendar_change(session, order_id, billing_month)
    except Exception as exc:
        logger.exception(
            "billing.recompute_failed",
            extra={"event_name": event.name, "order_id": order_id_raw, "billing_month": billing_month, "error": str(exc)[:500]},
        )
    finally:
        reset_caused_by(token)


def register_subscriptions() -> None:
    global _subscriptions_registered
    if _subscriptions_registered:
        return
    event_bus.subscribe("system.started", _on_system_started)
    event_bus.subscribe("calendar.entry.changed", _on_calendar_entry_changed)
    _subscriptions_registered = True


def unregister_subscriptions() -> None:
    global _subscriptions_registered
    event_bus.unsubscribe("system.started", _on_system_started)
    event_bus.unsubscribe("calendar.entry.changed", _on_calendar_entry_changed)
    _subscriptions_registered = False


@asynccontextmanager
async def lifespan(app: FastAPI):
    register_subscriptions()
    event_bus.publish("system.started", {"service": "api"})
    yield
    unregister_subscriptions()


settings = get_settings()
app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

if settings.otel_enabled:
    setup_otel("tiffin-billing", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "error": exc.kind,
            "correlation_id": getattr(request.state, "correlation_id", None),
        },
    )
