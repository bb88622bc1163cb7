"""
Main FastAPI application entry point for the auth247 billing platform.
"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.responses import Response

from auth247.platform.billing.exceptions import BillingError
from auth247.platform.billing.pricing.router import router as pricing_router
from auth247.platform.billing.subscriptions.router import router as subscriptions_router
from auth247.platform.billing.subscriptions.service import SubscriptionService
from auth247.platform.db import (
    check_database_health,
    create_all_tables_async,
    dispose_engine,
    get_async_db,
    get_session_maker,
)
from auth247.platform.metering.recorder import ActivityRecorder
from auth247.platform.metering.router import router as mau_router
from auth247.platform.settings import settings
from auth247.platform.telemetry import setup_telemetry

API_PREFIX = "/api/v1"


def billing_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render billing errors with their own status code and payload."""
    if not isinstance(exc, BillingError):
        raise exc
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Seed plans and run the activity recorder for the lifetime of the app."""
    logger = structlog.get_logger(__name__)

    if not getattr(app.state, "telemetry_configured", False):
        setup_telemetry(app)
        app.state.telemetry_configured = True

    logger.info(
        "service.startup.begin",
        service=settings.app_name,
        version=settings.app_version,
        environment=settings.environment.value,
    )

    # Migrations own the schema in production
    if not settings.is_production:
        try:
            await create_all_tables_async()
            logger.info("database.init.success")
        except Exception as e:
            logger.error("database.init.failed", error=str(e))

    try:
        async with get_async_db() as session:
            await SubscriptionService(session).initialize_default_plans()
    except Exception as e:
        logger.error("subscriptions.plans_seed_failed", error=str(e))
        if settings.is_production:
            raise

    recorder = ActivityRecorder(get_session_maker())
    await recorder.start()
    app.state.activity_recorder = recorder

    logger.info("service.startup.complete")

    yield

    logger.info("service.shutdown.begin")
    await recorder.stop()
    await dispose_engine()
    logger.info("service.shutdown.complete")


def create_application() -> FastAPI:
    """Build the billing API with routers, error rendering and request ids."""
    app = FastAPI(
        title="auth247 Billing Platform",
        description="Usage metering, MAU billing reconciliation and subscription lifecycle",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
    )

    @app.middleware("http")
    async def request_context(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        """Bind a correlation ID to every log line emitted while handling the request."""
        request_id = request.headers.get("x-request-id") or uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, path=request.url.path)
        response = await call_next(request)
        response.headers["x-request-id"] = request_id
        return response

    app.add_exception_handler(BillingError, billing_error_handler)

    app.include_router(mau_router, prefix=API_PREFIX)
    app.include_router(subscriptions_router, prefix=API_PREFIX)
    app.include_router(pricing_router, prefix=API_PREFIX)

    @app.get("/health")
    async def health_check() -> dict[str, Any]:
        """Liveness plus a database round-trip."""
        database_healthy = await check_database_health()
        return {
            "status": "healthy" if database_healthy else "degraded",
            "database": "up" if database_healthy else "down",
            "version": settings.app_version,
            "environment": settings.environment.value,
            "timestamp": datetime.now(UTC).isoformat(),
        }

    return app


app = create_application()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "auth247.platform.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.observability.log_level.value.lower(),
    )
