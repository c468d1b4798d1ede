"""
Main FastAPI application.

Checkout reconciliation API with:
- CORS configuration
- Error handling
- Request ID tracking
- Structured logging
- Prometheus metrics
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from checkout_reconciliation.config import Settings, get_settings
from checkout_reconciliation.core.checkout import CheckoutService
from checkout_reconciliation.core.cleanup import SessionCleaner
from checkout_reconciliation.core.reconciliation import ReconciliationEngine
from checkout_reconciliation.database.connection import close_db, get_session_factory, init_db
from checkout_reconciliation.integrations.gateway import PaymentGateway
from checkout_reconciliation.integrations.stripe_client import StripeGateway
from checkout_reconciliation.monitoring.health import HealthCheck
from checkout_reconciliation.monitoring.logging import setup_logging

from .routes import admin_router, checkout_router, monitoring_router, order_router

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    settings: Settings = app.state.settings
    logger.info(
        "application_startup",
        app_name=settings.app_name,
        env=settings.app_env,
        test_mode=settings.is_test_mode,
    )

    try:
        await init_db()
        logger.info("database_initialized")
    except Exception as e:
        logger.error("database_initialization_failed", error=str(e))
        raise

    yield

    logger.info("application_shutdown")
    try:
        await close_db()
        logger.info("database_connections_closed")
    except Exception as e:
        logger.error("database_shutdown_error", error=str(e))


async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
    """
    Bind a request id and the caller identity into the logging context.

    An upstream ``X-Request-ID`` is kept so checkout redirects can be traced
    across the storefront and this service.
    """
    request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
    start_time = time.time()

    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
        user_id=request.headers.get(request.app.state.settings.user_id_header),
    )

    logger.info(
        "request_started",
        client_host=request.client.host if request.client else None,
    )

    try:
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id

        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_seconds=time.time() - start_time,
        )
        return response

    except Exception as e:
        logger.error(
            "request_failed",
            error=str(e),
            duration_seconds=time.time() - start_time,
        )
        raise

    finally:
        structlog.contextvars.clear_contextvars()


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.
    """
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


def create_app(
    settings: Optional[Settings] = None,
    gateway: Optional[PaymentGateway] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    engine: Optional[ReconciliationEngine] = None,
) -> FastAPI:
    """
    Build the FastAPI application and its services.

    Args:
        settings: Optional settings (defaults to cached settings)
        gateway: Optional payment gateway (defaults to Stripe)
        session_factory: Optional database session factory
        engine: Optional reconciliation engine

    Returns:
        FastAPI: Configured application
    """
    settings = settings or get_settings()
    setup_logging(settings)

    session_factory = session_factory or get_session_factory()
    gateway = gateway or (engine.gateway if engine else StripeGateway(settings))

    app = FastAPI(
        title="Checkout Reconciliation Service",
        description=(
            "Reconciles checkout sessions with the payment gateway and creates "
            "exactly one order per paid checkout."
        ),
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    app.state.settings = settings
    app.state.checkout_service = CheckoutService(session_factory, settings)
    app.state.reconciliation_engine = engine or ReconciliationEngine(
        gateway, session_factory, settings
    )
    app.state.session_cleaner = SessionCleaner(session_factory, settings)
    app.state.health_check = HealthCheck(session_factory, gateway)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_allowed_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(add_request_id_middleware)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(checkout_router)
    app.include_router(order_router)
    app.include_router(admin_router)
    app.include_router(monitoring_router)

    @app.get("/", tags=["root"])
    async def root() -> dict[str, Any]:
        """Root endpoint with API information."""
        return {
            "service": settings.app_name,
            "version": "1.0.0",
            "status": "operational",
            "environment": settings.app_env,
            "test_mode": settings.is_test_mode,
            "docs": "/docs",
            "health": "/health",
            "metrics": "/metrics",
        }

    return app


def main() -> None:
    """Run the API with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "checkout_reconciliation.api.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=settings.api_workers if not settings.debug else 1,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
