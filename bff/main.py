# bff/main.py
"""
Application factory and lifecycle for the onboarding BFF.

The lifespan builds every shared component (HTTP client, signed clients,
services, request coalescer, audit logger) and stores it on ``app.state``.
"""

import asyncio
import time
from contextlib import asynccontextmanager, suppress

import httpx
from fastapi import FastAPI, Request

from bff import __version__
from bff.config import Settings, settings
from bff.infrastructure.audit import AuditLogger, SupabaseAuditSink
from bff.infrastructure.observability.logging import get_logger, log_request, setup_logging
from bff.middleware import RequestContextMiddleware
from bff.routes import auth, health, onboarding
from bff.routes.error_handlers import register_exception_handlers
from bff.services.auth_service import AuthService
from bff.services.edge_function_client import SignedRequestClient, create_http_client
from bff.services.onboarding_service import OnboardingService
from bff.services.request_coalescer import default_coalescer

logger = get_logger(__name__)


def create_app(
    app_settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        app_settings: defaults to the module-level settings
        transport: optional httpx transport for the shared HTTP client
            (tests pass an httpx.MockTransport)
    """
    app_settings = app_settings or settings
    setup_logging(log_level=app_settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle application startup and shutdown with proper resource management."""
        logger.info(
            "Application starting",
            environment=app_settings.environment,
            debug=app_settings.debug,
            supabase_configured=app_settings.supabase_configured(),
        )

        http_client = create_http_client(app_settings.EDGE_FUNCTION_TIMEOUT, transport=transport)
        coalescer = default_coalescer(app_settings.COALESCER_TTL_SECONDS, app_settings.COALESCER_MAX_ENTRIES)

        onboarding_client = SignedRequestClient(
            http_client,
            app_settings.onboarding_function_url(),
            app_settings.INTERNAL_SIGNING_SECRET,
            timeout=app_settings.EDGE_FUNCTION_TIMEOUT,
        )
        auth_client = SignedRequestClient(
            http_client,
            app_settings.edge_functions_url(),
            app_settings.INTERNAL_SIGNING_SECRET,
            timeout=app_settings.EDGE_FUNCTION_TIMEOUT,
            api_key=app_settings.SUPABASE_KEY,
        )

        sink = None
        if app_settings.AUDIT_REMOTE_ENABLED and app_settings.supabase_configured():
            sink = SupabaseAuditSink(
                http_client,
                app_settings.audit_rpc_url(),
                app_settings.SUPABASE_KEY,
                timeout=app_settings.AUDIT_WRITE_TIMEOUT,
            )
        else:
            logger.warning("Audit sink not configured - audit events are logged only")

        app.state.settings = app_settings
        app.state.http_client = http_client
        app.state.coalescer = coalescer
        app.state.onboarding_service = OnboardingService(onboarding_client, coalescer=coalescer)
        app.state.auth_service = AuthService(auth_client, coalescer)
        audit_logger = AuditLogger(sink, background=app_settings.AUDIT_BACKGROUND_WRITES)
        app.state.audit_logger = audit_logger

        sweep_task = asyncio.create_task(coalescer.run_periodic_sweep(app_settings.COALESCER_SWEEP_INTERVAL))
        logger.info("All services initialized successfully")

        try:
            yield
        finally:
            logger.info("Application shutting down")

            sweep_task.cancel()
            with suppress(asyncio.CancelledError):
                await sweep_task

            await audit_logger.drain(timeout=app_settings.AUDIT_WRITE_TIMEOUT)

            try:
                await http_client.aclose()
            except Exception as e:
                logger.error("Error closing HTTP client", error=str(e))

            logger.info("All services closed successfully")

    app = FastAPI(
        title="Onboarding BFF",
        description="Backend-for-frontend for tenant onboarding",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = app_settings

    register_exception_handlers(app)
    app.add_middleware(RequestContextMiddleware)

    # Include routers
    app.include_router(health.router)
    app.include_router(onboarding.router)
    app.include_router(auth.auth_router)
    app.include_router(auth.tenants_router)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log HTTP requests with timing."""
        start_time = time.time()
        response = await call_next(request)
        process_time = (time.time() - start_time) * 1000

        log_request(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(process_time, 2),
            tenant_id=request.headers.get("x-tenant-id"),
        )
        return response

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
