"""
Main Application - FastAPI application setup.
"""

import asyncio
import contextlib
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import generate_latest
from starlette.middleware.base import BaseHTTPMiddleware

from tokenpay.api.admin_routes import router as admin_router
from tokenpay.api.dependencies import close_chain_client, get_chain_client
from tokenpay.api.routes import router
from tokenpay.config import get_settlement_config, settings
from tokenpay.db.migration_runner import run_migrations
from tokenpay.db.session import close_engines, get_session_factory
from tokenpay.observability import (
    get_logger,
    instrument_fastapi,
    log_context,
    metrics,
    setup_logging,
    setup_tracing,
)
from tokenpay.services.reconciliation import run_reconciliation_loop

# Setup logging before anything else
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Startup applies migrations (when enabled) and starts the reconciliation
    sweep; shutdown stops the sweep and closes outbound clients and engines.
    """
    # Startup
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        network=settings.network,
        asset_id=settings.token_asset_id,
        tracing_enabled=settings.tracing_enabled,
        metrics_enabled=settings.metrics_enabled,
    )

    if settings.run_migrations_on_startup:
        await asyncio.to_thread(run_migrations)

    reconciliation_task: asyncio.Task[None] | None = None
    if settings.reconciliation_enabled:
        reconciliation_task = asyncio.create_task(
            run_reconciliation_loop(
                get_session_factory("write"),
                get_chain_client(),
                get_settlement_config(),
                settings.reconciliation_interval_seconds,
            )
        )

    yield

    # Shutdown
    logger.info("application_shutting_down")
    if reconciliation_task is not None:
        reconciliation_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await reconciliation_task
        logger.info("reconciliation_loop_stopped")
    await close_chain_client()
    await close_engines()
    logger.info("database_engines_closed")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Log request validation failures; submitted values are not echoed back."""
    errors = [
        {"type": error.get("type"), "loc": error.get("loc"), "msg": error.get("msg")}
        for error in exc.errors()
    ]
    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        errors=errors,
    )
    return JSONResponse(status_code=422, content={"detail": errors})


# Setup tracing
setup_tracing()
instrument_fastapi(app)


def _route_label(request: Request) -> str:
    """Route template for metric labels, so payment references stay out of them."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Per-request bookkeeping.

    Honors X-Forwarded-Proto from the reverse proxy, binds a request id into
    the structlog context, and records timing metrics under the route
    template.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        forwarded_proto = request.headers.get("X-Forwarded-Proto")
        if forwarded_proto:
            request.scope["scheme"] = forwarded_proto

        request_id = request.headers.get("X-Request-ID") or uuid4().hex
        method = request.method
        in_progress = metrics.http_requests_in_progress.labels(method=method)
        in_progress.inc()
        start_time = time.perf_counter()

        with log_context(request_id=request_id):
            try:
                response = await call_next(request)
            except Exception as exc:
                duration = time.perf_counter() - start_time
                metrics.record_http_request(_route_label(request), method, 500, duration)
                metrics.record_error(type(exc).__name__, "http_request")
                logger.error(
                    "request_failed",
                    method=method,
                    path=request.url.path,
                    duration_seconds=duration,
                    exc_info=True,
                )
                raise
            finally:
                in_progress.dec()

            duration = time.perf_counter() - start_time
            metrics.record_http_request(
                _route_label(request), method, response.status_code, duration
            )
            logger.info(
                "request_completed",
                method=method,
                path=request.url.path,
                status_code=response.status_code,
                duration_seconds=round(duration, 4),
            )

        response.headers["X-Request-ID"] = request_id
        return response


app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(router)  # Webhooks, payment status, health
app.include_router(admin_router)  # X-Admin-Key protected


@app.get("/")
async def root() -> dict[str, str]:
    """Service banner."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "network": settings.network,
        "status": "running",
    }


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """Prometheus scrape endpoint."""
    if not settings.metrics_enabled:
        return PlainTextResponse("metrics disabled\n", status_code=404)
    return PlainTextResponse(generate_latest())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "tokenpay.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
