"""
Main Application - FastAPI application setup.

Wires the submission endpoint, the dashboard API, metrics and middleware.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.routing import Match
from structlog import get_logger

from app.api.routes import router
from app.api.tenant_routes import router as tenant_router
from app.config import settings
from app.db.migration_runner import run_migrations
from app.db.session import close_engines
from app.observability import log_context, metrics, setup_logging, setup_tracing

# Setup logging before anything else
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        tracing_enabled=settings.tracing_enabled,
        metrics_enabled=settings.metrics_enabled,
        notifications_enabled=settings.notifications_enabled,
        max_submission_bytes=settings.max_submission_bytes,
    )

    if settings.run_migrations_on_startup:
        await asyncio.to_thread(run_migrations)

    yield

    logger.info("application_shutting_down")
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
    """Log validation errors and return them as a 422 with JSON-safe details."""
    sanitized_errors = []
    for error in exc.errors():
        sanitized = {
            "type": error.get("type"),
            "loc": error.get("loc"),
            "msg": error.get("msg"),
        }
        # ctx may hold exception instances
        if "ctx" in error:
            sanitized["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        sanitized_errors.append(sanitized)

    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        errors=sanitized_errors,
    )
    return JSONResponse(
        status_code=422,
        content={"detail": sanitized_errors},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Return structured ``{"error", "message"}`` details as the body itself."""
    if isinstance(exc.detail, dict):
        content = exc.detail
    else:
        content = {"error": "error", "message": str(exc.detail)}
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


setup_tracing(app)


# Proxy headers middleware - trust X-Forwarded-* headers from the load balancer
class ProxyHeadersMiddleware(BaseHTTPMiddleware):
    """Set the request scheme from X-Forwarded-Proto."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        forwarded_proto = request.headers.get("X-Forwarded-Proto")
        if forwarded_proto:
            request.scope["scheme"] = forwarded_proto
        return await call_next(request)


app.add_middleware(ProxyHeadersMiddleware)

# Forms are embedded on arbitrary tenant sites
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _route_template(request: Request) -> str:
    """Path template of the matched route, so form ids don't explode metric labels."""
    for route in request.app.router.routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return getattr(route, "path", request.url.path)
    return "unmatched"


@app.middleware("http")
async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log all HTTP requests with timing."""
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")
    endpoint = _route_template(request)
    method = request.method

    with log_context(request_id=request_id):
        logger.info("request_started", method=method, path=request.url.path)
        metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).inc()

        try:
            response = await call_next(request)
            duration = time.time() - start_time
            metrics.record_http_request(endpoint, method, response.status_code, duration)

            logger.info(
                "request_completed",
                method=method,
                path=request.url.path,
                status_code=response.status_code,
                duration_seconds=duration,
            )
            return response
        except Exception as e:
            duration = time.time() - start_time
            metrics.record_http_request(endpoint, method, 500, duration)
            metrics.record_error(type(e).__name__, "http_request")

            logger.error(
                "request_failed",
                method=method,
                path=request.url.path,
                error=str(e),
                duration_seconds=duration,
                exc_info=True,
            )
            raise
        finally:
            metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).dec()


app.include_router(router)  # Submission endpoint and health
app.include_router(tenant_router)  # Dashboard API (session auth)


@app.get("/")
async def root() -> dict[str, str]:
    """Service banner."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """Prometheus metrics in text exposition format."""
    if not settings.metrics_enabled:
        return PlainTextResponse("metrics disabled", status_code=404)
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
