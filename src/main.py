"""taskun - personal task management service."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.core.change_feed import change_feed
from src.core.config import settings
from src.core.db_client import close_connection, init_db
from src.core.errors import (
    AuthenticationRequiredError,
    DatabaseError,
    ErrorCode,
    NotificationDeliveryError,
    TaskValidationError,
    classify_error_with_response,
)
from src.core.logging import configure_logfire, instrument_fastapi
from src.core.redis_client import redis_client
from src.core.scheduler import job_status, start_scheduler, stop_scheduler
from src.interface.slack_router import router as slack_router
from src.interface.tasks_router import router as tasks_router
from src.modules.tasks.service import wait_for_notifications


logger = logging.getLogger(__name__)

DEFAULT_SECRET_KEY = "dev-secret-change-me"


async def check_redis_connectivity() -> None:
    """Verify Redis connectivity (optional service).

    Only checks if Redis is configured. Logs warning if unavailable but doesn't fail.
    """
    if not redis_client.is_available:
        logger.info("startup_validation", extra={"service": "redis", "status": "disabled"})
        return

    if await redis_client.ping():
        logger.info("startup_validation", extra={"service": "redis", "status": "ok"})
    else:
        logger.warning("startup_validation", extra={"service": "redis", "status": "unavailable"})


async def validate_startup_configuration() -> None:
    """Validate required credentials and optional service connectivity.

    Fails fast with a clear error message when production runs without a
    real session secret.
    """
    logger.info("startup_validation_begin")

    try:
        secret = settings.require_credential("secret_key", "Session signing")
        if settings.is_production and secret == DEFAULT_SECRET_KEY:
            msg = "SECRET_KEY must be changed from its development default in production"
            raise ValueError(msg)

        if not settings.slack_webhook_url:
            logger.info("startup_validation", extra={"service": "slack", "status": "disabled"})

        logger.info("startup_validation", extra={"stage": "credentials", "status": "ok"})

        await check_redis_connectivity()

        logger.info("startup_validation_complete", extra={"status": "ok"})

    except ValueError as e:
        logger.error("startup_validation_failed", extra={"error": str(e)})
        print(f"\n❌ Startup validation failed: {e}\n", file=sys.stderr)  # noqa: T201
        sys.exit(1)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager."""
    # Startup
    # Configure logging first so validation logs are captured
    configure_logfire()

    await validate_startup_configuration()

    await init_db()
    logger.info("Database initialized")

    await change_feed.start_relay()
    if settings.enable_scheduler:
        start_scheduler()
    yield
    # Shutdown
    stop_scheduler()
    await change_feed.stop_relay()
    await wait_for_notifications()
    await redis_client.close()
    await close_connection()


app = FastAPI(
    title="taskun",
    description="Personal task management with filtering, live updates and Slack notifications",
    version="0.1.0",
    lifespan=lifespan,
)

# Instrument FastAPI with Logfire
instrument_fastapi(app)

# Register routers
app.include_router(tasks_router)
app.include_router(slack_router)


@app.exception_handler(AuthenticationRequiredError)
@app.exception_handler(TaskValidationError)
@app.exception_handler(DatabaseError)
@app.exception_handler(NotificationDeliveryError)
async def task_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Translate task errors into `{error, code}` responses."""
    error = classify_error_with_response(exc)
    logger.warning(
        "request_failed",
        extra={"path": request.url.path, "code": error.code, "severity": error.severity.value, "error": str(exc)},
    )
    return JSONResponse(content={"error": error.message, "code": error.code}, status_code=error.status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report body and query validation failures in the same shape as other errors."""
    messages = [str(error.get("msg", "")).removeprefix("Value error, ") for error in exc.errors()]
    return JSONResponse(
        content={"error": "; ".join(messages) or "Invalid request", "code": ErrorCode.ERR_VALIDATION},
        status_code=422,
    )


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "healthy"}, status_code=200)


@app.get("/health/scheduler")
async def scheduler_health_check() -> JSONResponse:
    """Scheduler health check endpoint with job statuses."""
    has_failures = any(status.get("consecutive_failures", 0) > 0 for status in job_status.values())
    overall_status = "degraded" if has_failures else "healthy"

    return JSONResponse(
        content={"status": overall_status, "jobs": job_status, "redis": redis_client.get_health_status()},
        status_code=200 if overall_status == "healthy" else 503,
    )
