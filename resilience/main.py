import logging
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from resilience.api.health import router as health_router
from resilience.api.internal import router as internal_router
from resilience.api.jobs import router as jobs_router
from resilience.api.login import router as login_router
from resilience.api.security import router as security_router
from resilience.core.config import APP_VERSION, settings
from resilience.core.errors import (
    HTTPError,
    http_error_handler,
    request_validation_error_handler,
    transient_store_error_handler,
)
from resilience.core.exceptions import TransientStoreError
from resilience.core.logging import setup_logging
from resilience.core.redis import close_redis
from resilience.services.scheduler import scheduler_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application startup and shutdown."""
    setup_logging()

    if settings.SCHEDULER_ENABLED:
        logger.info("Starting scheduler service")
        scheduler_service.start()
    else:
        logger.info("In-process scheduler disabled, expecting external triggers on /internal")

    yield

    logger.info("Stopping scheduler service")
    scheduler_service.stop()

    logger.info("Closing Redis connection")
    await close_redis()


app = FastAPI(
    title=settings.APP_NAME,
    version=APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
    lifespan=lifespan,
    redirect_slashes=False,
)

# Standardized error envelopes
app.add_exception_handler(HTTPError, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_error_handler)
app.add_exception_handler(TransientStoreError, transient_store_error_handler)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Add unique request ID for tracking and debugging."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    try:
        response = await call_next(request)
    finally:
        structlog.contextvars.clear_contextvars()

    response.headers["X-Request-ID"] = request_id
    return response


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """API-only service: no framing, no sniffing, no caching of decisions."""
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "no-referrer"
    response.headers["Cache-Control"] = "no-store"
    if not settings.DEBUG:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


app.include_router(health_router)
app.include_router(login_router)
app.include_router(internal_router)
app.include_router(jobs_router)
app.include_router(security_router)
