"""FastAPI application entry point."""
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from booking_billing.config import settings
from booking_billing.exceptions import BillingError, CapacityError
from booking_billing.middleware.logging import LoggingMiddleware, setup_logging
from booking_billing.middleware.metrics import MetricsMiddleware
from booking_billing.schemas.error import REMEDIATION_HINTS, ErrorCode, ErrorDetail, ErrorResponse

setup_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events."""
    logger.info("application_starting", env=settings.app_env)
    yield
    logger.info("application_shutting_down")


app = FastAPI(
    title="Booking Billing",
    description="Subscription billing for businesses on the booking platform",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(MetricsMiddleware)
app.add_middleware(LoggingMiddleware)

app.mount("/metrics", make_asgi_app())

if settings.otel_enabled:
    from booking_billing.tracing import setup_tracing

    setup_tracing(app)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or f"req_{uuid.uuid4().hex[:12]}"


def _error_response(request: Request, status_code: int, body: ErrorResponse, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"), headers=headers)


@app.exception_handler(BillingError)
async def billing_exception_handler(request: Request, exc: BillingError) -> JSONResponse:
    """Render any billing error with its own status code and error code."""
    request_id = _request_id(request)
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "billing_error",
        error=type(exc).__name__,
        error_code=exc.error_code,
        status_code=exc.status_code,
        message=exc.message,
        request_id=request_id,
    )

    details = None
    if isinstance(exc, CapacityError):
        details = [ErrorDetail(code=ErrorCode.CAPACITY_EXCEEDED, message=violation) for violation in exc.violations]

    body = ErrorResponse(
        error=type(exc).__name__,
        error_code=exc.error_code,
        message=exc.message,
        details=details,
        context=exc.context or None,
        remediation=exc.recovery_hint or REMEDIATION_HINTS.get(exc.error_code),
        request_id=request_id,
    )
    return _error_response(request, exc.status_code, body)


@app.exception_handler(StaleDataError)
async def stale_data_exception_handler(request: Request, exc: StaleDataError) -> JSONResponse:
    """A write raced another request on the same subscription (optimistic version check)."""
    request_id = _request_id(request)
    logger.warning("concurrent_modification", path=request.url.path, request_id=request_id)
    body = ErrorResponse(
        error="ConflictError",
        error_code=ErrorCode.CONCURRENT_MODIFICATION,
        message="The resource was modified by another request",
        remediation=REMEDIATION_HINTS[ErrorCode.CONCURRENT_MODIFICATION],
        request_id=request_id,
    )
    return _error_response(request, status.HTTP_409_CONFLICT, body)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with field-level details for malformed requests."""
    request_id = _request_id(request)
    details = [
        ErrorDetail(
            code=ErrorCode.VALIDATION_ERROR,
            message=error["msg"],
            field=".".join(str(loc) for loc in error["loc"]),
        )
        for error in exc.errors()
    ]
    logger.warning("validation_error", path=request.url.path, request_id=request_id, error_count=len(details))

    body = ErrorResponse(
        error="ValidationError",
        error_code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        details=details,
        remediation="Check the API documentation for correct request format at /docs",
        request_id=request_id,
    )
    return _error_response(request, status.HTTP_422_UNPROCESSABLE_ENTITY, body)


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Return 503 for database failures without exposing internals in production."""
    request_id = _request_id(request)
    logger.error(
        "database_error",
        path=request.url.path,
        request_id=request_id,
        error_type=type(exc).__name__,
        error_message=str(exc),
    )
    message = "Database temporarily unavailable" if settings.app_env == "production" else str(exc)
    body = ErrorResponse(
        error="DatabaseError",
        error_code=ErrorCode.DATABASE_ERROR,
        message=message,
        remediation=REMEDIATION_HINTS.get(ErrorCode.DATABASE_ERROR),
        request_id=request_id,
    )
    return _error_response(request, status.HTTP_503_SERVICE_UNAVAILABLE, body, headers={"Retry-After": "30"})


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return 500 for anything unexpected; the stack trace goes to the log only."""
    request_id = _request_id(request)
    logger.exception(
        "unhandled_exception",
        path=request.url.path,
        request_id=request_id,
        exception_type=type(exc).__name__,
        exc_info=exc,
    )
    body = ErrorResponse(
        error="InternalServerError",
        error_code=ErrorCode.INTERNAL_ERROR,
        message=str(exc) if settings.debug else "An unexpected error occurred",
        remediation="Please contact support with the request ID",
        request_id=request_id,
    )
    return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, body)


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """Root endpoint with API information."""
    return {
        "service": "Booking Billing",
        "version": "0.1.0",
        "status": "operational",
        "docs": "/docs",
        "time": datetime.utcnow().isoformat(),
    }


from booking_billing.api.v1 import discount_codes, health, plans, renewals, subscriptions  # noqa: E402

app.include_router(health.router, tags=["Health"])
app.include_router(plans.router, prefix="/v1")
app.include_router(subscriptions.router, prefix="/v1")
app.include_router(discount_codes.router, prefix="/v1")
app.include_router(renewals.router, prefix="/v1")
