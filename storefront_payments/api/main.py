"""
Main FastAPI application.

Storefront payment API with:
- Checkout against the Bonum gateway
- Read-only status endpoint for pollers
- Gateway webhook and operator confirmation
- Request ID tracking and structured logging
- Prometheus metrics
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storefront_payments.config import get_settings
from storefront_payments.database.connection import close_db, init_db
from storefront_payments.domain import (
    AuthError,
    GatewayError,
    InvariantViolation,
    InvoiceValidationError,
    NetworkError,
    OrderNotFoundError,
    PaymentNotFoundError,
    ProviderError,
)
from storefront_payments.monitoring.logging import setup_logging

from .dependencies import close_services
from .routes import (
    admin_router,
    monitoring_router,
    order_router,
    payment_router,
    webhook_router,
)

# Setup logging first
setup_logging()
logger = structlog.get_logger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    logger.info(
        "application_startup",
        app_name=settings.app_name,
        env=settings.app_env,
        gateway=settings.bonum_url,
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
        await close_services()
        await close_db()
        logger.info("connections_closed")
    except Exception as e:
        logger.error("shutdown_error", error=str(e))


app = FastAPI(
    title="Storefront Payments",
    description=(
        "Payment gateway integration for the storefront: credential caching, "
        "invoice creation, payment records and status reconciliation."
    ),
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
    """
    Add request ID to all requests for tracing.

    Also adds timing information and structured logging context.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    start_time = time.time()

    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )

    logger.info(
        "request_started",
        client_host=request.client.host if request.client else None,
    )

    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

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


def _gateway_error_response(exc: GatewayError) -> JSONResponse:
    content: Dict[str, Any] = {"error": exc.kind.value, "message": str(exc)}

    match exc:
        case AuthError(status_code):
            code = status.HTTP_502_BAD_GATEWAY
            content["gateway_status"] = status_code
        case ProviderError(status_code, body):
            code = status.HTTP_502_BAD_GATEWAY
            content["gateway_status"] = status_code
            content["gateway_body"] = body
        case NetworkError(operation):
            code = status.HTTP_504_GATEWAY_TIMEOUT
            content["operation"] = operation
        case InvariantViolation(payment_number, current_status, attempted_status):
            code = status.HTTP_409_CONFLICT
            content["payment_number"] = payment_number
            content["current_status"] = current_status
            content["attempted_status"] = attempted_status
        case _:
            code = status.HTTP_500_INTERNAL_SERVER_ERROR

    return JSONResponse(status_code=code, content=content)


@app.exception_handler(GatewayError)
async def gateway_exception_handler(request: Request, exc: GatewayError) -> JSONResponse:
    """Map each gateway failure variant to an HTTP status."""
    logger.warning(
        "gateway_error",
        kind=exc.kind.value,
        error=str(exc),
        path=request.url.path,
    )
    return _gateway_error_response(exc)


@app.exception_handler(InvoiceValidationError)
async def invoice_validation_handler(
    request: Request, exc: InvoiceValidationError
) -> JSONResponse:
    logger.info("invoice_rejected", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "validation", "message": str(exc)},
    )


@app.exception_handler(PaymentNotFoundError)
@app.exception_handler(OrderNotFoundError)
async def not_found_handler(request: Request, exc: LookupError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"error": "not_found", "message": str(exc)},
    )


@app.exception_handler(Exception)
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


app.include_router(order_router)
app.include_router(payment_router)
app.include_router(webhook_router)
app.include_router(admin_router)
app.include_router(monitoring_router)


@app.get("/", tags=["root"])
async def root() -> dict[str, Any]:
    """Root endpoint with API information."""
    return {
        "service": "storefront-payments",
        "version": "1.0.0",
        "status": "operational",
        "environment": settings.app_env,
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "storefront_payments.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
