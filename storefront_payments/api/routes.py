"""
API routes for checkout and payment status.

Gateway and invariant errors are not caught here; the exception handlers in
``api.main`` map each variant to its HTTP status in one place.
"""
from typing import Any, Dict, List

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_payments.core.checkout import CheckoutService
from storefront_payments.core.orders import OrderRepository
from storefront_payments.core.payment_store import PaymentRecordStore
from storefront_payments.database.connection import get_db
from storefront_payments.domain import PaymentStatus
from storefront_payments.monitoring.health import HealthCheck
from storefront_payments.monitoring.metrics import metrics

from .dependencies import (
    get_checkout_service,
    get_health_check,
    get_order_repository,
    get_payment_store,
    verify_bonum_signature,
)
from .schemas import (
    CheckoutLinkResponse,
    CheckoutResponse,
    ConfirmPaymentRequest,
    GatewayWebhookRequest,
    HealthCheckResponse,
    PaymentRecordResponse,
    PaymentStatusResponse,
    WebhookResponse,
)

logger = structlog.get_logger(__name__)

order_router = APIRouter(prefix="/orders", tags=["checkout"])
payment_router = APIRouter(prefix="/payments", tags=["payments"])
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])
monitoring_router = APIRouter(tags=["monitoring"])

# Gateway payment states that settle a payment; anything else is ignored
GATEWAY_TERMINAL_STATUSES = {
    "PAID": PaymentStatus.SUCCESS,
    "SUCCESS": PaymentStatus.SUCCESS,
    "FAILED": PaymentStatus.FAILED,
    "CANCELLED": PaymentStatus.FAILED,
    "EXPIRED": PaymentStatus.FAILED,
}


@order_router.post(
    "/{order_id}/checkout",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start checkout",
    description="Create a gateway invoice and a pending payment for an order",
)
async def start_checkout(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    orders: OrderRepository = Depends(get_order_repository),
    checkout: CheckoutService = Depends(get_checkout_service),
) -> Dict[str, Any]:
    """
    Start (or resume) checkout for an order.

    The amount and lines are read from the stored order; the request
    carries no pricing.
    """
    order = await orders.get_snapshot(db, order_id)
    logger.info(
        "api_checkout_request",
        order_id=order_id,
        total_amount=order.total_amount,
        item_count=len(order.line_items),
    )
    result = await checkout.start_checkout(db, order)
    return result.model_dump()


@payment_router.get(
    "/{payment_number}/status",
    response_model=PaymentStatusResponse,
    summary="Get payment status",
    description="Read-only status query, safe to poll",
)
async def get_payment_status(
    payment_number: str,
    db: AsyncSession = Depends(get_db),
    store: PaymentRecordStore = Depends(get_payment_store),
) -> Dict[str, Any]:
    """Get payment status by payment number."""
    view = await store.get_status(db, payment_number)
    logger.info(
        "api_payment_status_checked",
        payment_number=payment_number,
        status=view.status.value,
        provider=view.provider.value,
    )
    return view.model_dump()


@payment_router.get(
    "/{payment_number}/checkout-link",
    response_model=CheckoutLinkResponse,
    summary="Resume checkout",
    description="Return the gateway link of a recently created invoice",
)
async def get_checkout_link(
    payment_number: str,
    checkout: CheckoutService = Depends(get_checkout_service),
) -> Dict[str, Any]:
    cached = await checkout.get_cached_invoice(payment_number)
    if cached is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Checkout link expired or unknown"
        )
    return {"payment_number": payment_number, "follow_up_url": cached.follow_up_url}


@payment_router.post(
    "/{payment_number}/confirm",
    response_model=PaymentStatusResponse,
    summary="Confirm an offline payment",
    description="Operator confirmation for bank transfer or cash payments",
)
async def confirm_payment(
    payment_number: str,
    request: ConfirmPaymentRequest,
    db: AsyncSession = Depends(get_db),
    store: PaymentRecordStore = Depends(get_payment_store),
) -> Dict[str, Any]:
    payment = await store.mark_terminal(
        db,
        payment_number,
        PaymentStatus.SUCCESS,
        provider=request.provider,
        source="confirmation",
    )
    return {"status": payment.status, "provider": payment.provider}


@webhook_router.post(
    "/bonum",
    response_model=WebhookResponse,
    summary="Gateway webhook endpoint",
    description="Settle a payment from the gateway's signed notification",
    dependencies=[Depends(verify_bonum_signature)],
)
async def bonum_webhook(
    event: GatewayWebhookRequest,
    db: AsyncSession = Depends(get_db),
    store: PaymentRecordStore = Depends(get_payment_store),
) -> Dict[str, Any]:
    """
    Handle gateway payment notifications.

    Unsigned or mis-signed calls are rejected with 401 before the body is
    acted on. Replays of the same outcome are no-ops; a conflicting outcome
    is rejected with 409 by the invariant handler.
    """
    logger.info(
        "api_webhook_received",
        payment_number=event.transaction_id,
        gateway_status=event.status,
    )

    terminal = GATEWAY_TERMINAL_STATUSES.get(event.status.upper())
    if terminal is None:
        metrics.record_webhook("ignored")
        logger.info(
            "api_webhook_ignored",
            payment_number=event.transaction_id,
            gateway_status=event.status,
        )
        return {"status": "ignored", "payment_number": event.transaction_id}

    payment = await store.mark_terminal(db, event.transaction_id, terminal, source="webhook")
    metrics.record_webhook("processed")
    return {
        "status": "processed",
        "payment_number": payment.payment_number,
        "payment_status": payment.status,
    }


@admin_router.get(
    "/payments/pending",
    response_model=List[PaymentRecordResponse],
    summary="List pending payments",
)
async def list_pending_payments(
    db: AsyncSession = Depends(get_db),
    store: PaymentRecordStore = Depends(get_payment_store),
) -> List[Any]:
    return await store.list_pending(db)


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    try:
        return await health_check.check_all()
    except Exception as e:
        logger.error("health_check_error", error=str(e))
        return {
            "status": "unhealthy",
            "checks": {"error": str(e)},
        }


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
)
async def liveness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Liveness probe endpoint."""
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
)
async def readiness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Readiness probe endpoint."""
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
