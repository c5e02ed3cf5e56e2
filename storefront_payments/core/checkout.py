"""
Checkout flow: turn an order into a gateway invoice and a pending payment.

Flow:
1. Reuse the order's open attempt while its checkout link is still cached
2. Otherwise supersede the stale attempt
3. Validate and create the remote invoice
4. Record the attempt as pending
5. Cache the checkout link for the invoice's lifetime

Any gateway failure surfaces before step 4, so a failed checkout never
leaves a new payment record behind.
"""
from typing import Optional

import structlog
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_payments.config import Settings, get_settings
from storefront_payments.domain import (
    GatewayError,
    Invoice,
    InvoiceResult,
    InvoiceValidationError,
    OrderSnapshot,
    PaymentProvider,
)
from storefront_payments.integrations.bonum_client import BonumClient
from storefront_payments.integrations.kv_store import KeyValueStore
from storefront_payments.monitoring.metrics import metrics

from .payment_store import PaymentRecordStore

logger = structlog.get_logger(__name__)


class CheckoutResult(BaseModel):
    """Where to send the customer for a given payment attempt."""

    payment_number: str
    follow_up_url: str
    provider_invoice_id: str
    reused: bool = False


class CheckoutService:
    """Coordinates the gateway client, the record store and the link cache."""

    def __init__(
        self,
        gateway: BonumClient,
        kv_store: KeyValueStore,
        store: Optional[PaymentRecordStore] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.gateway = gateway
        self.kv_store = kv_store
        self.store = store or PaymentRecordStore()

    @staticmethod
    def link_cache_key(payment_number: str) -> str:
        return f"checkout_link:{payment_number}"

    async def get_cached_invoice(self, payment_number: str) -> Optional[InvoiceResult]:
        raw = await self.kv_store.get(self.link_cache_key(payment_number))
        if not raw:
            return None
        try:
            return InvoiceResult.model_validate_json(raw)
        except ValidationError:
            logger.warning("checkout_link_corrupt_entry", payment_number=payment_number)
            return None

    async def start_checkout(self, db: AsyncSession, order: OrderSnapshot) -> CheckoutResult:
        """
        Create (or reuse) the payment attempt for an order.

        Args:
            db: Database session
            order: Order to charge

        Returns:
            CheckoutResult: Payment number and gateway checkout link

        Raises:
            InvoiceValidationError: If the order cannot be invoiced
            AuthError | ProviderError | NetworkError: From the gateway
            InvariantViolation: If a concurrent checkout won the race
        """
        open_payment = await self.store.get_open_payment(db, order.order_id)
        if open_payment is not None:
            cached = await self.get_cached_invoice(open_payment.payment_number)
            if cached is not None:
                metrics.record_checkout("reused")
                logger.info(
                    "checkout_reused",
                    order_id=order.order_id,
                    payment_number=open_payment.payment_number,
                )
                return CheckoutResult(
                    payment_number=open_payment.payment_number,
                    follow_up_url=cached.follow_up_url,
                    provider_invoice_id=cached.provider_invoice_id,
                    reused=True,
                )

        payment_number = self.store.generate_payment_number()
        invoice = Invoice(
            transaction_id=payment_number,
            total_amount=order.total_amount,
            line_items=order.line_items,
        )
        try:
            BonumClient.validate_invoice(invoice)
        except InvoiceValidationError:
            metrics.record_checkout("failed")
            raise

        if open_payment is not None:
            await self.store.supersede(db, open_payment.payment_number)

        try:
            result = await self.gateway.create_invoice(invoice)
        except GatewayError as e:
            metrics.record_checkout("failed")
            logger.error(
                "checkout_invoice_failed",
                order_id=order.order_id,
                payment_number=payment_number,
                error_kind=e.kind.value,
                error=str(e),
            )
            raise

        await self.store.create_pending(
            db,
            order_id=order.order_id,
            provider=PaymentProvider.BONUM,
            amount=order.total_amount,
            payment_number=payment_number,
            invoice_id=result.provider_invoice_id,
        )
        await self.kv_store.put(
            self.link_cache_key(payment_number),
            result.model_dump_json(by_alias=True),
            expiration_ttl=self.settings.invoice_link_cache_ttl,
        )

        metrics.record_checkout("created", order.total_amount)
        logger.info(
            "checkout_created",
            order_id=order.order_id,
            payment_number=payment_number,
            invoice_id=result.provider_invoice_id,
        )
        return CheckoutResult(
            payment_number=payment_number,
            follow_up_url=result.follow_up_url,
            provider_invoice_id=result.provider_invoice_id,
        )
