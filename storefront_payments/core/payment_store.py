"""
Payment record store.

Persists one row per payment attempt and owns every status change. A record
leaves ``pending`` exactly once; replaying the same terminal status is a
no-op, while a conflicting one raises ``InvariantViolation`` and leaves the
row untouched. Provider webhooks and operator confirmations race freely
through ``mark_terminal`` and are reconciled by that rule.
"""
import secrets
import string
from datetime import datetime, timezone
from typing import List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_payments.database.models import Payment
from storefront_payments.domain import (
    InvariantViolation,
    PaymentNotFoundError,
    PaymentProvider,
    PaymentStatus,
    PaymentStatusView,
)
from storefront_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

PAYMENT_NUMBER_ALPHABET = string.ascii_uppercase + string.digits
PAYMENT_NUMBER_LENGTH = 10


class PaymentRecordStore:
    """
    Reads and writes payment records within the caller's session.

    The store flushes but never commits; the request scope that owns the
    session decides when the transaction ends.
    """

    @staticmethod
    def generate_payment_number() -> str:
        """Random 10-character identifier, safe to show to customers."""
        return "".join(
            secrets.choice(PAYMENT_NUMBER_ALPHABET) for _ in range(PAYMENT_NUMBER_LENGTH)
        )

    @staticmethod
    def _live(payment_number: str):
        return select(Payment).where(
            Payment.payment_number == payment_number,
            Payment.deleted_at.is_(None),
        )

    async def get_payment(self, db: AsyncSession, payment_number: str) -> Optional[Payment]:
        result = await db.execute(self._live(payment_number))
        return result.scalar_one_or_none()

    async def get_open_payment(self, db: AsyncSession, order_id: int) -> Optional[Payment]:
        """Return the order's pending, non-superseded attempt if there is one."""
        result = await db.execute(
            select(Payment).where(
                Payment.order_id == order_id,
                Payment.status == PaymentStatus.PENDING.value,
                Payment.deleted_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def create_pending(
        self,
        db: AsyncSession,
        order_id: int,
        provider: PaymentProvider,
        amount: int,
        payment_number: Optional[str] = None,
        invoice_id: Optional[str] = None,
    ) -> str:
        """
        Create a pending payment record for an order.

        Args:
            db: Database session
            order_id: Internal order id (never exposed)
            provider: Payment provider for this attempt
            amount: Amount in minor currency units
            payment_number: Pre-generated number, e.g. already sent to the gateway
            invoice_id: Gateway invoice id, if the invoice already exists

        Returns:
            str: The payment number

        Raises:
            InvariantViolation: If the order already has an open attempt
        """
        existing = await self.get_open_payment(db, order_id)
        if existing is not None:
            logger.warning(
                "payment_open_attempt_exists",
                order_id=order_id,
                payment_number=existing.payment_number,
            )
            raise InvariantViolation(
                f"Order {order_id} already has open payment {existing.payment_number}",
                payment_number=existing.payment_number,
                current_status=existing.status,
                attempted_status=PaymentStatus.PENDING.value,
            )

        number = payment_number or self.generate_payment_number()
        payment = Payment(
            payment_number=number,
            order_id=order_id,
            provider=PaymentProvider(provider).value,
            status=PaymentStatus.PENDING.value,
            invoice_id=invoice_id,
            amount=amount,
        )

        db.add(payment)
        try:
            await db.flush()
        except IntegrityError as e:
            # Lost a race against a concurrent attempt for the same order
            logger.warning("payment_create_conflict", order_id=order_id, error=str(e))
            raise InvariantViolation(
                f"Order {order_id} already has an open payment",
                payment_number=number,
                current_status=PaymentStatus.PENDING.value,
                attempted_status=PaymentStatus.PENDING.value,
            ) from e

        logger.info(
            "payment_created",
            payment_number=number,
            order_id=order_id,
            provider=payment.provider,
            amount=amount,
        )
        return number

    async def attach_invoice(self, db: AsyncSession, payment_number: str, invoice_id: str) -> None:
        payment = await self.get_payment(db, payment_number)
        if payment is None:
            raise PaymentNotFoundError(payment_number)
        payment.invoice_id = invoice_id
        await db.flush()

    async def supersede(self, db: AsyncSession, payment_number: str) -> None:
        """
        Retire a pending attempt so the order can start a new one.

        Terminal records are left alone; their outcome is history.
        """
        payment = await self.get_payment(db, payment_number)
        if payment is None:
            raise PaymentNotFoundError(payment_number)
        if PaymentStatus(payment.status).is_terminal:
            return
        payment.deleted_at = datetime.now(timezone.utc)
        await db.flush()
        logger.info(
            "payment_superseded",
            payment_number=payment_number,
            order_id=payment.order_id,
        )

    async def get_status(self, db: AsyncSession, payment_number: str) -> PaymentStatusView:
        """
        Read-only status lookup used by the poller endpoint.

        Raises:
            PaymentNotFoundError: If no live record has this number
        """
        payment = await self.get_payment(db, payment_number)
        if payment is None:
            raise PaymentNotFoundError(payment_number)
        return PaymentStatusView(
            status=PaymentStatus(payment.status),
            provider=PaymentProvider(payment.provider),
        )

    async def mark_terminal(
        self,
        db: AsyncSession,
        payment_number: str,
        status: PaymentStatus,
        provider: Optional[PaymentProvider] = None,
        source: str = "webhook",
    ) -> Payment:
        """
        Settle a payment as ``success`` or ``failed``.

        Args:
            db: Database session
            payment_number: Payment to settle
            status: Terminal status
            provider: Optionally record how the customer actually paid
            source: Who reported the outcome, for logs and metrics

        Returns:
            Payment: The settled record

        Raises:
            ValueError: If ``status`` is not terminal
            PaymentNotFoundError: If the payment does not exist
            InvariantViolation: If the payment already settled differently
        """
        status = PaymentStatus(status)
        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal status")

        # Superseded attempts stay settleable: their invoice may still be paid
        result = await db.execute(
            select(Payment)
            .where(Payment.payment_number == payment_number)
            .with_for_update()
        )
        payment = result.scalar_one_or_none()
        if payment is None:
            raise PaymentNotFoundError(payment_number)

        current = PaymentStatus(payment.status)
        if current == status:
            logger.info(
                "payment_terminal_replayed",
                payment_number=payment_number,
                status=status.value,
                source=source,
            )
            return payment

        if current.is_terminal:
            metrics.record_invariant_violation()
            logger.error(
                "payment_terminal_conflict",
                payment_number=payment_number,
                current_status=current.value,
                attempted_status=status.value,
                source=source,
            )
            raise InvariantViolation(
                f"Payment {payment_number} is already {current.value}; "
                f"refusing to set {status.value}",
                payment_number=payment_number,
                current_status=current.value,
                attempted_status=status.value,
            )

        payment.status = status.value
        if provider is not None:
            payment.provider = PaymentProvider(provider).value
        await db.flush()

        metrics.record_status_transition(status.value, source)
        if payment.deleted_at is not None:
            open_attempt = await self.get_open_payment(db, payment.order_id)
            logger.warning(
                "payment_superseded_attempt_settled",
                payment_number=payment_number,
                order_id=payment.order_id,
                status=status.value,
                open_payment_number=open_attempt.payment_number if open_attempt else None,
            )
        logger.info(
            "payment_settled",
            payment_number=payment_number,
            status=status.value,
            provider=payment.provider,
            source=source,
        )
        return payment

    async def list_pending(self, db: AsyncSession) -> List[Payment]:
        result = await db.execute(
            select(Payment)
            .where(
                Payment.status == PaymentStatus.PENDING.value,
                Payment.deleted_at.is_(None),
            )
            .order_by(Payment.created_at)
        )
        return list(result.scalars().all())
