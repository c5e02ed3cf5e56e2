"""
Order lookup for checkout.

Checkout prices an invoice from the stored order, never from the request.
"""
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_payments.database.models import Order
from storefront_payments.domain import LineItem, OrderNotFoundError, OrderSnapshot

logger = structlog.get_logger(__name__)


class OrderRepository:
    """Read-only access to placed orders."""

    async def get_snapshot(self, db: AsyncSession, order_id: int) -> OrderSnapshot:
        """
        Load an order and its live lines as a checkout snapshot.

        Args:
            db: Database session
            order_id: Internal order id

        Returns:
            OrderSnapshot: Stored total and line items

        Raises:
            OrderNotFoundError: If the order does not exist or was deleted
        """
        result = await db.execute(
            select(Order).where(Order.id == order_id, Order.deleted_at.is_(None))
        )
        order = result.scalar_one_or_none()
        if order is None:
            logger.warning("order_not_found", order_id=order_id)
            raise OrderNotFoundError(order_id)

        line_items = tuple(
            LineItem(
                title=item.product_name,
                unit_amount=item.unit_price,
                quantity=item.quantity,
                image_ref=item.image_url or "",
                remark=item.product_name,
            )
            for item in order.items
            if item.deleted_at is None
        )
        return OrderSnapshot(order_id=order.id, total_amount=order.total, line_items=line_items)
