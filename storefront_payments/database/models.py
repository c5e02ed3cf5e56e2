"""SQLAlchemy database models for orders and payment records."""
from datetime import datetime
from typing import List

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

OPEN_PAYMENT_PREDICATE = "status = 'pending' AND deleted_at IS NULL"


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Payment(Base):
    """
    One row per payment attempt.

    ``payment_number`` is the only identifier exposed outside the server;
    it doubles as the gateway transaction id. ``status`` leaves ``pending``
    exactly once. Superseded attempts keep their row with ``deleted_at`` set.
    """

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    payment_number: Mapped[str] = mapped_column(
        String(10), unique=True, nullable=False, index=True
    )
    order_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    invoice_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now(), index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now(),
        onupdate=func.now(),
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("amount > 0", name="positive_amount"),
        CheckConstraint(
            "status IN ('pending', 'success', 'failed')",
            name="valid_status",
        ),
        CheckConstraint(
            "provider IN ('qpay', 'transfer', 'cash', 'bonum')",
            name="valid_provider",
        ),
        # At most one open attempt per order
        Index(
            "uq_payments_open_per_order",
            "order_id",
            unique=True,
            postgresql_where=text(OPEN_PAYMENT_PREDICATE),
            sqlite_where=text(OPEN_PAYMENT_PREDICATE),
        ),
    )

    def __repr__(self) -> str:
        """String representation of Payment."""
        return (
            f"<Payment(payment_number={self.payment_number}, order_id={self.order_id}, "
            f"provider={self.provider}, status={self.status})>"
        )


class Order(Base):
    """
    A placed storefront order.

    Owned by the storefront; this service only reads it to price checkout.
    """

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_number: Mapped[str] = mapped_column(String(8), nullable=False, index=True)
    total: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    items: Mapped[List["OrderItem"]] = relationship(
        back_populates="order", lazy="selectin", order_by="OrderItem.id"
    )

    __table_args__ = (CheckConstraint("total > 0", name="positive_total"),)

    def __repr__(self) -> str:
        """String representation of Order."""
        return f"<Order(id={self.id}, order_number={self.order_number}, total={self.total})>"


class OrderItem(Base):
    """One order line with the name and unit price captured at order time."""

    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_name: Mapped[str] = mapped_column(String(256), nullable=False)
    unit_price: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    image_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    order: Mapped[Order] = relationship(back_populates="items")
