"""
Value objects exchanged between the checkout flow, the gateway and the poller.

All of them are frozen: an invoice is immutable once sent and a cached
credential is replaced, never mutated.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Tuple

from pydantic import BaseModel, ConfigDict, Field


class PaymentStatus(str, Enum):
    """Lifecycle of a payment record."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


class PaymentProvider(str, Enum):
    """How the customer pays for an order."""

    QPAY = "qpay"
    TRANSFER = "transfer"
    CASH = "cash"
    BONUM = "bonum"


class Credential(BaseModel):
    """Bearer token issued by the gateway, valid until ``expires_at`` (unix seconds)."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class LineItem(BaseModel):
    """One invoice line, amounts in minor currency units."""

    model_config = ConfigDict(frozen=True)

    title: str
    unit_amount: int
    quantity: int
    image_ref: str = ""
    remark: str = ""

    def to_gateway_payload(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "amount": self.unit_amount,
            "count": self.quantity,
            "image": self.image_ref,
            "remark": self.remark,
        }


class Invoice(BaseModel):
    """
    Request to collect ``total_amount`` for one payment attempt.

    ``transaction_id`` is the payment number of the attempt, so the gateway
    and the storefront refer to the same identifier.
    """

    model_config = ConfigDict(frozen=True)

    transaction_id: str
    total_amount: int
    line_items: Tuple[LineItem, ...]


class InvoiceResult(BaseModel):
    """Gateway answer to invoice creation. Used for redirects only, never for status."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    provider_invoice_id: str = Field(alias="invoiceId")
    follow_up_url: str = Field(alias="followUpLink")


class OrderSnapshot(BaseModel):
    """The slice of an order the checkout flow needs."""

    model_config = ConfigDict(frozen=True)

    order_id: int
    total_amount: int
    line_items: Tuple[LineItem, ...]


class PaymentStatusView(BaseModel):
    """Read-only status answer served to the poller."""

    model_config = ConfigDict(frozen=True)

    status: PaymentStatus
    provider: PaymentProvider
