"""
Pydantic schemas for API request/response models.
"""
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from storefront_payments.domain import PaymentProvider, PaymentStatus


class CheckoutResponse(BaseModel):
    """Response schema for checkout."""

    payment_number: str = Field(..., description="Customer-facing payment identifier")
    follow_up_url: str = Field(..., description="Gateway checkout URL to redirect to")
    provider_invoice_id: str = Field(..., description="Gateway invoice ID")
    reused: bool = Field(default=False, description="True if an open attempt was reused")


class CheckoutLinkResponse(BaseModel):
    """Response schema for resuming a checkout."""

    payment_number: str = Field(..., description="Customer-facing payment identifier")
    follow_up_url: str = Field(..., description="Gateway checkout URL")


class PaymentStatusResponse(BaseModel):
    """Response schema for the status endpoint polled by clients."""

    status: PaymentStatus = Field(..., description="pending, success or failed")
    provider: PaymentProvider = Field(..., description="Payment provider")


class ConfirmPaymentRequest(BaseModel):
    """Operator confirmation of an offline payment."""

    provider: PaymentProvider = Field(
        default=PaymentProvider.TRANSFER, description="How the customer paid"
    )


class GatewayWebhookRequest(BaseModel):
    """Payment notification sent by the gateway."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    transaction_id: str = Field(..., alias="transactionId", description="Our payment number")
    status: str = Field(..., description="Gateway payment status")
    invoice_id: Optional[str] = Field(default=None, alias="invoiceId")


class WebhookResponse(BaseModel):
    """Response schema for webhook processing."""

    status: str = Field(..., description="Processing status (processed, ignored)")
    payment_number: str = Field(..., description="Payment the event referred to")
    payment_status: Optional[PaymentStatus] = Field(default=None, description="Stored status")


class PaymentRecordResponse(BaseModel):
    """Payment record as shown to operators."""

    model_config = ConfigDict(from_attributes=True)

    payment_number: str
    order_id: int
    provider: PaymentProvider
    status: PaymentStatus
    invoice_id: Optional[str] = None
    amount: int


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
