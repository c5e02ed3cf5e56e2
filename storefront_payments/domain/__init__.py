"""
Domain layer for the payment subsystem.

Value objects exchanged with the gateway and the error taxonomy shared by
every other layer. Nothing here touches the network or the database.
"""
from .errors import (
    AuthError,
    ErrorKind,
    GatewayError,
    GatewayFailure,
    InvariantViolation,
    InvoiceValidationError,
    NetworkError,
    OrderNotFoundError,
    PaymentNotFoundError,
    ProviderError,
)
from .value_objects import (
    Credential,
    Invoice,
    InvoiceResult,
    LineItem,
    OrderSnapshot,
    PaymentProvider,
    PaymentStatus,
    PaymentStatusView,
)

__all__ = [
    "AuthError",
    "Credential",
    "ErrorKind",
    "GatewayError",
    "GatewayFailure",
    "InvariantViolation",
    "Invoice",
    "InvoiceResult",
    "InvoiceValidationError",
    "LineItem",
    "NetworkError",
    "OrderNotFoundError",
    "OrderSnapshot",
    "PaymentNotFoundError",
    "PaymentProvider",
    "PaymentStatus",
    "PaymentStatusView",
    "ProviderError",
]
