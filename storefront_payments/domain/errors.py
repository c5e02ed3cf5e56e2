"""
Error taxonomy for gateway coordination.

Every failure a caller must react to is one variant of ``GatewayFailure``:

- ``AuthError``: credential acquisition failed, fatal for the attempt
- ``ProviderError``: the gateway rejected the request
- ``NetworkError``: transport failure, retryable by the caller's policy
- ``InvariantViolation``: an attempt to overwrite a terminal payment status

Each variant defines ``__match_args__`` so callers can branch with a
``match`` statement on the variant and its fields::

    match error:
        case AuthError(status_code):
            ...
        case ProviderError(status_code, body):
            ...
        case NetworkError():
            ...
"""
from enum import Enum
from typing import Any, Dict, Optional, Union


class ErrorKind(str, Enum):
    """Tag carried by every gateway error."""

    AUTH = "auth"
    PROVIDER = "provider"
    NETWORK = "network"
    INVARIANT = "invariant"


class GatewayError(Exception):
    """Base exception for the payment gateway subsystem."""

    kind: ErrorKind
    retryable: bool = False


class AuthError(GatewayError):
    """Raised when the gateway refuses to issue an access token."""

    kind = ErrorKind.AUTH
    __match_args__ = ("status_code", "body")

    def __init__(self, message: str, status_code: int, body: Union[Dict[str, Any], str]):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ProviderError(GatewayError):
    """
    Raised when the gateway answers a request with a non-2xx status.

    ``request_echo`` is the outgoing body with line items summarized,
    kept for operator diagnosis.
    """

    kind = ErrorKind.PROVIDER
    __match_args__ = ("status_code", "body", "request_echo")

    def __init__(
        self,
        message: str,
        status_code: int,
        body: Union[Dict[str, Any], str],
        request_echo: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.request_echo = request_echo


class NetworkError(GatewayError):
    """Raised on transport failures: timeouts, DNS, connection resets."""

    kind = ErrorKind.NETWORK
    retryable = True
    __match_args__ = ("operation",)

    def __init__(
        self,
        message: str,
        operation: str,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.original_error = original_error


class InvariantViolation(GatewayError):
    """Raised instead of silently overwriting a payment's settled state."""

    kind = ErrorKind.INVARIANT
    __match_args__ = ("payment_number", "current_status", "attempted_status")

    def __init__(
        self,
        message: str,
        payment_number: str,
        current_status: str,
        attempted_status: str,
    ):
        super().__init__(message)
        self.payment_number = payment_number
        self.current_status = current_status
        self.attempted_status = attempted_status


GatewayFailure = Union[AuthError, ProviderError, NetworkError, InvariantViolation]


class InvoiceValidationError(ValueError):
    """Raised when an invoice fails its preconditions; nothing is sent."""

    pass


class PaymentNotFoundError(LookupError):
    """Raised when no live payment record has the given payment number."""

    def __init__(self, payment_number: str):
        super().__init__(f"Payment {payment_number} not found")
        self.payment_number = payment_number


class OrderNotFoundError(LookupError):
    """Raised when checkout is requested for an order that does not exist."""

    def __init__(self, order_id: int):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id
