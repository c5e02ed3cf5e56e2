"""Core payment coordination: record store, checkout flow and status poller."""
from .checkout import CheckoutResult, CheckoutService
from .orders import OrderRepository
from .payment_store import PaymentRecordStore
from .poller import PollState, StatusPoller

__all__ = [
    "CheckoutResult",
    "CheckoutService",
    "OrderRepository",
    "PaymentRecordStore",
    "PollState",
    "StatusPoller",
]
