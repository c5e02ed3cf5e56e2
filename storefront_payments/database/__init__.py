"""Database package for storefront payments."""
from .connection import close_db, get_db, get_session_factory, init_db
from .models import Base, Order, OrderItem, Payment

__all__ = [
    "Base",
    "Order",
    "OrderItem",
    "Payment",
    "close_db",
    "get_db",
    "get_session_factory",
    "init_db",
]
