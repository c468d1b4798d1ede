"""Database package for checkout reconciliation."""
from .connection import (
    build_engine,
    build_session_factory,
    close_db,
    get_db,
    get_session_factory,
    init_db,
)
from .models import (
    Base,
    Cart,
    CheckoutEvent,
    CheckoutSession,
    Coupon,
    FulfillmentStatus,
    Order,
    PaymentStatus,
    SessionStatus,
)

__all__ = [
    "Base",
    "Cart",
    "CheckoutEvent",
    "CheckoutSession",
    "Coupon",
    "FulfillmentStatus",
    "Order",
    "PaymentStatus",
    "SessionStatus",
    "build_engine",
    "build_session_factory",
    "close_db",
    "get_db",
    "get_session_factory",
    "init_db",
]
