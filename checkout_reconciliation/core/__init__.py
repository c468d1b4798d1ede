"""Core checkout reconciliation logic."""
from .checkout import (
    CheckoutAccessDeniedError,
    CheckoutError,
    CheckoutNotFoundError,
    CheckoutService,
    CheckoutStateError,
    CouponError,
    EmptyCartError,
)
from .cleanup import CleanupReport, SessionCleaner
from .materializer import OrderMaterializer
from .reconciliation import (
    OrderAccessDeniedError,
    OrderNotFoundError,
    ReconciliationEngine,
    ReconciliationError,
    UnsupportedPaymentMethodError,
    VerificationRequest,
    VerificationResult,
)
from .retry import Deadline, RetryPolicy
from .trust_policy import MatchingRedirectIdPolicy

__all__ = [
    "CheckoutAccessDeniedError",
    "CheckoutError",
    "CheckoutNotFoundError",
    "CheckoutService",
    "CheckoutStateError",
    "CleanupReport",
    "CouponError",
    "Deadline",
    "EmptyCartError",
    "MatchingRedirectIdPolicy",
    "OrderAccessDeniedError",
    "OrderMaterializer",
    "OrderNotFoundError",
    "ReconciliationEngine",
    "ReconciliationError",
    "RetryPolicy",
    "SessionCleaner",
    "UnsupportedPaymentMethodError",
    "VerificationRequest",
    "VerificationResult",
]
