"""Payment gateway integrations."""
from .gateway import (
    CheckoutLinkStatus,
    GatewayError,
    GatewayPayment,
    GatewayUnavailableError,
    PaymentGateway,
)
from .stripe_client import CircuitBreaker, StripeGateway

__all__ = [
    "CheckoutLinkStatus",
    "CircuitBreaker",
    "GatewayError",
    "GatewayPayment",
    "GatewayUnavailableError",
    "PaymentGateway",
    "StripeGateway",
]
