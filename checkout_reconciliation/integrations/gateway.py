"""
Payment gateway port.

The reconciliation engine only ever reads from the gateway, through the
three lookups defined here. Adapters must keep two outcomes apart:

- the gateway answered and the object does not exist: return ``None``
  (or an empty list for searches)
- the gateway could not be asked: raise ``GatewayUnavailableError``

The cascade falls back differently on each, so an adapter must never turn
a transport failure into an empty result.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Tuple


class GatewayError(Exception):
    """Gateway rejected the request. Retrying the same call will not help."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.original_error = original_error


class GatewayUnavailableError(GatewayError):
    """Transport-level failure (connection, rate limit, open circuit). Retryable."""

    pass


@dataclass(frozen=True)
class GatewayPayment:
    """A payment as reported by the gateway, normalized for reconciliation."""

    id: str
    status: str
    completed: bool
    order_id: Optional[str] = None
    amount_cents: Optional[int] = None
    failure_detail: Optional[str] = None
    # Marker built from a trusted signal rather than returned by a lookup
    synthesized: bool = False


@dataclass(frozen=True)
class CheckoutLinkStatus:
    """Status of a hosted checkout link and any payments embedded in it."""

    id: str
    status: str
    completed: bool
    order_id: Optional[str] = None
    payments: Tuple[GatewayPayment, ...] = field(default_factory=tuple)

    def completed_payment(self) -> Optional[GatewayPayment]:
        """First embedded payment the gateway reports as completed."""
        return next((p for p in self.payments if p.completed), None)

    @property
    def settled(self) -> bool:
        """Polling can stop: the link or one of its payments completed."""
        return self.completed or self.completed_payment() is not None


class PaymentGateway(ABC):
    """Read-only payment gateway interface."""

    provider: str = "gateway"

    @abstractmethod
    async def retrieve_payment(self, payment_id: str) -> Optional[GatewayPayment]:
        """Fetch one payment by id; ``None`` when the gateway does not know it."""
        ...

    @abstractmethod
    async def retrieve_checkout_link_status(
        self, link_id: str
    ) -> Optional[CheckoutLinkStatus]:
        """Fetch a hosted checkout link; ``None`` when it does not exist."""
        ...

    @abstractmethod
    async def search_payments_by_external_order(
        self, order_id: str
    ) -> List[GatewayPayment]:
        """All payments the gateway attributes to an external order id."""
        ...


def pick_payment(payments: List[GatewayPayment]) -> Optional[GatewayPayment]:
    """Prefer a completed payment, else the first one, else nothing."""
    if not payments:
        return None
    return next((p for p in payments if p.completed), payments[0])
