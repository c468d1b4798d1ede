"""
Stripe payment gateway adapter.

Implements the read-only gateway port on top of Stripe:
- payments are PaymentIntents (``succeeded`` is the completed status)
- checkout links are Checkout Sessions (``complete`` and paid)
- external order ids are carried in PaymentIntent ``metadata['order_id']``

Calls go through a circuit breaker and are classified so that missing
objects come back as ``None`` and transport problems raise
``GatewayUnavailableError``. Retrying is the caller's concern.
"""
import asyncio
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, TypeVar

import stripe
import structlog

from checkout_reconciliation.config import Settings, get_settings
from checkout_reconciliation.integrations.gateway import (
    CheckoutLinkStatus,
    GatewayError,
    GatewayPayment,
    GatewayUnavailableError,
    PaymentGateway,
)
from checkout_reconciliation.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

T = TypeVar("T")

PAYMENT_COMPLETED = "succeeded"
LINK_COMPLETED = "complete"
LINK_PAID_STATUSES = ("paid", "no_payment_required")
ORDER_ID_METADATA_KEY = "order_id"


class StripeErrorType(Enum):
    """Classification of Stripe errors for retry logic."""

    TRANSIENT = "transient"  # Retry these
    PERMANENT = "permanent"  # Don't retry these
    RATE_LIMIT = "rate_limit"  # Retry with longer backoff


class CircuitBreaker:
    """
    Circuit breaker for Stripe API calls.

    Prevents cascading failures by temporarily stopping requests
    when error rate exceeds threshold.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 60,
        success_threshold: int = 2,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of failures before opening circuit
            timeout: Seconds before attempting to close circuit
            success_threshold: Successful calls needed to close circuit
            clock: Monotonic time source
        """
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.clock = clock
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open
        # Calls run in worker threads via asyncio.to_thread
        self._lock = threading.Lock()

    def call(self, func: Callable[[], T]) -> T:
        """
        Execute function with circuit breaker protection.

        Raises:
            GatewayUnavailableError: If circuit is open
        """
        with self._lock:
            if self.state == "open":
                if (
                    self.last_failure_time is not None
                    and self.clock() - self.last_failure_time > self.timeout
                ):
                    self._set_state("half_open")
                    self.success_count = 0
                else:
                    raise GatewayUnavailableError("Circuit breaker is open")

        try:
            result = func()
        except stripe.InvalidRequestError as e:
            # The gateway answered; a missing object is not a failure of the link
            if getattr(e, "code", None) != "resource_missing":
                self.on_failure()
            raise
        except Exception:
            self.on_failure()
            raise
        self.on_success()
        return result

    def on_success(self) -> None:
        """Record successful call."""
        with self._lock:
            self.failure_count = 0
            if self.state == "half_open":
                self.success_count += 1
                if self.success_count >= self.success_threshold:
                    self._set_state("closed")

    def on_failure(self) -> None:
        """Record failed call."""
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = self.clock()
            if self.state == "half_open" or self.failure_count >= self.failure_threshold:
                self._set_state("open")
                logger.warning("circuit_breaker_opened", failure_count=self.failure_count)

    def _set_state(self, state: str) -> None:
        if state != self.state:
            logger.info("circuit_breaker_state_changed", old=self.state, new=state)
        self.state = state
        metrics.set_circuit_breaker_state(state)


def _field(obj: Any, name: str, default: Any = None) -> Any:
    """Read a field from a Stripe object or a plain dict."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _to_payment(intent: Any) -> GatewayPayment:
    status = _field(intent, "status") or "unknown"
    last_error = _field(intent, "last_payment_error")
    return GatewayPayment(
        id=_field(intent, "id"),
        status=status,
        completed=status == PAYMENT_COMPLETED,
        order_id=_field(_field(intent, "metadata"), ORDER_ID_METADATA_KEY),
        amount_cents=_field(intent, "amount"),
        failure_detail=_field(last_error, "message") or _field(last_error, "decline_code"),
    )


def _to_link_status(checkout_session: Any) -> CheckoutLinkStatus:
    status = _field(checkout_session, "status") or "unknown"
    payment_status = _field(checkout_session, "payment_status")
    intent = _field(checkout_session, "payment_intent")
    # Unexpanded intents come back as bare ids and resolve through the order search
    payments = (_to_payment(intent),) if intent is not None and not isinstance(intent, str) else ()
    return CheckoutLinkStatus(
        id=_field(checkout_session, "id"),
        status=status,
        completed=status == LINK_COMPLETED and payment_status in LINK_PAID_STATUSES,
        order_id=(
            _field(_field(checkout_session, "metadata"), ORDER_ID_METADATA_KEY)
            or _field(checkout_session, "client_reference_id")
        ),
        payments=payments,
    )


def _search_query(order_id: str) -> str:
    escaped = order_id.replace("\\", "\\\\").replace("'", "\\'")
    return f"metadata['{ORDER_ID_METADATA_KEY}']:'{escaped}'"


class StripeGateway(PaymentGateway):
    """
    Stripe implementation of the read-only gateway port.

    Features:
    - Circuit breaker pattern
    - Error classification (absent / transient / permanent)
    - Blocking SDK calls moved off the event loop
    """

    provider = "stripe"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        """Initialize Stripe gateway."""
        settings = settings or get_settings()
        stripe.api_key = settings.stripe_secret_key
        stripe.api_version = settings.stripe_api_version
        self.settings = settings
        self.circuit_breaker = circuit_breaker or CircuitBreaker()

        logger.info(
            "stripe_gateway_initialized",
            api_version=settings.stripe_api_version,
            test_mode=settings.is_test_mode,
        )

    @staticmethod
    def _classify_error(error: stripe.StripeError) -> StripeErrorType:
        """
        Classify Stripe error for retry logic.

        Args:
            error: Stripe error

        Returns:
            StripeErrorType: Error classification
        """
        if isinstance(error, stripe.RateLimitError):
            return StripeErrorType.RATE_LIMIT
        elif isinstance(error, (stripe.APIConnectionError, stripe.APIError)):
            return StripeErrorType.TRANSIENT
        elif isinstance(
            error,
            (
                stripe.InvalidRequestError,
                stripe.AuthenticationError,
                stripe.PermissionError,
                stripe.CardError,
            ),
        ):
            return StripeErrorType.PERMANENT
        else:
            # Unknown errors are treated as transient
            return StripeErrorType.TRANSIENT

    def _translate_error(self, operation: str, error: stripe.StripeError) -> GatewayError:
        error_type = self._classify_error(error)
        metrics.record_gateway_error(error_type.value)
        logger.error(
            "stripe_api_error",
            operation=operation,
            error_type=error_type.value,
            error_code=getattr(error, "code", None),
            error_message=str(error),
        )
        if error_type == StripeErrorType.PERMANENT:
            return GatewayError(str(error), original_error=error)
        return GatewayUnavailableError(str(error), original_error=error)

    async def _call(self, operation: str, func: Callable[[], T]) -> Optional[T]:
        """Run one SDK call; ``None`` when Stripe reports the object missing."""
        start = time.monotonic()
        try:
            result = await asyncio.to_thread(self.circuit_breaker.call, func)
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_missing":
                metrics.record_gateway_call(operation, "not_found", time.monotonic() - start)
                logger.info("stripe_object_not_found", operation=operation)
                return None
            metrics.record_gateway_call(operation, "error", time.monotonic() - start)
            raise self._translate_error(operation, e) from e
        except stripe.StripeError as e:
            metrics.record_gateway_call(operation, "error", time.monotonic() - start)
            raise self._translate_error(operation, e) from e
        except GatewayUnavailableError:
            metrics.record_gateway_call(operation, "circuit_open", time.monotonic() - start)
            raise
        metrics.record_gateway_call(operation, "ok", time.monotonic() - start)
        return result

    async def retrieve_payment(self, payment_id: str) -> Optional[GatewayPayment]:
        """Retrieve a PaymentIntent by id."""
        logger.info("retrieving_payment_intent", payment_intent_id=payment_id)
        intent = await self._call(
            "retrieve_payment", lambda: stripe.PaymentIntent.retrieve(payment_id)
        )
        return _to_payment(intent) if intent is not None else None

    async def retrieve_checkout_link_status(
        self, link_id: str
    ) -> Optional[CheckoutLinkStatus]:
        """Retrieve a Checkout Session with its PaymentIntent expanded."""
        logger.info("retrieving_checkout_session", checkout_session_id=link_id)
        checkout_session = await self._call(
            "retrieve_checkout_link",
            lambda: stripe.checkout.Session.retrieve(link_id, expand=["payment_intent"]),
        )
        return _to_link_status(checkout_session) if checkout_session is not None else None

    async def search_payments_by_external_order(
        self, order_id: str
    ) -> List[GatewayPayment]:
        """Search PaymentIntents tagged with the external order id."""
        logger.info("searching_payment_intents", order_id=order_id)
        kwargs: Dict[str, Any] = {"query": _search_query(order_id), "limit": 10}
        result = await self._call(
            "search_payments", lambda: stripe.PaymentIntent.search(**kwargs)
        )
        if result is None:
            return []
        return [_to_payment(intent) for intent in (_field(result, "data") or [])]
