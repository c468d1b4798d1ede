"""
Reconciliation engine for checkout payments.

Resolves whether the shopper actually paid, using whatever identifiers the
redirect carried and the references stored at checkout, then drives the
checkout session (or a gateway-paid order) to its final state.

Cascade, each step tried only while no completed payment has been found:
1. Direct lookup of the external payment id
2. Checkout link polling, then an order search, then the completed-link marker
3. Search by the external order id
4. Matching redirect id policy (session path only)
5. Mark failed with the best available reason

Gateway outages inside a step only skip that step. Every verification shares
one deadline so the whole cascade stays bounded.
"""
import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional

import structlog
from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from checkout_reconciliation.config import Settings, get_settings
from checkout_reconciliation.core.checkout import load_owned_session
from checkout_reconciliation.core.materializer import OrderMaterializer
from checkout_reconciliation.core.retry import (
    Deadline,
    RetryPolicy,
    call_with_retry,
    link_poll_policy,
    lookup_retry_policy,
    poll_until,
)
from checkout_reconciliation.core.trust_policy import MatchingRedirectIdPolicy
from checkout_reconciliation.database.models import (
    CheckoutEvent,
    CheckoutSession,
    FulfillmentStatus,
    Order,
    PaymentStatus,
    SessionStatus,
    utcnow,
)
from checkout_reconciliation.integrations.gateway import (
    CheckoutLinkStatus,
    GatewayError,
    GatewayPayment,
    GatewayUnavailableError,
    PaymentGateway,
    pick_payment,
)
from checkout_reconciliation.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

STRATEGY_DIRECT_LOOKUP = "direct_lookup"
STRATEGY_CHECKOUT_LINK = "checkout_link"
STRATEGY_ORDER_SEARCH = "order_search"
STRATEGY_TRUSTED_REDIRECT = "trusted_redirect"

CANCELLED_OUTCOMES = frozenset({"cancelled", "canceled"})

GATEWAY_STATUS_NOT_FOUND = "NOT_FOUND"
GATEWAY_STATUS_CANCELLED = "CANCELLED"
GATEWAY_STATUS_UNAVAILABLE = "UNAVAILABLE"
GATEWAY_STATUS_EXPIRED = "EXPIRED"
GATEWAY_STATUS_MISMATCH = "MISMATCH"


class ReconciliationError(Exception):
    """Base exception for verification errors."""

    pass


class OrderNotFoundError(ReconciliationError):
    """Raised when an order does not exist."""

    pass


class OrderAccessDeniedError(ReconciliationError):
    """Raised when a user asks to verify an order they do not own."""

    pass


class UnsupportedPaymentMethodError(ReconciliationError):
    """Raised when an order was not paid through the configured gateway."""

    pass


@dataclass(frozen=True)
class VerificationRequest:
    """Identifiers and outcome reported by the shopper's redirect."""

    external_payment_id: Optional[str] = None
    external_order_id: Optional[str] = None
    client_outcome: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return (self.client_outcome or "").strip().lower() in CANCELLED_OUTCOMES


@dataclass(frozen=True)
class VerificationResult:
    """Outcome returned to the caller: always ``paid`` or ``failed``."""

    payment_status: str
    gateway_status: str
    order: Optional[Order] = None
    message: Optional[str] = None

    @property
    def paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID.value


@dataclass
class _Target:
    """What the cascade reconciles: a checkout session or a pending order."""

    entry_point: str
    id: uuid.UUID
    total_cents: int
    checkout_link_id: Optional[str]
    external_order_id: Optional[str]
    external_payment_id: Optional[str]


@dataclass
class _Resolution:
    payment: Optional[GatewayPayment] = None
    strategy: Optional[str] = None
    # Best non-completed signal seen, used for the failure reason
    candidate: Optional[GatewayPayment] = None
    gateway_unavailable: bool = False
    rejected: bool = False


class ReconciliationEngine:
    """
    Verifies checkout payments against the gateway.

    Two thin entry points share one cascade:
    - ``verify_session``: checkout session path, materializes the order
    - ``verify_order``: settles the payment of an order created as pending
    """

    def __init__(
        self,
        gateway: PaymentGateway,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
        materializer: Optional[OrderMaterializer] = None,
        trust_policy: Optional[MatchingRedirectIdPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        link_policy: Optional[RetryPolicy] = None,
        lookup_policy: Optional[RetryPolicy] = None,
    ):
        """
        Initialize reconciliation engine.

        Args:
            gateway: Read-only payment gateway
            session_factory: Database session factory
            settings: Optional settings (defaults to cached settings)
            materializer: Optional order materializer
            trust_policy: Optional matching redirect id policy
            sleep: Sleep function used between gateway attempts
            clock: Monotonic time source for deadlines and durations
            link_policy: Optional checkout link polling bound
            lookup_policy: Optional transport retry bound for single lookups
        """
        self.settings = settings or get_settings()
        self.gateway = gateway
        self.session_factory = session_factory
        self.materializer = materializer or OrderMaterializer(session_factory)
        self.trust_policy = trust_policy or MatchingRedirectIdPolicy.from_settings(self.settings)
        self.clock = clock
        self.link_policy = link_policy or link_poll_policy(self.settings, sleep)
        self.lookup_policy = lookup_policy or lookup_retry_policy(self.settings, sleep)

        logger.info(
            "reconciliation_engine_initialized",
            provider=gateway.provider,
            trusted_redirect_enabled=self.trust_policy.enabled,
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def verify_session(
        self,
        session_id: uuid.UUID,
        user_id: str,
        request: Optional[VerificationRequest] = None,
    ) -> VerificationResult:
        """
        Verify the payment of a checkout session.

        A terminal session returns its stored outcome without touching the
        gateway. Otherwise the cascade runs and the session ends either
        ``completed`` with exactly one order or ``failed`` with a reason.

        Args:
            session_id: Checkout session ID
            user_id: Requesting user, must own the session
            request: Identifiers from the gateway redirect

        Returns:
            VerificationResult: ``paid`` with the order, or ``failed``

        Raises:
            CheckoutNotFoundError: If the session does not exist
            CheckoutAccessDeniedError: If the user does not own the session
        """
        request = request or VerificationRequest()
        started = self.clock()
        correlation_id = uuid.uuid4()
        log = logger.bind(
            session_id=str(session_id),
            correlation_id=str(correlation_id),
            entry_point="session",
        )

        async with self.session_factory() as db:
            session = await load_owned_session(db, session_id, user_id)

        if session.is_terminal:
            log.info("verification_replayed", status=session.status)
            result = await self._session_outcome(session)
            metrics.record_verification("session", "replay", self.clock() - started)
            return result

        log.info(
            "verification_started",
            external_payment_id=request.external_payment_id,
            external_order_id=request.external_order_id,
            client_outcome=request.client_outcome,
            checkout_link_id=session.checkout_link_id,
        )

        target = _Target(
            entry_point="session",
            id=session.id,
            total_cents=session.total_cents,
            checkout_link_id=session.checkout_link_id,
            external_order_id=session.external_order_id,
            external_payment_id=session.external_payment_id,
        )
        deadline = Deadline(self.settings.verification_deadline_seconds, clock=self.clock)
        resolution = await self._resolve(target, request, deadline, log)

        if (
            resolution.payment is None
            and resolution.candidate is None
            and not resolution.rejected
        ):
            self._apply_trust_policy(session, request, resolution, log)

        if resolution.payment is not None:
            order = await self.materializer.materialize(
                session_id,
                resolution.payment,
                external_order_id=request.external_order_id,
                correlation_id=correlation_id,
                strategy=resolution.strategy,
            )
            if order is None:
                log.info("verification_lost_materialization_race")
                result = await self._reload_session_outcome(session_id)
            else:
                result = VerificationResult(
                    payment_status=PaymentStatus.PAID.value,
                    gateway_status=resolution.payment.status,
                    order=order,
                )
        else:
            result = await self._fail_session(session, request, resolution, correlation_id, log)

        log.info(
            "verification_completed",
            payment_status=result.payment_status,
            gateway_status=result.gateway_status,
            strategy=resolution.strategy,
            order_id=str(result.order.id) if result.order else None,
        )
        metrics.record_verification("session", result.payment_status, self.clock() - started)
        return result

    async def verify_order(
        self,
        order_id: uuid.UUID,
        user_id: str,
        request: Optional[VerificationRequest] = None,
    ) -> VerificationResult:
        """
        Verify the gateway payment of an order created with a pending payment.

        Runs the same cascade as ``verify_session`` without the matching
        redirect id policy and settles the order's payment exactly once.

        Raises:
            OrderNotFoundError: If the order does not exist
            OrderAccessDeniedError: If the user does not own the order
            UnsupportedPaymentMethodError: If the order was not paid through
                the configured gateway
        """
        request = request or VerificationRequest()
        started = self.clock()
        correlation_id = uuid.uuid4()
        log = logger.bind(
            order_id=str(order_id),
            correlation_id=str(correlation_id),
            entry_point="order",
        )

        async with self.session_factory() as db:
            order = await db.get(Order, order_id)

        if order is None:
            raise OrderNotFoundError("Order not found")
        if order.user_id != user_id:
            log.warning("order_access_denied", user_id=user_id)
            raise OrderAccessDeniedError("Access denied for this order")
        if order.payment_provider != self.gateway.provider:
            raise UnsupportedPaymentMethodError(
                f"Order was not paid through {self.gateway.provider}"
            )

        if order.payment_status != PaymentStatus.PENDING.value:
            log.info("verification_replayed", payment_status=order.payment_status)
            metrics.record_verification("order", "replay", self.clock() - started)
            return self._order_outcome(order)

        log.info(
            "verification_started",
            external_payment_id=request.external_payment_id,
            external_order_id=request.external_order_id,
            checkout_link_id=order.payment_checkout_link_id,
        )

        target = _Target(
            entry_point="order",
            id=order.id,
            total_cents=order.total_cents,
            checkout_link_id=order.payment_checkout_link_id,
            external_order_id=order.payment_external_order_id,
            external_payment_id=order.payment_external_payment_id,
        )
        deadline = Deadline(self.settings.verification_deadline_seconds, clock=self.clock)
        resolution = await self._resolve(target, request, deadline, log)

        result = await self._settle_order(order, request, resolution, correlation_id, log)
        log.info(
            "verification_completed",
            payment_status=result.payment_status,
            gateway_status=result.gateway_status,
            strategy=resolution.strategy,
        )
        metrics.record_verification("order", result.payment_status, self.clock() - started)
        return result

    # ------------------------------------------------------------------
    # Cascade
    # ------------------------------------------------------------------

    async def _resolve(
        self,
        target: _Target,
        request: VerificationRequest,
        deadline: Deadline,
        log: Any,
    ) -> _Resolution:
        resolution = _Resolution()

        known_order_id = target.external_order_id
        if (
            request.external_order_id
            and known_order_id
            and request.external_order_id != known_order_id
        ):
            log.warning(
                "caller_external_order_id_ignored",
                caller_order_id=request.external_order_id,
                known_order_id=known_order_id,
            )
        search_order_id = known_order_id or request.external_order_id
        payment_id = request.external_payment_id or target.external_payment_id

        # 1. Direct lookup
        if payment_id:
            payment = await self._attempt(
                STRATEGY_DIRECT_LOOKUP,
                lambda: call_with_retry(
                    "retrieve_payment",
                    lambda: self.gateway.retrieve_payment(payment_id),
                    self.lookup_policy,
                    deadline,
                ),
                deadline,
                resolution,
                log,
            )
            if self._consider(STRATEGY_DIRECT_LOOKUP, payment, target, resolution, log):
                return resolution

        # 2. Checkout link
        if target.checkout_link_id:
            link_id = target.checkout_link_id
            link: Optional[CheckoutLinkStatus] = await self._attempt(
                STRATEGY_CHECKOUT_LINK,
                lambda: poll_until(
                    "retrieve_checkout_link",
                    lambda: self.gateway.retrieve_checkout_link_status(link_id),
                    lambda status: status.settled,
                    self.link_policy,
                    deadline,
                ),
                deadline,
                resolution,
                log,
            )
            if link is None:
                metrics.record_strategy_outcome(STRATEGY_CHECKOUT_LINK, "absent")
            else:
                log.info(
                    "checkout_link_status",
                    checkout_link_id=link.id,
                    link_status=link.status,
                    link_completed=link.completed,
                    embedded_payments=len(link.payments),
                )
                embedded = link.completed_payment()
                if self._consider(STRATEGY_CHECKOUT_LINK, embedded, target, resolution, log):
                    return resolution

                if link.completed:
                    if embedded is None:
                        self._consider(
                            STRATEGY_CHECKOUT_LINK,
                            pick_payment(list(link.payments)),
                            target,
                            resolution,
                            log,
                        )
                    link_order_id = link.order_id or search_order_id
                    if link_order_id:
                        payments = await self._search(link_order_id, deadline, resolution, log)
                        found = pick_payment(payments)
                        if self._consider(STRATEGY_CHECKOUT_LINK, found, target, resolution, log):
                            return resolution

                    # A payment reported as not completed outranks the marker
                    if resolution.rejected or resolution.candidate is not None:
                        log.warning(
                            "checkout_link_marker_withheld",
                            checkout_link_id=link.id,
                            rejected=resolution.rejected,
                            candidate_payment_id=(
                                resolution.candidate.id if resolution.candidate else None
                            ),
                        )
                        return resolution

                    marker = GatewayPayment(
                        id=payment_id or f"{link.id}_link",
                        status=link.status,
                        completed=True,
                        order_id=link_order_id,
                        synthesized=True,
                    )
                    log.warning(
                        "checkout_link_completed_without_payment",
                        checkout_link_id=link.id,
                        marker_payment_id=marker.id,
                    )
                    if self._consider(STRATEGY_CHECKOUT_LINK, marker, target, resolution, log):
                        return resolution

        # 3. Order search
        if search_order_id:
            payments = await self._search(search_order_id, deadline, resolution, log)
            found = pick_payment(payments)
            if self._consider(STRATEGY_ORDER_SEARCH, found, target, resolution, log):
                return resolution

        return resolution

    async def _search(
        self,
        order_id: str,
        deadline: Deadline,
        resolution: _Resolution,
        log: Any,
    ) -> List[GatewayPayment]:
        payments = await self._attempt(
            STRATEGY_ORDER_SEARCH,
            lambda: call_with_retry(
                "search_payments",
                lambda: self.gateway.search_payments_by_external_order(order_id),
                self.lookup_policy,
                deadline,
            ),
            deadline,
            resolution,
            log,
        )
        return payments or []

    async def _attempt(
        self,
        strategy: str,
        func: Callable[[], Awaitable[Any]],
        deadline: Deadline,
        resolution: _Resolution,
        log: Any,
    ) -> Any:
        """Run one gateway step; outages and rejections only skip the step."""
        if deadline.expired:
            metrics.record_strategy_outcome(strategy, "skipped")
            log.warning("strategy_skipped_deadline_exceeded", strategy=strategy)
            return None
        try:
            return await func()
        except GatewayUnavailableError as e:
            resolution.gateway_unavailable = True
            metrics.record_strategy_outcome(strategy, "unavailable")
            log.warning("strategy_gateway_unavailable", strategy=strategy, error=str(e))
        except GatewayError as e:
            metrics.record_strategy_outcome(strategy, "error")
            log.warning("strategy_gateway_error", strategy=strategy, error=str(e))
        return None

    def _consider(
        self,
        strategy: str,
        payment: Optional[GatewayPayment],
        target: _Target,
        resolution: _Resolution,
        log: Any,
    ) -> bool:
        """Record what a step found; True once a usable completed payment is in hand."""
        if payment is None:
            return False

        rejection = self._rejection(target, payment)
        if rejection is not None:
            resolution.rejected = True
            metrics.record_strategy_outcome(strategy, "rejected")
            log.warning(
                "payment_rejected",
                strategy=strategy,
                payment_id=payment.id,
                reason=rejection,
                payment_order_id=payment.order_id,
                payment_amount_cents=payment.amount_cents,
            )
            return False

        if payment.completed:
            resolution.payment = payment
            resolution.strategy = strategy
            metrics.record_strategy_outcome(strategy, "completed")
            log.info(
                "payment_resolved",
                strategy=strategy,
                payment_id=payment.id,
                gateway_status=payment.status,
                synthesized=payment.synthesized,
            )
            return True

        if resolution.candidate is None:
            resolution.candidate = payment
        metrics.record_strategy_outcome(strategy, "not_completed")
        log.info(
            "payment_not_completed",
            strategy=strategy,
            payment_id=payment.id,
            gateway_status=payment.status,
        )
        return False

    @staticmethod
    def _rejection(target: _Target, payment: GatewayPayment) -> Optional[str]:
        if (
            payment.order_id
            and target.external_order_id
            and payment.order_id != target.external_order_id
        ):
            return "order_id_mismatch"
        if payment.amount_cents is not None and payment.amount_cents != target.total_cents:
            return "amount_mismatch"
        return None

    def _apply_trust_policy(
        self,
        session: CheckoutSession,
        request: VerificationRequest,
        resolution: _Resolution,
        log: Any,
    ) -> None:
        decision = self.trust_policy.evaluate(
            session, request.external_payment_id, request.external_order_id
        )
        if not decision.trusted:
            metrics.record_strategy_outcome(STRATEGY_TRUSTED_REDIRECT, "skipped")
            log.info("trusted_redirect_not_applied", reason=decision.reason)
            return

        resolution.payment = self.trust_policy.marker(request.external_payment_id)
        resolution.strategy = STRATEGY_TRUSTED_REDIRECT
        metrics.record_trusted_redirect()
        metrics.record_strategy_outcome(STRATEGY_TRUSTED_REDIRECT, "completed")
        log.warning(
            "trusted_redirect_applied",
            external_payment_id=request.external_payment_id,
            reason=decision.reason,
        )

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    @staticmethod
    def _failure(
        request: VerificationRequest, resolution: _Resolution
    ) -> tuple[str, str, str]:
        """Payment status, gateway status and reason for an unpaid outcome."""
        candidate = resolution.candidate
        if candidate is not None:
            reason = candidate.failure_detail or f"Payment {candidate.id} is {candidate.status}"
            return PaymentStatus.FAILED.value, candidate.status, reason
        if resolution.rejected:
            return (
                PaymentStatus.FAILED.value,
                GATEWAY_STATUS_MISMATCH,
                "Payment reported by the gateway does not match this checkout",
            )
        if request.cancelled:
            return (
                PaymentStatus.CANCELLED.value,
                GATEWAY_STATUS_CANCELLED,
                "Customer cancelled checkout",
            )
        if resolution.gateway_unavailable:
            return (
                PaymentStatus.FAILED.value,
                GATEWAY_STATUS_UNAVAILABLE,
                "Payment could not be confirmed because the gateway was unavailable",
            )
        reason = "No payment found for this checkout"
        if request.external_payment_id:
            reason = f"{reason} (payment {request.external_payment_id})"
        return PaymentStatus.FAILED.value, GATEWAY_STATUS_NOT_FOUND, reason

    async def _fail_session(
        self,
        session: CheckoutSession,
        request: VerificationRequest,
        resolution: _Resolution,
        correlation_id: uuid.UUID,
        log: Any,
    ) -> VerificationResult:
        payment_status, gateway_status, reason = self._failure(request, resolution)
        payment_id = resolution.candidate.id if resolution.candidate else None

        async with self.session_factory() as db:
            async with db.begin():
                result = await db.execute(
                    update(CheckoutSession)
                    .where(
                        CheckoutSession.id == session.id,
                        CheckoutSession.status == SessionStatus.PENDING.value,
                    )
                    .values(
                        status=SessionStatus.FAILED.value,
                        payment_status=payment_status,
                        failure_reason=reason,
                        gateway_status=gateway_status,
                        external_payment_id=func.coalesce(
                            CheckoutSession.external_payment_id, payment_id
                        ),
                        external_order_id=func.coalesce(
                            CheckoutSession.external_order_id, request.external_order_id
                        ),
                        updated_at=utcnow(),
                    )
                    .execution_options(synchronize_session=False)
                )
                won = result.rowcount == 1
                if won:
                    db.add(
                        CheckoutEvent(
                            checkout_session_id=session.id,
                            event_type="checkout.session_failed",
                            event_data={
                                "payment_status": payment_status,
                                "gateway_status": gateway_status,
                                "reason": reason,
                                "client_outcome": request.client_outcome,
                                "gateway_unavailable": resolution.gateway_unavailable,
                            },
                            correlation_id=correlation_id,
                            created_at=utcnow(),
                        )
                    )

        if not won:
            log.info("session_left_pending_concurrently")
            return await self._reload_session_outcome(session.id)

        log.info(
            "checkout_session_failed",
            payment_status=payment_status,
            gateway_status=gateway_status,
            reason=reason,
        )
        return VerificationResult(
            payment_status=PaymentStatus.FAILED.value,
            gateway_status=gateway_status,
            message=reason,
        )

    async def _settle_order(
        self,
        order: Order,
        request: VerificationRequest,
        resolution: _Resolution,
        correlation_id: uuid.UUID,
        log: Any,
    ) -> VerificationResult:
        payment = resolution.payment
        if payment is not None:
            values = dict(
                payment_status=PaymentStatus.PAID.value,
                payment_external_payment_id=payment.id,
                payment_gateway_status=payment.status,
                payment_failure_reason=None,
                fulfillment_status=FulfillmentStatus.PROCESSING.value,
            )
            event_type = "order.payment_paid"
        else:
            _, gateway_status, reason = self._failure(request, resolution)
            values = dict(
                payment_status=PaymentStatus.FAILED.value,
                payment_gateway_status=gateway_status,
                payment_failure_reason=reason,
            )
            event_type = "order.payment_failed"

        async with self.session_factory() as db:
            async with db.begin():
                result = await db.execute(
                    update(Order)
                    .where(
                        Order.id == order.id,
                        Order.payment_status == PaymentStatus.PENDING.value,
                    )
                    .values(
                        **values,
                        payment_external_order_id=func.coalesce(
                            Order.payment_external_order_id,
                            request.external_order_id or (payment.order_id if payment else None),
                        ),
                        updated_at=utcnow(),
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    db.add(
                        CheckoutEvent(
                            checkout_session_id=order.checkout_session_id,
                            order_id=order.id,
                            event_type=event_type,
                            event_data={
                                "strategy": resolution.strategy,
                                "gateway_status": values["payment_gateway_status"],
                                "reason": values.get("payment_failure_reason"),
                            },
                            correlation_id=correlation_id,
                            created_at=utcnow(),
                        )
                    )
                else:
                    log.info("order_payment_settled_concurrently")

            settled = await db.get(Order, order.id, populate_existing=True)

        log.info(
            "order_payment_settled",
            payment_status=settled.payment_status,
            gateway_status=settled.payment_gateway_status,
        )
        return self._order_outcome(settled)

    async def _reload_session_outcome(self, session_id: uuid.UUID) -> VerificationResult:
        async with self.session_factory() as db:
            session = await db.get(CheckoutSession, session_id, populate_existing=True)
        return await self._session_outcome(session)

    async def _session_outcome(self, session: CheckoutSession) -> VerificationResult:
        """Stored outcome of a terminal session."""
        if session.status == SessionStatus.COMPLETED.value:
            async with self.session_factory() as db:
                order = await db.get(Order, session.order_id)
            return VerificationResult(
                payment_status=PaymentStatus.PAID.value,
                gateway_status=session.gateway_status or "COMPLETED",
                order=order,
            )
        if session.status == SessionStatus.EXPIRED.value:
            return VerificationResult(
                payment_status=PaymentStatus.FAILED.value,
                gateway_status=session.gateway_status or GATEWAY_STATUS_EXPIRED,
                message=session.failure_reason or "Checkout session expired",
            )
        return VerificationResult(
            payment_status=PaymentStatus.FAILED.value,
            gateway_status=session.gateway_status or GATEWAY_STATUS_NOT_FOUND,
            message=session.failure_reason,
        )

    @staticmethod
    def _order_outcome(order: Order) -> VerificationResult:
        if order.payment_status == PaymentStatus.PAID.value:
            return VerificationResult(
                payment_status=PaymentStatus.PAID.value,
                gateway_status=order.payment_gateway_status or "COMPLETED",
                order=order,
            )
        return VerificationResult(
            payment_status=PaymentStatus.FAILED.value,
            gateway_status=order.payment_gateway_status or GATEWAY_STATUS_NOT_FOUND,
            order=order,
            message=order.payment_failure_reason,
        )
