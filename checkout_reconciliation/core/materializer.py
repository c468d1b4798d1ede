"""
Order materialization.

Turns a confirmed-paid checkout session into exactly one order. The guard
is a single conditional update on the session row:

    UPDATE checkout_sessions SET status = 'completed', order_id = :new_id, ...
    WHERE id = :session_id AND status = 'pending'

Only the caller whose update matches the row goes on to insert the order,
count the coupon use and clear the cart, all in the same transaction. Every
other caller gets ``None`` and replays the session's stored outcome.
"""
import uuid
from typing import Optional

import structlog
from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from checkout_reconciliation.database.models import (
    Cart,
    CheckoutEvent,
    CheckoutSession,
    Coupon,
    FulfillmentStatus,
    Order,
    PaymentStatus,
    SessionStatus,
    utcnow,
)
from checkout_reconciliation.integrations.gateway import GatewayPayment
from checkout_reconciliation.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class OrderMaterializer:
    """Creates the order for a paid checkout session, at most once."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def materialize(
        self,
        session_id: uuid.UUID,
        payment: GatewayPayment,
        external_order_id: Optional[str] = None,
        correlation_id: Optional[uuid.UUID] = None,
        strategy: Optional[str] = None,
    ) -> Optional[Order]:
        """
        Complete a pending session and create its order.

        Args:
            session_id: Checkout session to complete
            payment: Completed payment that settles the session
            external_order_id: Gateway order id, kept when the session has none
            correlation_id: Correlation ID for the audit trail
            strategy: Reconciliation strategy that found the payment

        Returns:
            Optional[Order]: The new order, or None if the session was no
                longer pending
        """
        correlation_id = correlation_id or uuid.uuid4()
        order_id = uuid.uuid4()
        now = utcnow()

        async with self.session_factory() as db:
            async with db.begin():
                # Must be the first statement of the transaction
                result = await db.execute(
                    update(CheckoutSession)
                    .where(
                        CheckoutSession.id == session_id,
                        CheckoutSession.status == SessionStatus.PENDING.value,
                    )
                    .values(
                        status=SessionStatus.COMPLETED.value,
                        payment_status=PaymentStatus.PAID.value,
                        order_id=order_id,
                        external_payment_id=payment.id,
                        external_order_id=func.coalesce(
                            CheckoutSession.external_order_id,
                            external_order_id or payment.order_id,
                        ),
                        gateway_status=payment.status,
                        failure_reason=None,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    metrics.record_materialization_race_lost()
                    logger.info(
                        "materialization_skipped_session_not_pending",
                        session_id=str(session_id),
                        correlation_id=str(correlation_id),
                    )
                    return None

                session = await db.get(CheckoutSession, session_id, populate_existing=True)

                order = Order(
                    id=order_id,
                    user_id=session.user_id,
                    checkout_session_id=session.id,
                    items=list(session.items or []),
                    subtotal_cents=session.subtotal_cents,
                    shipping_cost_cents=session.shipping_cost_cents,
                    total_cents=session.total_cents,
                    currency=session.currency,
                    payment_method=session.payment_provider,
                    payment_provider=session.payment_provider,
                    payment_status=PaymentStatus.PAID.value,
                    payment_checkout_link_id=session.checkout_link_id,
                    payment_external_order_id=session.external_order_id,
                    payment_external_payment_id=payment.id,
                    payment_checkout_url=session.checkout_url,
                    payment_gateway_status=payment.status,
                    shipping_address=session.shipping_address,
                    shipping_service_name=session.shipping_service_name,
                    fulfillment_status=FulfillmentStatus.PROCESSING.value,
                    coupon_code=session.coupon_code,
                    coupon_discount_cents=session.coupon_discount_cents or 0,
                    created_at=now,
                    updated_at=now,
                )
                db.add(order)

                if session.coupon_id is not None:
                    await db.execute(
                        update(Coupon)
                        .where(Coupon.id == session.coupon_id)
                        .values(used_count=Coupon.used_count + 1)
                        .execution_options(synchronize_session=False)
                    )

                await db.execute(
                    update(Cart)
                    .where(Cart.user_id == session.user_id)
                    .values(items=[], updated_at=now)
                    .execution_options(synchronize_session=False)
                )

                db.add(
                    CheckoutEvent(
                        checkout_session_id=session.id,
                        order_id=order_id,
                        event_type="order.materialized",
                        event_data={
                            "payment_id": payment.id,
                            "gateway_status": payment.status,
                            "synthesized_payment": payment.synthesized,
                            "strategy": strategy,
                            "total_cents": session.total_cents,
                            "coupon_code": session.coupon_code,
                        },
                        correlation_id=correlation_id,
                        created_at=now,
                    )
                )

        metrics.record_order_materialized()
        logger.info(
            "order_materialized",
            session_id=str(session_id),
            order_id=str(order_id),
            payment_id=payment.id,
            strategy=strategy,
            correlation_id=str(correlation_id),
        )
        return order
