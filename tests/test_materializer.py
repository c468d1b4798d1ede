"""
Tests for order materialization.
"""
import pytest
from sqlalchemy import select

from checkout_reconciliation.core.materializer import OrderMaterializer
from checkout_reconciliation.database.models import (
    Cart,
    CheckoutEvent,
    CheckoutSession,
    Coupon,
    FulfillmentStatus,
    Order,
    SessionStatus,
)

from .conftest import SAMPLE_ITEMS, USER_ID, completed_payment


class TestOrderMaterializer:
    """Test suite for OrderMaterializer."""

    @pytest.mark.asyncio
    async def test_materialize_copies_snapshot(self, session_factory, seed):
        coupon = await seed.coupon(code="TEN", discount_type="percentage", discount_value=10)
        await seed.cart()
        session = await seed.session(
            discount_cents=300,
            shipping_cost_cents=450,
            coupon=coupon,
            checkout_link_id="cs_test_copy",
            checkout_url="https://checkout.stripe.com/c/pay/cs_test_copy",
        )

        order = await OrderMaterializer(session_factory).materialize(
            session.id, completed_payment("pi_copy"), strategy="direct_lookup"
        )

        assert order is not None
        assert order.user_id == USER_ID
        assert order.checkout_session_id == session.id
        assert order.items == SAMPLE_ITEMS
        assert order.subtotal_cents == 3000
        assert order.shipping_cost_cents == 450
        assert order.total_cents == 3150
        assert order.coupon_code == "TEN"
        assert order.coupon_discount_cents == 300
        assert order.payment_checkout_link_id == "cs_test_copy"
        assert order.payment_external_payment_id == "pi_copy"
        assert order.fulfillment_status == FulfillmentStatus.PROCESSING.value

        stored = await seed.get(CheckoutSession, session.id)
        assert stored.status == SessionStatus.COMPLETED.value
        assert stored.order_id == order.id
        assert stored.external_payment_id == "pi_copy"
        assert stored.gateway_status == "succeeded"
        assert (await seed.get(Coupon, coupon.id)).used_count == 1
        assert (await seed.get(Cart, USER_ID)).items == []

        async with session_factory() as db:
            events = (
                await db.execute(
                    select(CheckoutEvent).where(CheckoutEvent.order_id == order.id)
                )
            ).scalars().all()
        assert [e.event_type for e in events] == ["order.materialized"]
        assert events[0].event_data["strategy"] == "direct_lookup"
        assert events[0].event_data["synthesized_payment"] is False

    @pytest.mark.asyncio
    async def test_second_materialize_is_a_no_op(self, session_factory, seed):
        coupon = await seed.coupon()
        await seed.cart()
        session = await seed.session(discount_cents=500, coupon=coupon)
        materializer = OrderMaterializer(session_factory)

        first = await materializer.materialize(session.id, completed_payment("pi_once"))
        await seed.refill_cart(SAMPLE_ITEMS[:1])
        second = await materializer.materialize(session.id, completed_payment("pi_twice"))

        assert first is not None
        assert second is None
        assert await seed.count(Order) == 1
        assert (await seed.get(Coupon, coupon.id)).used_count == 1
        # A cart refilled after the first materialization is left alone
        assert (await seed.get(Cart, USER_ID)).items == SAMPLE_ITEMS[:1]
        assert (await seed.get(CheckoutSession, session.id)).external_payment_id == "pi_once"

    @pytest.mark.asyncio
    async def test_failed_session_is_not_materialized(self, session_factory, seed):
        session = await seed.session(status=SessionStatus.FAILED.value)

        order = await OrderMaterializer(session_factory).materialize(
            session.id, completed_payment()
        )

        assert order is None
        assert await seed.count(Order) == 0

    @pytest.mark.asyncio
    async def test_external_order_id_fills_only_when_missing(self, session_factory, seed):
        known = await seed.session(external_order_id="order_known")
        unknown = await seed.session()
        materializer = OrderMaterializer(session_factory)

        await materializer.materialize(
            known.id, completed_payment("pi_k"), external_order_id="order_caller"
        )
        await materializer.materialize(
            unknown.id, completed_payment("pi_u", order_id="order_gateway")
        )

        assert (await seed.get(CheckoutSession, known.id)).external_order_id == "order_known"
        assert (await seed.get(CheckoutSession, unknown.id)).external_order_id == "order_gateway"

    @pytest.mark.asyncio
    async def test_missing_cart_is_tolerated(self, session_factory, seed):
        session = await seed.session()

        order = await OrderMaterializer(session_factory).materialize(
            session.id, completed_payment()
        )

        assert order is not None
        assert await seed.count(Cart) == 0
