"""
Race condition tests for concurrent verification requests.

Tests that one checkout session yields at most one order however many
verifications run at once.
"""
import asyncio

import pytest
import structlog

from checkout_reconciliation.core.materializer import OrderMaterializer
from checkout_reconciliation.core.reconciliation import VerificationRequest, _Resolution
from checkout_reconciliation.database.models import (
    CheckoutSession,
    Coupon,
    Order,
    SessionStatus,
)

from .conftest import USER_ID, completed_payment


class TestRaceConditions:
    """Test suite for race condition scenarios."""

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_verifications_create_one_order(
        self, engine, fake_gateway, seed
    ) -> None:
        """
        Ten concurrent verifications of the same paid session.

        All must report paid with the same order, and only one order may exist.
        """
        coupon = await seed.coupon()
        await seed.cart()
        session = await seed.session(discount_cents=500, coupon=coupon)
        fake_gateway.payments["pi_race"] = completed_payment("pi_race")
        request = VerificationRequest(external_payment_id="pi_race")

        results = await asyncio.gather(
            *[engine.verify_session(session.id, USER_ID, request) for _ in range(10)]
        )

        assert all(r.payment_status == "paid" for r in results)
        order_ids = {r.order.id for r in results}
        assert len(order_ids) == 1, "Multiple orders created for one checkout session"
        assert await seed.count(Order) == 1
        assert (await seed.get(Coupon, coupon.id)).used_count == 1

        stored = await seed.get(CheckoutSession, session.id)
        assert stored.order_id in order_ids

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_materializations_single_winner(
        self, session_factory, seed
    ) -> None:
        """Only one of several direct materializations wins the session row."""
        session = await seed.session()
        materializer = OrderMaterializer(session_factory)

        results = await asyncio.gather(
            *[
                materializer.materialize(session.id, completed_payment(f"pi_{i}"))
                for i in range(5)
            ]
        )

        winners = [order for order in results if order is not None]
        assert len(winners) == 1
        assert await seed.count(Order) == 1
        stored = await seed.get(CheckoutSession, session.id)
        assert stored.status == SessionStatus.COMPLETED.value
        assert stored.order_id == winners[0].id
        assert stored.external_payment_id == winners[0].payment_external_payment_id

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_late_failure_does_not_override_completion(
        self, engine, fake_gateway, seed
    ) -> None:
        """A verification that found nothing replays a concurrent completion."""
        session = await seed.session()
        await OrderMaterializer(engine.session_factory).materialize(
            session.id, completed_payment("pi_first")
        )

        # Stale copy read before the session completed
        resolution_session = await seed.get(CheckoutSession, session.id)
        resolution_session.status = SessionStatus.PENDING.value
        result = await engine._fail_session(
            resolution_session,
            VerificationRequest(),
            _Resolution(),
            correlation_id=resolution_session.id,
            log=structlog.get_logger("tests"),
        )

        assert result.payment_status == "paid"
        assert result.order.payment_external_payment_id == "pi_first"
        stored = await seed.get(CheckoutSession, session.id)
        assert stored.status == SessionStatus.COMPLETED.value

