"""
Tests for the Stripe gateway adapter.
"""
import threading

import pytest
import stripe

from checkout_reconciliation.integrations.gateway import GatewayError, GatewayUnavailableError
from checkout_reconciliation.integrations.stripe_client import (
    CircuitBreaker,
    StripeErrorType,
    StripeGateway,
    _search_query,
)

from .conftest import FakeClock


@pytest.fixture
def gateway(test_settings):
    return StripeGateway(test_settings)


def payment_intent(**overrides):
    intent = {
        "id": "pi_3OaBcDeFgHiJkLmN0",
        "status": "succeeded",
        "amount": 2500,
        "metadata": {"order_id": "order_a"},
        "last_payment_error": None,
    }
    intent.update(overrides)
    return intent


class TestMapping:
    """Stripe objects are normalized for reconciliation."""

    @pytest.mark.asyncio
    async def test_retrieve_succeeded_payment(self, gateway, mocker):
        retrieve = mocker.patch("stripe.PaymentIntent.retrieve", return_value=payment_intent())

        payment = await gateway.retrieve_payment("pi_3OaBcDeFgHiJkLmN0")

        retrieve.assert_called_once_with("pi_3OaBcDeFgHiJkLmN0")
        assert payment.completed
        assert payment.status == "succeeded"
        assert payment.order_id == "order_a"
        assert payment.amount_cents == 2500
        assert not payment.synthesized

    @pytest.mark.asyncio
    async def test_declined_payment_carries_failure_detail(self, gateway, mocker):
        mocker.patch(
            "stripe.PaymentIntent.retrieve",
            return_value=payment_intent(
                status="requires_payment_method",
                last_payment_error={
                    "message": "Your card was declined.",
                    "decline_code": "generic_decline",
                },
            ),
        )

        payment = await gateway.retrieve_payment("pi_declined")

        assert not payment.completed
        assert payment.failure_detail == "Your card was declined."

    @pytest.mark.asyncio
    async def test_paid_checkout_session_with_expanded_intent(self, gateway, mocker):
        retrieve = mocker.patch(
            "stripe.checkout.Session.retrieve",
            return_value={
                "id": "cs_test_a1",
                "status": "complete",
                "payment_status": "paid",
                "client_reference_id": "order_a",
                "metadata": {},
                "payment_intent": payment_intent(),
            },
        )

        link = await gateway.retrieve_checkout_link_status("cs_test_a1")

        retrieve.assert_called_once_with("cs_test_a1", expand=["payment_intent"])
        assert link.completed
        assert link.settled
        assert link.order_id == "order_a"
        assert link.completed_payment().id == "pi_3OaBcDeFgHiJkLmN0"

    @pytest.mark.asyncio
    async def test_complete_but_unpaid_session_is_not_completed(self, gateway, mocker):
        mocker.patch(
            "stripe.checkout.Session.retrieve",
            return_value={
                "id": "cs_test_a2",
                "status": "complete",
                "payment_status": "unpaid",
                "metadata": {"order_id": "order_b"},
                "payment_intent": "pi_unexpanded",
            },
        )

        link = await gateway.retrieve_checkout_link_status("cs_test_a2")

        assert not link.completed
        assert link.payments == ()
        assert link.order_id == "order_b"

    @pytest.mark.asyncio
    async def test_search_by_order_metadata(self, gateway, mocker):
        search = mocker.patch(
            "stripe.PaymentIntent.search",
            return_value={"data": [payment_intent(status="processing"), payment_intent()]},
        )

        payments = await gateway.search_payments_by_external_order("order_a")

        search.assert_called_once_with(query="metadata['order_id']:'order_a'", limit=10)
        assert [p.status for p in payments] == ["processing", "succeeded"]

    @pytest.mark.unit
    def test_search_query_escapes_quotes(self):
        assert _search_query("o'neil") == "metadata['order_id']:'o\\'neil'"


class TestErrorHandling:
    """Missing objects, outages and rejections stay distinct."""

    @pytest.mark.asyncio
    async def test_missing_payment_is_none(self, gateway, mocker):
        mocker.patch(
            "stripe.PaymentIntent.retrieve",
            side_effect=stripe.InvalidRequestError(
                "No such payment_intent", "intent", code="resource_missing"
            ),
        )

        assert await gateway.retrieve_payment("pi_missing") is None
        assert gateway.circuit_breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_missing_search_is_empty(self, gateway, mocker):
        mocker.patch("stripe.PaymentIntent.search", return_value={"data": []})

        assert await gateway.search_payments_by_external_order("order_none") == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            stripe.RateLimitError("Too many requests"),
            stripe.APIConnectionError("Connection reset"),
        ],
    )
    async def test_transport_errors_are_unavailable(self, gateway, mocker, error):
        mocker.patch("stripe.PaymentIntent.retrieve", side_effect=error)

        with pytest.raises(GatewayUnavailableError):
            await gateway.retrieve_payment("pi_x")

    @pytest.mark.asyncio
    async def test_permanent_errors_are_gateway_errors(self, gateway, mocker):
        mocker.patch(
            "stripe.PaymentIntent.retrieve",
            side_effect=stripe.AuthenticationError("Invalid API Key provided"),
        )

        with pytest.raises(GatewayError) as exc_info:
            await gateway.retrieve_payment("pi_x")

        assert not isinstance(exc_info.value, GatewayUnavailableError)
        assert isinstance(exc_info.value.original_error, stripe.AuthenticationError)

    @pytest.mark.unit
    def test_classify_error(self):
        classify = StripeGateway._classify_error
        assert classify(stripe.RateLimitError("slow down")) == StripeErrorType.RATE_LIMIT
        assert classify(stripe.APIError("boom")) == StripeErrorType.TRANSIENT
        assert classify(stripe.InvalidRequestError("bad", "id")) == StripeErrorType.PERMANENT


class TestCircuitBreaker:
    """Test suite for CircuitBreaker."""

    @pytest.mark.unit
    def test_opens_after_threshold_and_recovers(self):
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=2, timeout=30, success_threshold=1, clock=clock)

        def boom():
            raise stripe.APIConnectionError("down")

        for _ in range(2):
            with pytest.raises(stripe.APIConnectionError):
                breaker.call(boom)
        assert breaker.state == "open"

        with pytest.raises(GatewayUnavailableError):
            breaker.call(lambda: "never called")

        clock.now += 31
        assert breaker.call(lambda: "ok") == "ok"
        assert breaker.state == "closed"

    @pytest.mark.unit
    def test_failures_from_worker_threads_are_all_counted(self):
        breaker = CircuitBreaker(failure_threshold=10_000)
        barrier = threading.Barrier(8)

        def fail_many():
            barrier.wait()
            for _ in range(500):
                breaker.on_failure()

        threads = [threading.Thread(target=fail_many) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert breaker.failure_count == 4000
        assert breaker.state == "closed"

    @pytest.mark.unit
    def test_missing_objects_do_not_count_as_failures(self):
        breaker = CircuitBreaker(failure_threshold=1)

        def missing():
            raise stripe.InvalidRequestError("No such object", "id", code="resource_missing")

        with pytest.raises(stripe.InvalidRequestError):
            breaker.call(missing)
        assert breaker.state == "closed"

    @pytest.mark.asyncio
    async def test_open_circuit_surfaces_as_unavailable(self, test_settings, mocker):
        breaker = CircuitBreaker(failure_threshold=1)
        breaker.state = "open"
        breaker.last_failure_time = breaker.clock()
        gateway = StripeGateway(test_settings, circuit_breaker=breaker)
        retrieve = mocker.patch("stripe.PaymentIntent.retrieve")

        with pytest.raises(GatewayUnavailableError):
            await gateway.retrieve_payment("pi_x")

        retrieve.assert_not_called()
