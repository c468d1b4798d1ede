"""
Tests for bounded retries and polling.
"""
import pytest

from checkout_reconciliation.core.retry import Deadline, RetryPolicy, call_with_retry, poll_until
from checkout_reconciliation.integrations.gateway import GatewayError, GatewayUnavailableError

from .conftest import FakeClock


class Script:
    """Callable returning (or raising) the scripted values in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def clock():
    return FakeClock()


def policy(clock, attempts=3, delay=1.0):
    return RetryPolicy(max_attempts=attempts, delay_seconds=delay, sleep=clock.sleep)


class TestDeadline:
    @pytest.mark.unit
    def test_remaining_counts_down_to_zero(self, clock):
        deadline = Deadline(5.0, clock=clock)
        clock.now += 3.0
        assert deadline.remaining() == 2.0
        assert not deadline.expired
        clock.now += 10.0
        assert deadline.remaining() == 0.0
        assert deadline.expired


class TestCallWithRetry:
    @pytest.mark.asyncio
    async def test_retries_transport_errors(self, clock):
        func = Script(GatewayUnavailableError("down"), "ok")

        result = await call_with_retry("lookup", func, policy(clock), Deadline(60, clock))

        assert result == "ok"
        assert func.calls == 2
        assert clock.sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_raises_after_last_attempt(self, clock):
        func = Script(GatewayUnavailableError("down"))

        with pytest.raises(GatewayUnavailableError):
            await call_with_retry("lookup", func, policy(clock), Deadline(60, clock))

        assert func.calls == 3

    @pytest.mark.asyncio
    async def test_permanent_errors_are_not_retried(self, clock):
        func = Script(GatewayError("bad request"))

        with pytest.raises(GatewayError):
            await call_with_retry("lookup", func, policy(clock), Deadline(60, clock))

        assert func.calls == 1
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_plain_callable_returning_awaitable_is_awaited(self, clock):
        func = Script(GatewayUnavailableError("down"), {"id": "pi_1"})

        result = await call_with_retry(
            "lookup", lambda: func(), policy(clock), Deadline(60, clock)
        )

        assert result == {"id": "pi_1"}
        assert func.calls == 2

    @pytest.mark.asyncio
    async def test_deadline_stops_retries(self, clock):
        func = Script(GatewayUnavailableError("down"))

        with pytest.raises(GatewayUnavailableError):
            await call_with_retry("lookup", func, policy(clock, attempts=10), Deadline(1.5, clock))

        assert func.calls == 2


class TestPollUntil:
    @pytest.mark.asyncio
    async def test_stops_when_settled(self, clock):
        func = Script("open", "open", "complete")

        result = await poll_until(
            "link",
            func,
            lambda status: status == "complete",
            policy(clock, attempts=5),
            Deadline(60, clock),
        )

        assert result == "complete"
        assert func.calls == 3
        assert clock.sleeps == [1.0, 1.0]

    @pytest.mark.asyncio
    async def test_returns_last_result_when_exhausted(self, clock):
        func = Script("open")

        result = await poll_until(
            "link", func, lambda status: status == "complete", policy(clock), Deadline(60, clock)
        )

        assert result == "open"
        assert func.calls == 3

    @pytest.mark.asyncio
    async def test_plain_callable_returning_awaitable_is_polled(self, clock):
        func = Script("open", "complete")

        result = await poll_until(
            "link",
            lambda: func(),
            lambda status: status == "complete",
            policy(clock),
            Deadline(60, clock),
        )

        assert result == "complete"
        assert func.calls == 2

    @pytest.mark.asyncio
    async def test_absent_object_stops_polling(self, clock):
        func = Script(None)

        result = await poll_until("link", func, bool, policy(clock), Deadline(60, clock))

        assert result is None
        assert func.calls == 1

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried_then_raised(self, clock):
        recovering = Script(GatewayUnavailableError("down"), "complete")
        result = await poll_until(
            "link", recovering, lambda s: s == "complete", policy(clock), Deadline(60, clock)
        )
        assert result == "complete"

        failing = Script(GatewayUnavailableError("down"))
        with pytest.raises(GatewayUnavailableError):
            await poll_until(
                "link", failing, lambda s: s == "complete", policy(clock), Deadline(60, clock)
            )
