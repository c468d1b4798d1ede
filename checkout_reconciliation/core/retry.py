"""
Bounded retry and polling for gateway lookups.

Every gateway interaction in a verification goes through a ``RetryPolicy``
(max attempts, fixed delay, injectable sleep) and shares one ``Deadline``
so a single request cannot outlive its ceiling. Tests swap in a fake clock
whose ``sleep`` advances time instead of waiting.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)
from tenacity.stop import stop_base

from checkout_reconciliation.config import Settings
from checkout_reconciliation.integrations.gateway import GatewayUnavailableError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-delay retry bound for one kind of gateway call."""

    max_attempts: int
    delay_seconds: float
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    @property
    def ceiling_seconds(self) -> float:
        """Longest time the policy can spend sleeping."""
        return self.delay_seconds * max(self.max_attempts - 1, 0)


class Deadline:
    """Wall-clock budget shared by all strategies of one verification."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self.expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(self.expires_at - self.clock(), 0.0)

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0


class stop_at_deadline(stop_base):
    """Stop when the next sleep would run past the deadline."""

    def __init__(self, deadline: Deadline, delay_seconds: float) -> None:
        self.deadline = deadline
        self.delay_seconds = delay_seconds

    def __call__(self, retry_state: RetryCallState) -> bool:
        return self.deadline.remaining() <= self.delay_seconds


def _log_retry(operation: str) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        logger.info(
            "gateway_retry_scheduled",
            operation=operation,
            attempt=retry_state.attempt_number,
            reason=str(outcome.exception()) if outcome and outcome.failed else "not_settled",
        )

    return before_sleep


def _as_coroutine_function(func: Callable[[], Awaitable[T]]) -> Callable[[], Awaitable[T]]:
    # tenacity only awaits the result of callables it detects as coroutine functions
    async def attempt() -> T:
        return await func()

    return attempt


def _last_outcome(retry_state: RetryCallState) -> Any:
    outcome = retry_state.outcome
    if outcome is None:
        return None
    if outcome.failed:
        raise outcome.exception()
    return outcome.result()


async def call_with_retry(
    operation: str,
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    deadline: Deadline,
) -> T:
    """
    Run a gateway lookup, retrying transport failures within the policy.

    Raises:
        GatewayUnavailableError: When every attempt failed in transport
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts)
        | stop_at_deadline(deadline, policy.delay_seconds),
        wait=wait_fixed(policy.delay_seconds),
        retry=retry_if_exception_type(GatewayUnavailableError),
        sleep=policy.sleep,
        before_sleep=_log_retry(operation),
        reraise=True,
    )
    return await retrying(_as_coroutine_function(func))


async def poll_until(
    operation: str,
    func: Callable[[], Awaitable[Optional[T]]],
    settled: Callable[[T], bool],
    policy: RetryPolicy,
    deadline: Deadline,
) -> Optional[T]:
    """
    Poll a gateway lookup until ``settled`` holds or the policy is exhausted.

    A ``None`` result (object absent) ends polling immediately. On
    exhaustion the last result is returned, settled or not; if the last
    attempt failed in transport the error is raised.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts)
        | stop_at_deadline(deadline, policy.delay_seconds),
        wait=wait_fixed(policy.delay_seconds),
        retry=(
            retry_if_exception_type(GatewayUnavailableError)
            | retry_if_result(lambda result: result is not None and not settled(result))
        ),
        sleep=policy.sleep,
        before_sleep=_log_retry(operation),
        retry_error_callback=_last_outcome,
    )
    return await retrying(_as_coroutine_function(func))


def link_poll_policy(
    settings: Settings, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
) -> RetryPolicy:
    """Checkout link polling bound from settings."""
    return RetryPolicy(
        max_attempts=settings.link_poll_max_attempts,
        delay_seconds=settings.link_poll_delay_seconds,
        sleep=sleep,
    )


def lookup_retry_policy(
    settings: Settings, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
) -> RetryPolicy:
    """Transport retry bound for single lookups from settings."""
    return RetryPolicy(
        max_attempts=settings.gateway_retry_max_attempts,
        delay_seconds=settings.gateway_retry_delay_seconds,
        sleep=sleep,
    )
