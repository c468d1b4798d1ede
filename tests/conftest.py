"""
Pytest configuration and fixtures.
"""
import asyncio
import os
import uuid
from datetime import datetime, timedelta
from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple

os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_fake_key_for_testing")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import pytest_asyncio
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from checkout_reconciliation.config import Settings
from checkout_reconciliation.core.checkout import CheckoutService
from checkout_reconciliation.core.reconciliation import ReconciliationEngine
from checkout_reconciliation.database.connection import (
    build_engine,
    build_session_factory,
    init_db,
)
from checkout_reconciliation.database.models import (
    Cart,
    CheckoutSession,
    Coupon,
    Order,
    PaymentStatus,
    SessionStatus,
    utcnow,
)
from checkout_reconciliation.integrations.gateway import (
    CheckoutLinkStatus,
    GatewayPayment,
    GatewayUnavailableError,
    PaymentGateway,
)

USER_ID = "user-7f3a"
OTHER_USER_ID = "user-91bc"

SAMPLE_ITEMS: List[Dict[str, Any]] = [
    {
        "product_id": "tee-classic",
        "product_name": "Classic Tee",
        "variant": {"color": "black", "size": "M"},
        "unit_price_cents": 1000,
        "quantity": 2,
        "custom_design_id": "design-41",
    },
    {
        "product_id": "cap-logo",
        "product_name": "Logo Cap",
        "variant": {"color": "navy"},
        "unit_price_cents": 1000,
        "quantity": 1,
        "custom_design_id": None,
    },
]


class FakeGateway(PaymentGateway):
    """
    Scripted gateway double.

    - ``payments`` answers direct lookups by id
    - ``link_statuses`` holds a per-link sequence of answers; the last one repeats
    - ``searches`` answers order searches by external order id
    - ``fail(operation, times)`` makes the next calls raise GatewayUnavailableError
    """

    provider = "stripe"

    def __init__(self) -> None:
        self.payments: Dict[str, GatewayPayment] = {}
        self.link_statuses: Dict[str, List[CheckoutLinkStatus]] = {}
        self.searches: Dict[str, List[GatewayPayment]] = {}
        self.failures: Dict[str, int] = {}
        self.calls: List[Tuple[str, str]] = []

    def fail(self, operation: str, times: int = -1) -> None:
        """Raise on the next ``times`` calls of ``operation`` (-1 for always)."""
        self.failures[operation] = times

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    def _record(self, operation: str, argument: str) -> None:
        self.calls.append((operation, argument))
        remaining = self.failures.get(operation, 0)
        if remaining:
            if remaining > 0:
                self.failures[operation] = remaining - 1
            raise GatewayUnavailableError(f"{operation} unavailable")

    async def retrieve_payment(self, payment_id: str) -> Optional[GatewayPayment]:
        self._record("retrieve_payment", payment_id)
        return self.payments.get(payment_id)

    async def retrieve_checkout_link_status(self, link_id: str) -> Optional[CheckoutLinkStatus]:
        self._record("retrieve_checkout_link_status", link_id)
        script = self.link_statuses.get(link_id)
        if not script:
            return None
        return script.pop(0) if len(script) > 1 else script[0]

    async def search_payments_by_external_order(self, order_id: str) -> List[GatewayPayment]:
        self._record("search_payments_by_external_order", order_id)
        return list(self.searches.get(order_id, []))


class FakeClock:
    """Monotonic clock whose ``sleep`` advances time instead of waiting."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


def completed_payment(
    payment_id: str = "pi_3OaBcDeFgHiJkLmN0",
    order_id: Optional[str] = None,
    amount_cents: Optional[int] = None,
) -> GatewayPayment:
    return GatewayPayment(
        id=payment_id,
        status="succeeded",
        completed=True,
        order_id=order_id,
        amount_cents=amount_cents,
    )


def open_link(link_id: str, order_id: Optional[str] = None) -> CheckoutLinkStatus:
    return CheckoutLinkStatus(id=link_id, status="open", completed=False, order_id=order_id)


class Seeder:
    """Writes fixture rows straight to the database."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def _add(self, obj: Any) -> Any:
        async with self.session_factory() as db:
            async with db.begin():
                db.add(obj)
        return obj

    async def cart(
        self, user_id: str = USER_ID, items: Optional[List[Dict[str, Any]]] = None
    ) -> Cart:
        return await self._add(
            Cart(user_id=user_id, items=SAMPLE_ITEMS if items is None else items)
        )

    async def refill_cart(self, items: List[Dict[str, Any]], user_id: str = USER_ID) -> None:
        async with self.session_factory() as db:
            async with db.begin():
                await db.execute(update(Cart).where(Cart.user_id == user_id).values(items=items))

    async def coupon(
        self,
        code: str = "SAVE5",
        discount_type: str = "fixed",
        discount_value: int = 500,
        **overrides: Any,
    ) -> Coupon:
        now = utcnow()
        values: Dict[str, Any] = dict(
            id=uuid.uuid4(),
            code=code,
            discount_type=discount_type,
            discount_value=discount_value,
            min_purchase_cents=0,
            max_discount_cents=None,
            valid_from=now - timedelta(days=1),
            valid_to=now + timedelta(days=30),
            is_active=True,
            usage_limit=None,
            used_count=0,
        )
        values.update(overrides)
        return await self._add(Coupon(**values))

    async def session(
        self,
        user_id: str = USER_ID,
        subtotal_cents: int = 3000,
        discount_cents: int = 0,
        shipping_cost_cents: int = 0,
        coupon: Optional[Coupon] = None,
        **overrides: Any,
    ) -> CheckoutSession:
        now = utcnow()
        values: Dict[str, Any] = dict(
            id=uuid.uuid4(),
            user_id=user_id,
            items=SAMPLE_ITEMS,
            subtotal_cents=subtotal_cents,
            discount_cents=discount_cents,
            shipping_cost_cents=shipping_cost_cents,
            total_cents=max(0, subtotal_cents - discount_cents + shipping_cost_cents),
            currency="USD",
            coupon_id=coupon.id if coupon else None,
            coupon_code=coupon.code if coupon else None,
            coupon_discount_cents=discount_cents if coupon else None,
            shipping_address={"line1": "12 Analytical Row", "city": "London"},
            shipping_service_name="Ground",
            status=SessionStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(minutes=30),
        )
        values.update(overrides)
        return await self._add(CheckoutSession(**values))

    async def order(self, user_id: str = USER_ID, **overrides: Any) -> Order:
        values: Dict[str, Any] = dict(
            id=uuid.uuid4(),
            user_id=user_id,
            items=SAMPLE_ITEMS,
            subtotal_cents=3000,
            shipping_cost_cents=0,
            total_cents=3000,
            currency="USD",
            payment_method="stripe",
            payment_provider="stripe",
            payment_status=PaymentStatus.PENDING.value,
        )
        values.update(overrides)
        return await self._add(Order(**values))

    async def get(self, model: Any, pk: Any) -> Any:
        async with self.session_factory() as db:
            return await db.get(model, pk)

    async def count(self, model: Any, *criteria: Any) -> int:
        async with self.session_factory() as db:
            result = await db.execute(select(func.count()).select_from(model).where(*criteria))
            return result.scalar_one()


@pytest.fixture
def test_settings(tmp_path: Any) -> Settings:
    """Create test settings."""
    return Settings(
        stripe_secret_key="sk_test_fake_key_for_testing",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'checkout.db'}",
        app_name="checkout-reconciliation-test",
        app_env="test",
        log_level="DEBUG",
        debug=True,
        link_poll_max_attempts=5,
        link_poll_delay_seconds=1.5,
        gateway_retry_max_attempts=2,
        gateway_retry_delay_seconds=0.5,
        verification_deadline_seconds=20.0,
    )


@pytest_asyncio.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, Any]:
    """File-backed SQLite engine with all tables created."""
    engine = build_engine(test_settings)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(db_engine)


@pytest.fixture
def seed(session_factory: async_sessionmaker[AsyncSession]) -> Seeder:
    return Seeder(session_factory)


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine(
    fake_gateway: FakeGateway,
    session_factory: async_sessionmaker[AsyncSession],
    test_settings: Settings,
    fake_clock: FakeClock,
) -> ReconciliationEngine:
    """Reconciliation engine wired to the fake gateway and fake clock."""
    return ReconciliationEngine(
        fake_gateway,
        session_factory,
        test_settings,
        sleep=fake_clock.sleep,
        clock=fake_clock,
    )


@pytest.fixture
def checkout_service(
    session_factory: async_sessionmaker[AsyncSession], test_settings: Settings
) -> CheckoutService:
    return CheckoutService(session_factory, test_settings)


@pytest.fixture
def now() -> datetime:
    return utcnow()
