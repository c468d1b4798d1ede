"""
Checkout session store.

Starting a checkout snapshots the user's cart, prices it (coupon discount,
shipping) and opens a pending session with a TTL. The collaborator that
creates the hosted payment link then records its references once. After
that, only reconciliation and materialization touch the session.
"""
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from checkout_reconciliation.config import Settings, get_settings
from checkout_reconciliation.database.models import (
    Cart,
    CheckoutEvent,
    CheckoutSession,
    Coupon,
    SessionStatus,
    utcnow,
)

logger = structlog.get_logger(__name__)


class CheckoutError(Exception):
    """Base exception for checkout errors."""

    pass


class CheckoutNotFoundError(CheckoutError):
    """Raised when a checkout session does not exist."""

    pass


class CheckoutAccessDeniedError(CheckoutError):
    """Raised when a user asks for a session they do not own."""

    pass


class CheckoutStateError(CheckoutError):
    """Raised when the session is not in a state that allows the operation."""

    pass


class EmptyCartError(CheckoutError):
    """Raised when checkout is started from an empty cart."""

    pass


class CouponError(CheckoutError):
    """Raised when a coupon code cannot be applied."""

    pass


def item_line_total(item: Dict[str, Any]) -> int:
    """Unit price times quantity for one cart line, in minor units."""
    unit_price = item.get("unit_price_cents")
    quantity = item.get("quantity")
    if not isinstance(unit_price, int) or not isinstance(quantity, int):
        raise CheckoutError("Cart items need integer unit_price_cents and quantity")
    if unit_price < 0 or quantity <= 0:
        raise CheckoutError("Cart items need a non-negative price and a positive quantity")
    return unit_price * quantity


def calculate_discount(coupon: Coupon, subtotal_cents: int) -> int:
    """
    Discount a coupon grants on a subtotal.

    Percentage coupons are rounded to the nearest minor unit and capped by
    ``max_discount_cents``; fixed coupons apply their value. Neither can
    exceed the subtotal.
    """
    if coupon.discount_type == "percentage":
        discount = round(subtotal_cents * coupon.discount_value / 100)
        if coupon.max_discount_cents is not None:
            discount = min(discount, coupon.max_discount_cents)
    else:
        discount = coupon.discount_value
    return max(0, min(discount, subtotal_cents))


def validate_coupon(coupon: Optional[Coupon], subtotal_cents: int, now: datetime) -> Coupon:
    """
    Check that a coupon can be applied to a subtotal right now.

    Raises:
        CouponError: If the coupon is unknown, inactive, outside its validity
            window, below its minimum purchase or used up
    """
    if coupon is None or not coupon.is_active:
        raise CouponError("Invalid or inactive coupon code")
    if now < _aware(coupon.valid_from) or now > _aware(coupon.valid_to):
        raise CouponError("Coupon code has expired or is not yet valid")
    if subtotal_cents < coupon.min_purchase_cents:
        raise CouponError(
            f"Minimum purchase of {coupon.min_purchase_cents} required for this coupon"
        )
    if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
        raise CouponError("Coupon usage limit has been reached")
    return coupon


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=utcnow().tzinfo)
    return value


def normalize_coupon_code(code: str) -> str:
    return code.strip().upper()


async def load_owned_session(
    db: AsyncSession, session_id: uuid.UUID, user_id: str
) -> CheckoutSession:
    """
    Load a checkout session and check that ``user_id`` owns it.

    Raises:
        CheckoutNotFoundError: If the session does not exist
        CheckoutAccessDeniedError: If another user owns it
    """
    session = await db.get(CheckoutSession, session_id, populate_existing=True)
    if session is None:
        raise CheckoutNotFoundError("Checkout session not found")
    if session.user_id != user_id:
        logger.warning(
            "checkout_session_access_denied",
            session_id=str(session_id),
            user_id=user_id,
        )
        raise CheckoutAccessDeniedError("Access denied for this session")
    return session


class CheckoutService:
    """Creates checkout sessions and records their payment link references."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize checkout service.

        Args:
            session_factory: Database session factory
            settings: Optional settings (defaults to cached settings)
            clock: Current time source
        """
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.clock = clock

    async def start_checkout(
        self,
        user_id: str,
        shipping_address: Optional[Dict[str, Any]] = None,
        shipping_cost_cents: int = 0,
        shipping_service_code: Optional[str] = None,
        shipping_service_name: Optional[str] = None,
        coupon_code: Optional[str] = None,
    ) -> CheckoutSession:
        """
        Snapshot the user's cart into a new pending checkout session.

        The coupon is validated and priced here but not consumed; usage is
        counted only when the session materializes into an order.

        Args:
            user_id: Owner of the cart
            shipping_address: Address snapshot
            shipping_cost_cents: Quoted shipping cost
            shipping_service_code: Carrier service code
            shipping_service_name: Carrier service display name
            coupon_code: Optional coupon code

        Returns:
            CheckoutSession: The pending session

        Raises:
            EmptyCartError: If the user's cart is empty
            CouponError: If the coupon cannot be applied
            CheckoutError: If the cart or shipping cost is malformed
        """
        if shipping_cost_cents < 0:
            raise CheckoutError("Shipping cost cannot be negative")

        now = self.clock()
        async with self.session_factory() as db:
            async with db.begin():
                cart = await db.get(Cart, user_id)
                items: List[Dict[str, Any]] = list(cart.items) if cart and cart.items else []
                if not items:
                    raise EmptyCartError("Cart is empty")

                subtotal = sum(item_line_total(item) for item in items)

                coupon: Optional[Coupon] = None
                discount = 0
                if coupon_code:
                    result = await db.execute(
                        select(Coupon).where(Coupon.code == normalize_coupon_code(coupon_code))
                    )
                    coupon = validate_coupon(result.scalar_one_or_none(), subtotal, now)
                    discount = calculate_discount(coupon, subtotal)

                total = max(0, subtotal - discount + shipping_cost_cents)

                session = CheckoutSession(
                    id=uuid.uuid4(),
                    user_id=user_id,
                    items=items,
                    subtotal_cents=subtotal,
                    discount_cents=discount,
                    shipping_cost_cents=shipping_cost_cents,
                    total_cents=total,
                    currency=self.settings.currency,
                    coupon_id=coupon.id if coupon else None,
                    coupon_code=coupon.code if coupon else None,
                    coupon_discount_cents=discount if coupon else None,
                    shipping_address=shipping_address,
                    shipping_service_code=shipping_service_code,
                    shipping_service_name=shipping_service_name,
                    status=SessionStatus.PENDING.value,
                    created_at=now,
                    updated_at=now,
                    expires_at=now + timedelta(minutes=self.settings.checkout_session_ttl_minutes),
                )
                db.add(session)
                db.add(
                    CheckoutEvent(
                        checkout_session_id=session.id,
                        event_type="checkout.session_created",
                        event_data={
                            "subtotal_cents": subtotal,
                            "discount_cents": discount,
                            "shipping_cost_cents": shipping_cost_cents,
                            "total_cents": total,
                            "coupon_code": session.coupon_code,
                            "item_count": len(items),
                        },
                        correlation_id=uuid.uuid4(),
                        created_at=now,
                    )
                )

        logger.info(
            "checkout_session_created",
            session_id=str(session.id),
            user_id=user_id,
            total_cents=total,
            coupon_code=session.coupon_code,
        )
        return session

    async def get_session(self, session_id: uuid.UUID, user_id: str) -> CheckoutSession:
        """Fetch a session for its owner."""
        async with self.session_factory() as db:
            return await load_owned_session(db, session_id, user_id)

    async def record_payment_link(
        self,
        session_id: uuid.UUID,
        user_id: str,
        checkout_link_id: str,
        external_order_id: Optional[str] = None,
        checkout_url: Optional[str] = None,
    ) -> CheckoutSession:
        """
        Record the hosted payment link created for a pending session.

        The references are written once; a second write, or a write on a
        session that already left ``pending``, is rejected.

        Raises:
            CheckoutNotFoundError: If the session does not exist
            CheckoutAccessDeniedError: If another user owns it
            CheckoutStateError: If the session is terminal or already linked
        """
        async with self.session_factory() as db:
            async with db.begin():
                session = await load_owned_session(db, session_id, user_id)
                result = await db.execute(
                    update(CheckoutSession)
                    .where(
                        CheckoutSession.id == session_id,
                        CheckoutSession.status == SessionStatus.PENDING.value,
                        CheckoutSession.checkout_link_id.is_(None),
                    )
                    .values(
                        checkout_link_id=checkout_link_id,
                        external_order_id=external_order_id,
                        checkout_url=checkout_url,
                        updated_at=self.clock(),
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    logger.warning(
                        "payment_link_rejected",
                        session_id=str(session_id),
                        status=session.status,
                        existing_link_id=session.checkout_link_id,
                    )
                    if session.is_terminal:
                        raise CheckoutStateError(
                            f"Checkout session is already {session.status}"
                        )
                    raise CheckoutStateError("Payment link already recorded for this session")

                db.add(
                    CheckoutEvent(
                        checkout_session_id=session_id,
                        event_type="checkout.payment_link_recorded",
                        event_data={
                            "checkout_link_id": checkout_link_id,
                            "external_order_id": external_order_id,
                        },
                        correlation_id=uuid.uuid4(),
                        created_at=self.clock(),
                    )
                )

            session = await load_owned_session(db, session_id, user_id)

        logger.info(
            "payment_link_recorded",
            session_id=str(session_id),
            checkout_link_id=checkout_link_id,
            external_order_id=external_order_id,
        )
        return session
