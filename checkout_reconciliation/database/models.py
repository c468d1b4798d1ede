"""SQLAlchemy database models for checkout reconciliation."""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")
EventId = BigInteger().with_variant(Integer(), "sqlite")


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    """Overall checkout session status. Everything but PENDING is absorbing."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


TERMINAL_SESSION_STATUSES = (
    SessionStatus.COMPLETED,
    SessionStatus.FAILED,
    SessionStatus.EXPIRED,
)


class PaymentStatus(str, Enum):
    """Payment sub-status tracked on sessions and orders."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"


class FulfillmentStatus(str, Enum):
    """Order fulfillment lifecycle (owned by the fulfillment subsystem)."""

    PLACED = "placed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class CheckoutSession(Base):
    """
    Checkout session table.

    One row per attempt to pay for a captured cart snapshot. The row has two
    facets: snapshot columns (items, pricing, coupon, shipping) written once
    at creation, and state-machine columns (status, payment_status,
    failure_reason, gateway_status, order_id, external payment id) written
    only by reconciliation and materialization.
    """

    __tablename__ = "checkout_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Snapshot facet
    items: Mapped[List[Dict[str, Any]] | None] = mapped_column(JSONType, nullable=True)
    subtotal_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    discount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    shipping_cost_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    coupon_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    coupon_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    coupon_discount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    shipping_address: Mapped[Dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    shipping_service_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    shipping_service_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_provider: Mapped[str] = mapped_column(String(32), nullable=False, default="stripe")

    # External references
    checkout_link_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_order_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    external_payment_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    checkout_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    # State-machine facet
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value
    )
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    gateway_status: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SessionStatus.PENDING.value, index=True
    )
    order_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, unique=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("total_cents >= 0", name="non_negative_total"),
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed', 'expired')",
            name="valid_session_status",
        ),
        CheckConstraint(
            "payment_status IN ('pending', 'paid', 'failed', 'cancelled')",
            name="valid_session_payment_status",
        ),
        CheckConstraint(
            "(status = 'completed' AND order_id IS NOT NULL) "
            "OR (status <> 'completed' AND order_id IS NULL)",
            name="order_iff_completed",
        ),
        Index("idx_checkout_sessions_status_expires", "status", "expires_at"),
    )

    @property
    def is_terminal(self) -> bool:
        """True once the session has reached an absorbing state."""
        return self.status != SessionStatus.PENDING

    def __repr__(self) -> str:
        """String representation of CheckoutSession."""
        return (
            f"<CheckoutSession(id={self.id}, user_id={self.user_id}, "
            f"total={self.total_cents}, status={self.status})>"
        )


class Order(Base):
    """
    Orders table.

    Items, pricing, shipping and the discount record are copied from the
    checkout session snapshot when the order is materialized. Payment
    columns are settled once and never rewritten.
    """

    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    checkout_session_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, nullable=True, unique=True
    )
    items: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, nullable=False)
    subtotal_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    shipping_cost_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)

    # Payment sub-record
    payment_provider: Mapped[str] = mapped_column(String(32), nullable=False)
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True
    )
    payment_checkout_link_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_external_order_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_external_payment_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_checkout_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_gateway_status: Mapped[str | None] = mapped_column(String(64), nullable=True)
    payment_failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    shipping_address: Mapped[Dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    shipping_service_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    fulfillment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=FulfillmentStatus.PLACED.value
    )
    coupon_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    coupon_discount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("total_cents >= 0", name="non_negative_order_total"),
        CheckConstraint(
            "payment_status IN ('pending', 'paid', 'failed')",
            name="valid_order_payment_status",
        ),
        Index("idx_orders_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation of Order."""
        return (
            f"<Order(id={self.id}, user_id={self.user_id}, "
            f"total={self.total_cents}, payment_status={self.payment_status})>"
        )


class Coupon(Base):
    """Discount coupons with usage counters."""

    __tablename__ = "coupons"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    discount_type: Mapped[str] = mapped_column(String(20), nullable=False)
    # Percentage points for 'percentage', minor units for 'fixed'
    discount_value: Mapped[int] = mapped_column(Integer, nullable=False)
    min_purchase_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_discount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    valid_from: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    valid_to: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    usage_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    used_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    __table_args__ = (
        CheckConstraint(
            "discount_type IN ('percentage', 'fixed')", name="valid_discount_type"
        ),
        CheckConstraint("used_count >= 0", name="non_negative_usage"),
        Index("idx_coupons_code_active", "code", "is_active"),
    )

    def __repr__(self) -> str:
        """String representation of Coupon."""
        return f"<Coupon(code={self.code}, used={self.used_count}/{self.usage_limit})>"


class Cart(Base):
    """Per-user working cart. Only its snapshot is consumed here."""

    __tablename__ = "carts"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    items: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        """String representation of Cart."""
        return f"<Cart(user_id={self.user_id}, items={len(self.items or [])})>"


class CheckoutEvent(Base):
    """
    Checkout events audit trail table.

    Records verification attempts, strategy outcomes, trusted-redirect
    decisions and state transitions. Immutable once written.
    """

    __tablename__ = "checkout_events"

    id: Mapped[int] = mapped_column(EventId, primary_key=True, autoincrement=True)
    checkout_session_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    order_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    event_data: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False)
    correlation_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("idx_checkout_events_session", "checkout_session_id"),
        Index("idx_checkout_events_order", "order_id"),
        Index("idx_checkout_events_type", "event_type"),
    )

    def __repr__(self) -> str:
        """String representation of CheckoutEvent."""
        return (
            f"<CheckoutEvent(id={self.id}, session={self.checkout_session_id}, "
            f"type={self.event_type})>"
        )
