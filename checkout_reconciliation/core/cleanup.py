"""
Checkout session cleanup.

Three passes keep the sessions table small:
- strip the snapshot payload from completed sessions (the order holds a copy)
- expire pending sessions past their TTL
- delete failed and expired sessions once the retention window has passed
"""
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

import structlog
from sqlalchemy import delete, null, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from checkout_reconciliation.config import Settings, get_settings
from checkout_reconciliation.database.models import CheckoutSession, SessionStatus, utcnow
from checkout_reconciliation.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


@dataclass
class CleanupReport:
    """Counts from one cleanup pass."""

    stripped: int = 0
    expired: int = 0
    purged: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class SessionCleaner:
    """Garbage collector for checkout sessions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.clock = clock

    async def strip_completed_sessions(self, batch_size: Optional[int] = None) -> int:
        """
        Drop the cart snapshot, address and coupon reference from completed sessions.

        Processes at most one batch per call.

        Returns:
            int: Number of sessions stripped
        """
        batch_size = batch_size or self.settings.cleanup_batch_size
        async with self.session_factory() as db:
            async with db.begin():
                result = await db.execute(
                    select(CheckoutSession.id)
                    .where(
                        CheckoutSession.status == SessionStatus.COMPLETED.value,
                        CheckoutSession.order_id.is_not(None),
                        CheckoutSession.items.is_not(None),
                    )
                    .limit(batch_size)
                )
                session_ids = list(result.scalars().all())
                if not session_ids:
                    return 0

                await db.execute(
                    update(CheckoutSession)
                    .where(
                        CheckoutSession.id.in_(session_ids),
                        CheckoutSession.status == SessionStatus.COMPLETED.value,
                    )
                    .values(
                        items=null(),
                        shipping_address=null(),
                        coupon_id=None,
                        coupon_code=None,
                        coupon_discount_cents=None,
                        shipping_service_code=None,
                        shipping_service_name=None,
                        updated_at=self.clock(),
                    )
                    .execution_options(synchronize_session=False)
                )

        metrics.record_sessions_cleaned("stripped", len(session_ids))
        logger.info("completed_sessions_stripped", count=len(session_ids))
        return len(session_ids)

    async def expire_abandoned_sessions(self, now: Optional[datetime] = None) -> int:
        """
        Move pending sessions past ``expires_at`` to ``expired``.

        Returns:
            int: Number of sessions expired
        """
        now = now or self.clock()
        async with self.session_factory() as db:
            async with db.begin():
                result = await db.execute(
                    update(CheckoutSession)
                    .where(
                        CheckoutSession.status == SessionStatus.PENDING.value,
                        CheckoutSession.expires_at < now,
                    )
                    .values(
                        status=SessionStatus.EXPIRED.value,
                        failure_reason="Checkout session expired",
                        gateway_status="EXPIRED",
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                count = result.rowcount or 0

        metrics.record_sessions_cleaned("expired", count)
        if count:
            logger.info("abandoned_sessions_expired", count=count)
        return count

    async def purge_expired_sessions(self, now: Optional[datetime] = None) -> int:
        """
        Delete failed and expired sessions older than the retention window.

        Returns:
            int: Number of sessions deleted
        """
        now = now or self.clock()
        cutoff = now - timedelta(hours=self.settings.expired_session_retention_hours)
        async with self.session_factory() as db:
            async with db.begin():
                result = await db.execute(
                    delete(CheckoutSession)
                    .where(
                        CheckoutSession.status.in_(
                            [SessionStatus.FAILED.value, SessionStatus.EXPIRED.value]
                        ),
                        CheckoutSession.expires_at < cutoff,
                    )
                    .execution_options(synchronize_session=False)
                )
                count = result.rowcount or 0

        metrics.record_sessions_cleaned("purged", count)
        if count:
            logger.info("expired_sessions_purged", count=count, cutoff=cutoff.isoformat())
        return count

    async def run(self) -> CleanupReport:
        """Run all three passes once."""
        now = self.clock()
        report = CleanupReport(
            stripped=await self.strip_completed_sessions(),
            expired=await self.expire_abandoned_sessions(now),
            purged=await self.purge_expired_sessions(now),
        )
        logger.info("cleanup_pass_completed", **report.to_dict())
        return report
