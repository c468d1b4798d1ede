"""
Checkout session cleanup background worker.

Runs the cleanup passes (strip completed, expire abandoned, purge old) on a
fixed interval until SIGINT/SIGTERM.
"""
import asyncio
import signal
from typing import Any, Optional

import structlog

from checkout_reconciliation.config import get_settings
from checkout_reconciliation.core.cleanup import CleanupReport, SessionCleaner
from checkout_reconciliation.database.connection import close_db, get_session_factory
from checkout_reconciliation.monitoring.logging import setup_logging

logger = structlog.get_logger(__name__)


async def run_cleanup_pass(cleaner: SessionCleaner) -> Optional[CleanupReport]:
    """
    Run one cleanup pass.

    Failures are logged and swallowed so the worker keeps its schedule.
    """
    logger.info("cleanup_pass_started")
    try:
        report = await cleaner.run()
    except Exception as e:
        logger.error("cleanup_pass_failed", error=str(e), error_type=type(e).__name__)
        return None
    return report


async def start_cleanup_worker(
    interval_seconds: Optional[int] = None,
    once: bool = False,
    cleaner: Optional[SessionCleaner] = None,
) -> None:
    """
    Start the cleanup worker.

    Args:
        interval_seconds: Seconds between passes (defaults to settings)
        once: Run a single pass and exit
        cleaner: Optional session cleaner
    """
    settings = get_settings()
    setup_logging(settings)
    interval_seconds = interval_seconds or settings.cleanup_interval_seconds
    cleaner = cleaner or SessionCleaner(get_session_factory(), settings)

    logger.info("cleanup_worker_starting", interval_seconds=interval_seconds, once=once)

    running = True

    def signal_handler(sig: int, frame: Any) -> None:
        nonlocal running
        logger.info("cleanup_worker_shutdown_signal_received", signal=sig)
        running = False

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        while running:
            await run_cleanup_pass(cleaner)
            if once:
                break

            # Wait for the next pass, checking for shutdown every second
            remaining = float(interval_seconds)
            while remaining > 0 and running:
                sleep_time = min(remaining, 1.0)
                await asyncio.sleep(sleep_time)
                remaining -= sleep_time
    finally:
        await close_db()
        logger.info("cleanup_worker_stopped")


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(description="Checkout session cleanup worker")
    parser.add_argument(
        "--interval", type=int, default=None, help="Seconds between cleanup passes"
    )
    parser.add_argument("--once", action="store_true", help="Run a single pass and exit")
    args = parser.parse_args()

    asyncio.run(start_cleanup_worker(interval_seconds=args.interval, once=args.once))


if __name__ == "__main__":
    main()
