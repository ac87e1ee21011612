"""
Periodic maintenance worker.

Reports pending transactions that never received a callback (the user left
the PxPay page, or initiation failed after the row was written). The report
is read-only; deleting old rows is the host application's retention policy.

Run with: python -m dps_enrol.workers.maintenance
"""
import asyncio
import signal
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog

from dps_enrol.config import Settings, get_settings
from dps_enrol.core.store import TransactionStore
from dps_enrol.database.connection import close_db, get_session_factory
from dps_enrol.monitoring.logging import setup_logging
from dps_enrol.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

MAINTENANCE_INTERVAL_SECONDS = 3600


async def run_maintenance(
    store: TransactionStore,
    settings: Settings,
    now: Optional[datetime] = None,
) -> int:
    """
    Report pending transactions older than the configured threshold.

    Args:
        store: Transaction store
        settings: Application settings
        now: Optional current time

    Returns:
        int: Number of stale pending transactions
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(hours=settings.stale_pending_after_hours)
    stale = await store.list_stale_pending(cutoff)
    metrics.set_stale_pending(len(stale))

    if stale:
        logger.warning(
            "stale_pending_transactions",
            count=len(stale),
            oldest_transaction_id=stale[0].id,
            cutoff=cutoff.isoformat(),
        )
    else:
        logger.info("no_stale_pending_transactions", cutoff=cutoff.isoformat())
    return len(stale)


async def main() -> None:
    """Run the maintenance report every hour until interrupted."""
    settings = get_settings()
    setup_logging(settings)
    store = TransactionStore(get_session_factory(settings))

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    logger.info("maintenance_worker_started", interval_seconds=MAINTENANCE_INTERVAL_SECONDS)
    try:
        while not stop.is_set():
            await run_maintenance(store, settings)
            try:
                await asyncio.wait_for(stop.wait(), timeout=MAINTENANCE_INTERVAL_SECONDS)
            except asyncio.TimeoutError:
                pass
    finally:
        await close_db()
        logger.info("maintenance_worker_stopped")


def run() -> None:
    """Console entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
