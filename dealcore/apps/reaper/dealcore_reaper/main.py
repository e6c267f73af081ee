"""dealcore reaper main entry point.

Two independent loops, each in its own thread:

1. Reconcile Loop:
   - Scan: purchase_reconciliations.state = 'pending_retry'
   - Retry the allocation with the same payment intent; escalate to
     refund_required after RECONCILE_MAX_ATTEMPTS
   - Interval: RECONCILE_INTERVAL_SEC (default 60 seconds)

2. Guard Inactivity Loop:
   - Scan: active, guard-approved deals idle for GUARD_INACTIVITY_DAYS
   - Suspend the guard status
   - Interval: GUARD_INACTIVITY_INTERVAL_SEC (default 1 hour)
"""

import logging
import os
import threading

from dealcore_api.config.env import get_database_url, get_guard_inactivity_days, get_reconcile_max_attempts
from dealcore_api.db.engine import build_engine, build_sessionmaker
from dealcore_api.utils import configure_json_logging
from dealcore_reaper.loops.guard_inactivity_loop import (
    get_guard_inactivity_interval_seconds,
    guard_inactivity_loop,
)
from dealcore_reaper.loops.reconcile_loop import get_reconcile_interval_seconds, reconcile_loop
from dealcore_reaper.shutdown import install_signal_handlers

configure_json_logging(log_level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)


def main() -> None:
    """Start both loops and block until SIGTERM/SIGINT stops them."""
    database_url = get_database_url()

    reconcile_interval_sec = get_reconcile_interval_seconds()
    reconcile_max_attempts = get_reconcile_max_attempts()
    guard_interval_sec = get_guard_inactivity_interval_seconds()
    guard_inactivity_days = get_guard_inactivity_days()
    guard_enabled = os.getenv("GUARD_INACTIVITY_ENABLED", "true").lower() in {"true", "1", "yes"}

    # Shared engine; each loop opens its own sessions (sessions are not thread-safe)
    engine = build_engine(database_url)
    SessionLocal = build_sessionmaker(engine)

    install_signal_handlers()

    logger.info("Starting dealcore reaper...")
    logger.info(f"Reconcile Loop: interval={reconcile_interval_sec}s, max_attempts={reconcile_max_attempts}")
    if guard_enabled:
        logger.info(f"Guard Inactivity Loop: interval={guard_interval_sec}s, days={guard_inactivity_days}")
    else:
        logger.info("Guard Inactivity Loop: DISABLED (GUARD_INACTIVITY_ENABLED=false)")

    threads = [
        threading.Thread(
            target=reconcile_loop,
            kwargs={
                "session_factory": SessionLocal,
                "interval_seconds": reconcile_interval_sec,
                "max_attempts": reconcile_max_attempts,
            },
            name="ReconcileLoop",
            daemon=False,
        )
    ]
    if guard_enabled:
        threads.append(
            threading.Thread(
                target=guard_inactivity_loop,
                kwargs={
                    "session_factory": SessionLocal,
                    "interval_seconds": guard_interval_sec,
                    "inactivity_days": guard_inactivity_days,
                },
                name="GuardInactivityLoop",
                daemon=False,
            )
        )

    try:
        for thread in threads:
            logger.info(f"Starting {thread.name} thread...")
            thread.start()

        # Blocks until the shutdown event stops every loop
        for thread in threads:
            thread.join()

    except KeyboardInterrupt:
        logger.info("Reaper stopped by user (KeyboardInterrupt)")

    finally:
        engine.dispose()
        logger.info("Reaper shutdown complete")


if __name__ == "__main__":
    main()
