"""Guard inactivity loop.

An active, guard-approved deal with no purchase or redemption for
GUARD_INACTIVITY_DAYS (default 60) has its guard status moved to
`suspended`, which takes it off sale. The lifecycle status is untouched; an
admin re-approves through PUT /v1/admin/deals/{id}/guard-status.
"""

import logging
import os
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from dealcore_api.config.env import get_guard_inactivity_days
from dealcore_api.db.repo_deals import DealRepository
from dealcore_api.db.repo_tenants import TenantRepository
from dealcore_api.utils.timeutil import utcnow
from dealcore_reaper.shutdown import shutdown_event

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def get_guard_inactivity_interval_seconds() -> int:
    """Loop interval (default: 3600 = 1 hour)."""
    return int(os.getenv("GUARD_INACTIVITY_INTERVAL_SEC", "3600"))


def suspend_inactive_deals(
    db: Session,
    tenant_id: str,
    inactivity_days: int,
    now: Optional[datetime] = None,
    limit: int = 100,
) -> list[str]:
    """Suspend the guard of one county's inactive deals.

    Returns:
        IDs of suspended deals
    """
    now = now or utcnow()
    cutoff = now - timedelta(days=inactivity_days)
    repo = DealRepository(db, tenant_id)

    suspended = []
    for deal_id in [deal.id for deal in repo.find_inactive_guarded(cutoff, limit=limit)]:
        try:
            # Rechecks idleness in the write itself; activity since the scan wins
            moved = repo.suspend_if_inactive(deal_id, cutoff)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(
                f"Failed to suspend inactive deal {deal_id}: {e}",
                exc_info=True,
                extra={"tenant_id": tenant_id, "deal_id": deal_id},
            )
            continue
        if not moved:
            continue
        suspended.append(deal_id)
        logger.info(
            "deal.guard_suspended_inactive",
            extra={
                "event": "deal.guard_suspended_inactive",
                "tenant_id": tenant_id,
                "deal_id": deal_id,
                "inactivity_days": inactivity_days,
            },
        )
    return suspended


def run_guard_inactivity_scan(
    session_factory: SessionFactory,
    inactivity_days: int,
    now: Optional[datetime] = None,
) -> int:
    """One sweep over every active county. Returns the number of suspended deals."""
    with session_factory() as db:
        tenant_ids = TenantRepository(db).list_active_ids()

    total = 0
    for tenant_id in tenant_ids:
        try:
            with session_factory() as db:
                total += len(suspend_inactive_deals(db, tenant_id, inactivity_days, now=now))
        except Exception as e:
            logger.error(
                f"Guard inactivity scan failed for tenant {tenant_id}: {e}",
                exc_info=True,
                extra={"tenant_id": tenant_id},
            )
    return total


def guard_inactivity_loop(
    session_factory: SessionFactory,
    interval_seconds: Optional[int] = None,
    inactivity_days: Optional[int] = None,
    stop_after_one_iteration: bool = False,
) -> None:
    """Guard inactivity loop (runs in a background thread).

    Args:
        session_factory: SQLAlchemy sessionmaker
        interval_seconds: Sleep between sweeps (default: GUARD_INACTIVITY_INTERVAL_SEC or 3600)
        inactivity_days: Days without activity (default: GUARD_INACTIVITY_DAYS or 60)
        stop_after_one_iteration: For testing only - exit after one sweep
    """
    if interval_seconds is None:
        interval_seconds = get_guard_inactivity_interval_seconds()
    if inactivity_days is None:
        inactivity_days = get_guard_inactivity_days()

    logger.info(
        f"Guard inactivity loop started (interval={interval_seconds}s, inactivity_days={inactivity_days})"
    )

    iteration = 0
    while not shutdown_event.is_set():
        iteration += 1
        try:
            suspended = run_guard_inactivity_scan(session_factory, inactivity_days)
            if suspended:
                logger.info(f"Guard inactivity iteration {iteration}: {suspended} deals suspended")
        except Exception as e:
            logger.error(f"Guard inactivity loop error in iteration {iteration}: {e}", exc_info=True)

        if stop_after_one_iteration:
            logger.info("Guard inactivity loop stopping after one iteration (test mode)")
            break

        shutdown_event.wait(interval_seconds)

    logger.info(f"Guard inactivity loop stopped gracefully after {iteration} iterations")
