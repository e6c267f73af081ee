"""Passive abuse monitor.

Runs after a purchase (or reported payment failure) has committed, in a
background task with its own database session. It only counts committed rows
and raises ReviewTask rows for humans; it never blocks, delays, reverses or
annotates a purchase. Every error is logged and stops here.

Counters (observed >= threshold raises a task):
- user_purchase_velocity  : purchases per user in the last hour
- deal_purchase_velocity  : purchases per deal in the last minute
- failed_payment_velocity : failed payments per user in the last hour

An unresolved task of the same type and subject created within the same
window suppresses a duplicate.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from dealcore_api.config.env import MonitorThresholds, get_monitor_thresholds
from dealcore_api.db.models import ReviewTask
from dealcore_api.db.repo_purchases import (
    PaymentFailureRepository,
    PurchaseRepository,
    ReviewTaskRepository,
)
from dealcore_api.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]

USER_PURCHASE_VELOCITY = "user_purchase_velocity"
DEAL_PURCHASE_VELOCITY = "deal_purchase_velocity"
FAILED_PAYMENT_VELOCITY = "failed_payment_velocity"

HOUR_SECONDS = 3600
MINUTE_SECONDS = 60


def _raise_task(
    db: Session,
    tenant_id: str,
    task_type: str,
    subject_type: str,
    subject_id: str,
    threshold: int,
    observed: int,
    window_seconds: int,
    now: datetime,
) -> Optional[ReviewTask]:
    repo = ReviewTaskRepository(db, tenant_id)
    if repo.find_open(task_type, subject_id, since=now - timedelta(seconds=window_seconds)) is not None:
        return None

    task = repo.add(
        ReviewTask(
            tenant_id=tenant_id,
            task_type=task_type,
            subject_type=subject_type,
            subject_id=subject_id,
            threshold=threshold,
            observed=observed,
            window_seconds=window_seconds,
            created_at=now,
        )
    )
    db.commit()
    logger.warning(
        "monitor.review_task_created",
        extra={
            "event": "monitor.review_task_created",
            "tenant_id": tenant_id,
            "task_type": task_type,
            "subject_id": subject_id,
            "threshold": threshold,
            "observed": observed,
        },
    )
    return task


def check_purchase_velocity(
    db: Session,
    tenant_id: str,
    user_id: str,
    deal_id: str,
    thresholds: MonitorThresholds,
    now: datetime,
) -> list[ReviewTask]:
    """Evaluate the purchase counters for one committed purchase."""
    purchases = PurchaseRepository(db, tenant_id)
    created = []

    user_count = purchases.count_for_user_since(user_id, now - timedelta(seconds=HOUR_SECONDS))
    if user_count >= thresholds.max_user_purchases_per_hour:
        task = _raise_task(
            db, tenant_id, USER_PURCHASE_VELOCITY, "user", user_id,
            thresholds.max_user_purchases_per_hour, user_count, HOUR_SECONDS, now,
        )
        if task:
            created.append(task)

    deal_count = purchases.count_for_deal_since(deal_id, now - timedelta(seconds=MINUTE_SECONDS))
    if deal_count >= thresholds.max_deal_purchases_per_minute:
        task = _raise_task(
            db, tenant_id, DEAL_PURCHASE_VELOCITY, "deal", deal_id,
            thresholds.max_deal_purchases_per_minute, deal_count, MINUTE_SECONDS, now,
        )
        if task:
            created.append(task)

    return created


def check_failed_payment_velocity(
    db: Session,
    tenant_id: str,
    user_id: str,
    thresholds: MonitorThresholds,
    now: datetime,
) -> list[ReviewTask]:
    failures = PaymentFailureRepository(db, tenant_id).count_for_user_since(
        user_id, now - timedelta(seconds=HOUR_SECONDS)
    )
    if failures < thresholds.max_failed_payments_per_hour:
        return []
    task = _raise_task(
        db, tenant_id, FAILED_PAYMENT_VELOCITY, "user", user_id,
        thresholds.max_failed_payments_per_hour, failures, HOUR_SECONDS, now,
    )
    return [task] if task else []


def observe_purchase(
    session_factory: SessionFactory,
    tenant_id: str,
    user_id: str,
    deal_id: str,
    thresholds: Optional[MonitorThresholds] = None,
    now: Optional[datetime] = None,
) -> int:
    """Background-task entry point after a committed purchase.

    Returns:
        Number of review tasks created (0 on any error)
    """
    try:
        thresholds = thresholds or get_monitor_thresholds()
        now = now or utcnow()
        db = session_factory()
        try:
            return len(check_purchase_velocity(db, tenant_id, user_id, deal_id, thresholds, now))
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
    except Exception as e:
        logger.error(
            f"Passive monitor failed: {e}",
            exc_info=True,
            extra={"event": "monitor.failed", "tenant_id": tenant_id, "deal_id": deal_id},
        )
        return 0


def observe_payment_failure(
    session_factory: SessionFactory,
    tenant_id: str,
    user_id: str,
    thresholds: Optional[MonitorThresholds] = None,
    now: Optional[datetime] = None,
) -> int:
    """Background-task entry point after a payment failure was recorded."""
    try:
        thresholds = thresholds or get_monitor_thresholds()
        now = now or utcnow()
        db = session_factory()
        try:
            return len(check_failed_payment_velocity(db, tenant_id, user_id, thresholds, now))
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
    except Exception as e:
        logger.error(
            f"Passive monitor failed: {e}",
            exc_info=True,
            extra={"event": "monitor.failed", "tenant_id": tenant_id, "user_id": user_id},
        )
        return 0
