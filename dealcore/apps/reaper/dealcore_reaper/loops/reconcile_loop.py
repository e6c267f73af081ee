"""Purchase reconciliation loop.

Sweeps the reconciliation outbox county by county:
- pending_retry rows are re-run through the allocator with the same payment
  intent id (the unique intent constraint makes a retry safe)
- success, or an intent that already has its Purchase -> resolved
- a non-retryable failure, or running out of attempts -> refund_required

Each row is handled in its own session so one failure never poisons the batch.
"""

import logging
import os
import time
from typing import Callable, Optional

from sqlalchemy.orm import Session

from dealcore_api.config.env import get_reconcile_max_attempts
from dealcore_api.db.models import ReconciliationState
from dealcore_api.db.repo_purchases import PurchaseRepository, ReconciliationRepository
from dealcore_api.db.repo_tenants import TenantRepository
from dealcore_api.purchases.allocator import allocate_voucher
from dealcore_api.purchases.reconciliation import mark_resolved, mark_retry_failed, request_from_row
from dealcore_api.results import Err, ErrorCode
from dealcore_reaper.shutdown import shutdown_event

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]

OUTCOME_RESOLVED = "resolved"
OUTCOME_RETRY = ReconciliationState.PENDING_RETRY
OUTCOME_REFUND = ReconciliationState.REFUND_REQUIRED
OUTCOME_SKIPPED = "skipped"


def get_reconcile_interval_seconds() -> int:
    return int(os.getenv("RECONCILE_INTERVAL_SEC", "60"))


def retry_reconciliation(db: Session, tenant_id: str, reconciliation_id: str, max_attempts: int) -> str:
    """Retry one pending outbox row.

    Returns:
        Outcome: resolved, pending_retry, refund_required or skipped
    """
    repo = ReconciliationRepository(db, tenant_id)
    row = repo.get_by_id(reconciliation_id)
    if row is None or row.state != ReconciliationState.PENDING_RETRY:
        return OUTCOME_SKIPPED

    request = request_from_row(row)
    result = allocate_voucher(db, tenant_id, request)

    # The allocator ends its own transaction; reload the row afterwards
    row = repo.get_by_id(reconciliation_id)

    if not isinstance(result, Err):
        mark_resolved(db, row, result.value.purchase_id)
        logger.info(
            "reconcile.resolved",
            extra={
                "event": "reconcile.resolved",
                "tenant_id": tenant_id,
                "payment_intent_id": request.payment_intent_id,
                "purchase_id": result.value.purchase_id,
            },
        )
        return OUTCOME_RESOLVED

    if result.code == ErrorCode.PAYMENT_INTENT_ALREADY_USED:
        existing = PurchaseRepository(db, tenant_id).get_by_payment_intent(request.payment_intent_id)
        mark_resolved(db, row, existing.id if existing else None)
        logger.info(
            "reconcile.resolved",
            extra={
                "event": "reconcile.resolved",
                "tenant_id": tenant_id,
                "payment_intent_id": request.payment_intent_id,
                "reason": "intent_already_used",
            },
        )
        return OUTCOME_RESOLVED

    next_state = mark_retry_failed(db, row, result, max_attempts)
    log = logger.warning if next_state == ReconciliationState.REFUND_REQUIRED else logger.info
    log(
        "reconcile.retry_failed",
        extra={
            "event": "reconcile.retry_failed",
            "tenant_id": tenant_id,
            "payment_intent_id": request.payment_intent_id,
            "code": result.code.value,
            "attempts": row.attempts,
            "state": next_state,
        },
    )
    return next_state


def run_reconcile_iteration(
    session_factory: SessionFactory,
    max_attempts: int,
    limit_per_tenant: int = 100,
) -> dict[str, int]:
    """One sweep over every active county.

    Returns:
        Outcome counts, e.g. {"resolved": 2, "pending_retry": 1}
    """
    counts: dict[str, int] = {}

    with session_factory() as db:
        tenant_ids = TenantRepository(db).list_active_ids()
        pending = []
        for tenant_id in tenant_ids:
            rows = ReconciliationRepository(db, tenant_id).list_by_state(
                ReconciliationState.PENDING_RETRY, limit=limit_per_tenant
            )
            pending.extend((tenant_id, row.id) for row in rows)

    for tenant_id, reconciliation_id in pending:
        if shutdown_event.is_set():
            break
        try:
            with session_factory() as db:
                outcome = retry_reconciliation(db, tenant_id, reconciliation_id, max_attempts)
        except Exception as e:
            logger.error(
                f"Reconciliation retry failed for {reconciliation_id}: {e}",
                exc_info=True,
                extra={"tenant_id": tenant_id, "reconciliation_id": reconciliation_id},
            )
            outcome = "error"
        counts[outcome] = counts.get(outcome, 0) + 1

    return counts


def reconcile_loop(
    session_factory: SessionFactory,
    interval_seconds: Optional[int] = None,
    max_attempts: Optional[int] = None,
    limit_per_tenant: int = 100,
    stop_after_one_iteration: bool = False,
) -> None:
    """Reconciliation loop (runs in a background thread).

    Args:
        session_factory: SQLAlchemy sessionmaker
        interval_seconds: Sleep between sweeps (default: RECONCILE_INTERVAL_SEC or 60)
        max_attempts: Retries before refund review (default: RECONCILE_MAX_ATTEMPTS or 5)
        limit_per_tenant: Max pending rows per county per sweep
        stop_after_one_iteration: For testing only - exit after one sweep
    """
    if interval_seconds is None:
        interval_seconds = get_reconcile_interval_seconds()
    if max_attempts is None:
        max_attempts = get_reconcile_max_attempts()

    logger.info(f"Reconcile loop started (interval={interval_seconds}s, max_attempts={max_attempts})")

    iteration = 0
    while not shutdown_event.is_set():
        iteration += 1
        iteration_start = time.time()
        try:
            counts = run_reconcile_iteration(session_factory, max_attempts, limit_per_tenant)
            if counts:
                logger.info(
                    f"Reconcile iteration {iteration}: {counts}",
                    extra={
                        "iteration": iteration,
                        "outcomes": counts,
                        "duration_ms": int((time.time() - iteration_start) * 1000),
                    },
                )
        except Exception as e:
            logger.error(f"Reconcile loop error in iteration {iteration}: {e}", exc_info=True)

        if stop_after_one_iteration:
            logger.info("Reconcile loop stopping after one iteration (test mode)")
            break

        shutdown_event.wait(interval_seconds)

    logger.info(f"Reconcile loop stopped gracefully after {iteration} iterations")
