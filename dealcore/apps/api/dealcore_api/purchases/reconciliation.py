"""Post-payment reconciliation outbox.

The allocator runs only after the payment collaborator has captured the
money. When allocation then fails, the confirmed payment must not be lost:

- pending_retry   : transient failure (transaction fault, concurrency race);
                    the reaper retries with the same payment intent id, so a
                    retry can never produce a second Purchase
- refund_required : the deal cannot deliver (sold out, inactive, expired,
                    wrong amount); a human or the payment collaborator refunds
- resolved        : a Purchase now exists for the intent

PAYMENT_INTENT_ALREADY_USED needs no row: that intent already has its voucher.
"""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from dealcore_api.db.models import PurchaseReconciliation, ReconciliationState
from dealcore_api.db.repo_purchases import ReconciliationRepository
from dealcore_api.purchases.allocator import PurchaseRequest
from dealcore_api.results import Err, ErrorCode
from dealcore_api.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

RETRYABLE_CODES = frozenset({
    ErrorCode.PURCHASE_TRANSACTION_FAILED,
    ErrorCode.DOUBLE_ASSIGNMENT_PREVENTED,
})

REFUND_CODES = frozenset({
    ErrorCode.NO_AVAILABLE_VOUCHERS,
    ErrorCode.DEAL_NOT_FOUND,
    ErrorCode.DEAL_NOT_ACTIVE,
    ErrorCode.DEAL_EXPIRED,
    ErrorCode.INVALID_PAYMENT_AMOUNT,
})


def state_for_failure(code: ErrorCode) -> Optional[str]:
    """Outbox state for an allocation failure, or None when nothing is owed."""
    if code in RETRYABLE_CODES:
        return ReconciliationState.PENDING_RETRY
    if code in REFUND_CODES:
        return ReconciliationState.REFUND_REQUIRED
    return None


def record_failed_allocation(
    db: Session, tenant_id: str, request: PurchaseRequest, error: Err
) -> Optional[PurchaseReconciliation]:
    """Persist an outbox row for a failed allocation of a confirmed payment.

    A second failure for the same intent updates the existing row instead of
    creating another one.

    Returns:
        The outbox row, or None when the failure leaves nothing to reconcile.
    """
    state = state_for_failure(error.code)
    if state is None:
        return None

    repo = ReconciliationRepository(db, tenant_id)
    try:
        row = repo.get_by_payment_intent(request.payment_intent_id)
        if row is None:
            row = repo.add(
                PurchaseReconciliation(
                    tenant_id=tenant_id,
                    user_id=request.user_id,
                    deal_id=request.deal_id,
                    payment_intent_id=request.payment_intent_id,
                    payment_provider=request.payment_provider,
                    amount_paid_cents=request.amount_paid_cents,
                    failure_code=error.code.value,
                    state=state,
                    attempts=0,
                    last_error=error.detail,
                )
            )
        elif row.state != ReconciliationState.RESOLVED:
            row.failure_code = error.code.value
            row.state = state
            row.last_error = error.detail
        db.commit()
    except IntegrityError:
        # Concurrent duplicate for the same intent: the other writer's row stands
        db.rollback()
        row = repo.get_by_payment_intent(request.payment_intent_id)
    except Exception:
        db.rollback()
        raise

    logger.warning(
        "purchase.reconciliation_recorded",
        extra={
            "event": "purchase.reconciliation_recorded",
            "tenant_id": tenant_id,
            "payment_intent_id": request.payment_intent_id,
            "failure_code": error.code.value,
            "state": state,
        },
    )
    return row


def mark_resolved(db: Session, row: PurchaseReconciliation, purchase_id: Optional[str]) -> None:
    row.state = ReconciliationState.RESOLVED
    row.purchase_id = purchase_id
    row.resolved_at = utcnow()
    db.commit()


def mark_retry_failed(db: Session, row: PurchaseReconciliation, error: Err, max_attempts: int) -> str:
    """Count a failed retry; escalate to refund review when out of attempts or not retryable."""
    row.attempts = (row.attempts or 0) + 1
    row.failure_code = error.code.value
    row.last_error = error.detail
    next_state = state_for_failure(error.code) or ReconciliationState.REFUND_REQUIRED
    if next_state == ReconciliationState.PENDING_RETRY and row.attempts >= max_attempts:
        next_state = ReconciliationState.REFUND_REQUIRED
    row.state = next_state
    db.commit()
    return next_state


def request_from_row(row: PurchaseReconciliation) -> PurchaseRequest:
    return PurchaseRequest(
        user_id=row.user_id,
        deal_id=row.deal_id,
        payment_intent_id=row.payment_intent_id,
        payment_provider=row.payment_provider,
        amount_paid_cents=row.amount_paid_cents,
    )
