"""Purchase allocation: bind one confirmed payment to exactly one voucher.

One SERIALIZABLE transaction, committed whole or not at all:
  1. payment intent has a Purchase in any county -> PAYMENT_INTENT_ALREADY_USED
  2. deal exists / active / approved / in window, amount equals price
  3. pick one available voucher                -> NO_AVAILABLE_VOUCHERS
  4. re-read it under lock; not available      -> DOUBLE_ASSIGNMENT_PREVENTED
  5. conditional write available -> assigned   -> DOUBLE_ASSIGNMENT_PREVENTED on 0 rows
  6. insert the immutable Purchase
  7. touch deal.last_active_at, audit `assigned`

The transaction is bounded (DEALCORE_PURCHASE_TX_TIMEOUT_SEC, default 10s):
PostgreSQL gets SET LOCAL statement_timeout, and a wall-clock deadline is
checked before commit. Nothing here retries; the caller has already captured
the payment and decides what happens next (see purchases.reconciliation).

The unique constraint on payment_intent_id is the last word on duplicates: a
concurrent duplicate that slips past step 1 fails at flush and maps to
PAYMENT_INTENT_ALREADY_USED.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from dealcore_api.config.env import get_purchase_tx_timeout_sec
from dealcore_api.db.models import DealStatus, GuardStatus, Purchase, PurchaseStatus, VoucherStatus
from dealcore_api.db.repo_deals import DealRepository
from dealcore_api.db.repo_purchases import PurchaseRepository, payment_intent_in_use
from dealcore_api.db.repo_vouchers import VoucherAuditRepository, VoucherRepository
from dealcore_api.results import Err, ErrorCode, Ok, Result
from dealcore_api.utils.timeutil import as_utc, utcnow
from dealcore_api.vouchers.audit import AuditAction, AuditActor

logger = logging.getLogger(__name__)

SERIALIZATION_FAILURE_SQLSTATES = frozenset({"40001", "40P01"})  # serialization failure, deadlock
QUERY_CANCELED_SQLSTATE = "57014"  # statement_timeout


@dataclass(frozen=True)
class PurchaseRequest:
    user_id: str
    deal_id: str
    payment_intent_id: str
    payment_provider: str
    amount_paid_cents: int


@dataclass(frozen=True)
class PurchaseReceipt:
    purchase_id: str
    voucher_id: str
    deal_id: str
    redemption_token: str
    expires_at: Optional[datetime]
    amount_paid_cents: int
    created_at: datetime


class _DeadlineExceeded(Exception):
    pass


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def _is_payment_intent_violation(exc: IntegrityError) -> bool:
    return "payment_intent" in str(exc.orig).lower()


def _begin_serializable(db: Session, timeout_sec: float) -> None:
    """Open the allocation transaction at SERIALIZABLE on this session's connection.

    Isolation only applies to a fresh connection checkout, so any read left
    open by request dependencies is ended first.
    """
    if db.in_transaction():
        db.rollback()
    connection = db.connection(execution_options={"isolation_level": "SERIALIZABLE"})
    if connection.dialect.name == "postgresql":
        db.execute(text(f"SET LOCAL statement_timeout = {int(timeout_sec * 1000)}"))


def _check_deadline(deadline: float) -> None:
    if time.monotonic() > deadline:
        raise _DeadlineExceeded()


def _allocate_in_transaction(
    db: Session, tenant_id: str, request: PurchaseRequest, now: datetime, deadline: float
) -> Result[PurchaseReceipt]:
    purchases = PurchaseRepository(db, tenant_id)
    if payment_intent_in_use(db, request.payment_intent_id):
        return Err(
            ErrorCode.PAYMENT_INTENT_ALREADY_USED,
            "This payment has already been used for a purchase",
            extensions={"payment_intent_id": request.payment_intent_id},
        )

    deals = DealRepository(db, tenant_id)
    deal = deals.get_by_id(request.deal_id)
    if deal is None:
        return Err(ErrorCode.DEAL_NOT_FOUND, "Deal not found")
    if deal.status == DealStatus.EXPIRED:
        return Err(ErrorCode.DEAL_EXPIRED, "Deal has expired")
    if deal.status != DealStatus.ACTIVE:
        return Err(ErrorCode.DEAL_NOT_ACTIVE, f"Deal is {deal.status}")
    if deal.guard_status != GuardStatus.APPROVED:
        return Err(ErrorCode.DEAL_NOT_ACTIVE, "Deal is not approved for sale")
    window_end = as_utc(deal.redemption_window_end)
    if window_end is not None and window_end <= now:
        return Err(ErrorCode.DEAL_EXPIRED, "Deal redemption window has ended")
    if request.amount_paid_cents != deal.deal_price_cents:
        return Err(
            ErrorCode.INVALID_PAYMENT_AMOUNT,
            "Amount paid does not match the deal price",
            extensions={"expected_cents": deal.deal_price_cents, "received_cents": request.amount_paid_cents},
        )

    _check_deadline(deadline)

    vouchers = VoucherRepository(db, tenant_id)
    voucher_id = vouchers.pick_available_id(deal.id)
    if voucher_id is None:
        return Err(ErrorCode.NO_AVAILABLE_VOUCHERS, "No vouchers available for this deal")

    voucher = vouchers.lock_by_id(voucher_id)
    if voucher is None or voucher.status != VoucherStatus.AVAILABLE:
        return Err(ErrorCode.DOUBLE_ASSIGNMENT_PREVENTED, "Voucher was assigned concurrently")

    if not vouchers.assign(voucher.id, now):
        return Err(ErrorCode.DOUBLE_ASSIGNMENT_PREVENTED, "Voucher was assigned concurrently")

    purchase = purchases.add(
        Purchase(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            user_id=request.user_id,
            deal_id=deal.id,
            voucher_id=voucher.id,
            payment_intent_id=request.payment_intent_id,
            payment_provider=request.payment_provider,
            amount_paid_cents=request.amount_paid_cents,
            status=PurchaseStatus.COMPLETED,
            created_at=now,
        )
    )
    db.flush()

    deals.touch_last_active(deal.id, now)
    VoucherAuditRepository(db, tenant_id).record(
        voucher_id=voucher.id,
        deal_id=deal.id,
        action=AuditAction.ASSIGNED,
        actor_type=AuditActor.USER,
        actor_id=request.user_id,
        details={"purchase_id": purchase.id, "payment_provider": request.payment_provider},
    )

    _check_deadline(deadline)

    return Ok(
        PurchaseReceipt(
            purchase_id=purchase.id,
            voucher_id=voucher.id,
            deal_id=deal.id,
            redemption_token=voucher.redemption_token,
            expires_at=as_utc(voucher.expires_at),
            amount_paid_cents=request.amount_paid_cents,
            created_at=now,
        )
    )


def allocate_voucher(
    db: Session,
    tenant_id: str,
    request: PurchaseRequest,
    timeout_sec: Optional[float] = None,
    now: Optional[datetime] = None,
) -> Result[PurchaseReceipt]:
    """Atomically assign one voucher to a confirmed payment.

    Never raises for database faults: every failure rolls back and comes back
    as Err. Unexpected faults are logged with traceback and reported as
    PURCHASE_TRANSACTION_FAILED.
    """
    timeout_sec = timeout_sec if timeout_sec is not None else get_purchase_tx_timeout_sec()
    deadline = time.monotonic() + timeout_sec
    now = now or utcnow()
    log_extra = {
        "tenant_id": tenant_id,
        "deal_id": request.deal_id,
        "user_id": request.user_id,
        "payment_intent_id": request.payment_intent_id,
    }

    try:
        _begin_serializable(db, timeout_sec)
        result = _allocate_in_transaction(db, tenant_id, request, now, deadline)
        if isinstance(result, Err):
            db.rollback()
            logger.info(
                "purchase.rejected",
                extra={"event": "purchase.rejected", "code": result.code.value, **log_extra},
            )
            return result
        db.commit()

    except _DeadlineExceeded:
        db.rollback()
        logger.warning(
            "purchase.timeout",
            extra={"event": "purchase.timeout", "timeout_sec": timeout_sec, **log_extra},
        )
        return Err(ErrorCode.PURCHASE_TRANSACTION_FAILED, "Purchase transaction timed out")

    except IntegrityError as e:
        db.rollback()
        if _is_payment_intent_violation(e):
            logger.info(
                "purchase.duplicate_intent",
                extra={"event": "purchase.duplicate_intent", **log_extra},
            )
            return Err(
                ErrorCode.PAYMENT_INTENT_ALREADY_USED,
                "This payment has already been used for a purchase",
                extensions={"payment_intent_id": request.payment_intent_id},
            )
        logger.warning(
            "purchase.assignment_conflict",
            extra={"event": "purchase.assignment_conflict", **log_extra},
        )
        return Err(ErrorCode.DOUBLE_ASSIGNMENT_PREVENTED, "Voucher was assigned concurrently")

    except DBAPIError as e:
        db.rollback()
        sqlstate = _sqlstate(e)
        if sqlstate in SERIALIZATION_FAILURE_SQLSTATES:
            logger.warning(
                "purchase.serialization_conflict",
                extra={"event": "purchase.serialization_conflict", "sqlstate": sqlstate, **log_extra},
            )
            return Err(ErrorCode.DOUBLE_ASSIGNMENT_PREVENTED, "Concurrent purchase conflict, please retry")
        if sqlstate == QUERY_CANCELED_SQLSTATE:
            logger.warning(
                "purchase.timeout",
                extra={"event": "purchase.timeout", "timeout_sec": timeout_sec, **log_extra},
            )
            return Err(ErrorCode.PURCHASE_TRANSACTION_FAILED, "Purchase transaction timed out")
        logger.error(
            f"Purchase transaction failed: {e}",
            exc_info=True,
            extra={"event": "purchase.failed", "sqlstate": sqlstate, **log_extra},
        )
        return Err(ErrorCode.PURCHASE_TRANSACTION_FAILED, "Purchase could not be completed")

    except Exception as e:
        db.rollback()
        logger.error(
            f"Purchase transaction failed unexpectedly: {e}",
            exc_info=True,
            extra={"event": "purchase.failed", **log_extra},
        )
        return Err(ErrorCode.PURCHASE_TRANSACTION_FAILED, "Purchase could not be completed")

    receipt = result.value
    logger.info(
        "purchase.completed",
        extra={
            "event": "purchase.completed",
            "purchase_id": receipt.purchase_id,
            "voucher_id": receipt.voucher_id,
            **log_extra,
        },
    )
    return result
