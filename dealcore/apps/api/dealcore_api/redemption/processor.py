"""Voucher redemption at the point of service.

A vendor presents a customer's redemption token for one of its businesses.
The answer is binary for the counter staff: proceed with the order, or do not
serve (with the reason).

Checks, in order:
  1. requesting business exists and the caller owns it (or is an admin)
  2. token exists in this county                -> VOUCHER_NOT_FOUND
  3. not already redeemed                       -> ALREADY_REDEEMED
  4. voucher belongs to the requesting business -> INVALID_FOR_BUSINESS
  5. voucher was purchased (assigned)           -> VOUCHER_NOT_ASSIGNED
  6. not past expires_at                        -> VOUCHER_EXPIRED
  7. conditional write assigned -> redeemed; zero rows means another
     redemption won the race                    -> ALREADY_REDEEMED
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from dealcore_api.auth.actor import Actor
from dealcore_api.auth.ownership import check_business_access
from dealcore_api.db.models import Voucher, VoucherStatus
from dealcore_api.db.repo_deals import DealRepository
from dealcore_api.db.repo_vouchers import VoucherAuditRepository, VoucherRepository
from dealcore_api.results import Err, ErrorCode, Ok, Result
from dealcore_api.utils.timeutil import as_utc, utcnow
from dealcore_api.vouchers.audit import AuditAction, actor_type_for

logger = logging.getLogger(__name__)

# Status a voucher must hold to be redeemable
REDEEMABLE_STATUS = VoucherStatus.ASSIGNED


@dataclass(frozen=True)
class RedemptionReceipt:
    voucher_id: str
    deal_id: str
    business_id: str
    redeemed_at: datetime


def _check_redeemable(voucher: Voucher, business_id: str, now: datetime) -> Optional[Err]:
    if voucher.status == VoucherStatus.REDEEMED:
        redeemed_at = as_utc(voucher.redeemed_at)
        return Err(
            ErrorCode.ALREADY_REDEEMED,
            "Voucher has already been redeemed",
            extensions={"redeemed_at": redeemed_at.isoformat() if redeemed_at else None},
        )
    if voucher.business_id != business_id:
        return Err(ErrorCode.INVALID_FOR_BUSINESS, "Voucher is not valid for this business")
    if voucher.status != REDEEMABLE_STATUS:
        return Err(ErrorCode.VOUCHER_NOT_ASSIGNED, "Voucher has not been purchased")
    expires_at = as_utc(voucher.expires_at)
    if expires_at is not None and expires_at <= now:
        return Err(
            ErrorCode.VOUCHER_EXPIRED,
            "Voucher has expired",
            extensions={"expires_at": expires_at.isoformat()},
        )
    return None


def _record_rejection(
    db: Session, tenant_id: str, actor: Actor, voucher_id: str, deal_id: str, business_id: str, error: Err
) -> None:
    """Audit a rejected attempt in its own transaction, after the attempt rolled back."""
    try:
        VoucherAuditRepository(db, tenant_id).record(
            voucher_id=voucher_id,
            deal_id=deal_id,
            action=AuditAction.REDEMPTION_REJECTED,
            actor_type=actor_type_for(actor),
            actor_id=actor.user_id,
            details={"reason": error.code.value, "requesting_business_id": business_id},
        )
        db.commit()
    except Exception:
        db.rollback()
        logger.error(
            "Failed to record redemption rejection",
            exc_info=True,
            extra={"event": "redemption.audit_failed", "tenant_id": tenant_id, "voucher_id": voucher_id},
        )


def redeem_voucher(
    db: Session,
    tenant_id: str,
    actor: Actor,
    redemption_token: str,
    business_id: str,
    now: Optional[datetime] = None,
) -> Result[RedemptionReceipt]:
    """Redeem a voucher exactly once for the business it was issued to."""
    now = now or utcnow()

    denied = check_business_access(db, tenant_id, actor, business_id)
    if denied:
        return denied

    vouchers = VoucherRepository(db, tenant_id)
    voucher = vouchers.get_by_token(redemption_token)
    if voucher is None:
        logger.info(
            "redemption.rejected",
            extra={
                "event": "redemption.rejected",
                "tenant_id": tenant_id,
                "business_id": business_id,
                "code": ErrorCode.VOUCHER_NOT_FOUND.value,
            },
        )
        return Err(ErrorCode.VOUCHER_NOT_FOUND, "Voucher not found")

    voucher_id, deal_id = voucher.id, voucher.deal_id
    error = _check_redeemable(voucher, business_id, now)
    if error is None:
        try:
            if vouchers.redeem(voucher_id, business_id, now, precondition=REDEEMABLE_STATUS):
                DealRepository(db, tenant_id).touch_last_active(deal_id, now)
                VoucherAuditRepository(db, tenant_id).record(
                    voucher_id=voucher_id,
                    deal_id=deal_id,
                    action=AuditAction.REDEEMED,
                    actor_type=actor_type_for(actor),
                    actor_id=actor.user_id,
                    details={"business_id": business_id},
                )
                db.commit()
            else:
                db.rollback()
                error = Err(ErrorCode.ALREADY_REDEEMED, "Voucher has already been redeemed")
        except Exception:
            db.rollback()
            raise

    if error is not None:
        db.rollback()
        _record_rejection(db, tenant_id, actor, voucher_id, deal_id, business_id, error)
        logger.info(
            "redemption.rejected",
            extra={
                "event": "redemption.rejected",
                "tenant_id": tenant_id,
                "voucher_id": voucher_id,
                "business_id": business_id,
                "code": error.code.value,
            },
        )
        return error

    logger.info(
        "redemption.completed",
        extra={
            "event": "redemption.completed",
            "tenant_id": tenant_id,
            "voucher_id": voucher_id,
            "deal_id": deal_id,
            "business_id": business_id,
        },
    )
    return Ok(RedemptionReceipt(voucher_id=voucher_id, deal_id=deal_id, business_id=business_id, redeemed_at=now))
