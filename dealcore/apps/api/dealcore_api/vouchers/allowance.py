"""Monthly voucher issuance allowance.

issued_this_month counts a business's vouchers whose issued_at falls in the
current calendar month, [month_start, next_month_start), computed in the
marketplace timezone (DEALCORE_TIMEZONE). A null allowance means unlimited.

The allowance governs issuance only. Vouchers already issued stay valid
whatever the allowance later becomes.
"""

from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Optional

from sqlalchemy.orm import Session

from dealcore_api.config.env import get_marketplace_timezone
from dealcore_api.db.repo_deals import BusinessRepository
from dealcore_api.db.repo_vouchers import VoucherRepository
from dealcore_api.results import Err, ErrorCode, Ok, Result
from dealcore_api.utils.timeutil import utcnow


@dataclass(frozen=True)
class AllowanceCheck:
    allowed: bool
    current_month_issued: int
    monthly_allowance: Optional[int]
    remaining: Optional[int]
    requested: int
    excess: int
    message: str


def month_window(now: datetime, tz: tzinfo) -> tuple[datetime, datetime]:
    """Half-open calendar month containing `now` in `tz`, returned as UTC datetimes."""
    local = now.astimezone(tz)
    start = datetime(local.year, local.month, 1, tzinfo=tz)
    if local.month == 12:
        end = datetime(local.year + 1, 1, 1, tzinfo=tz)
    else:
        end = datetime(local.year, local.month + 1, 1, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def evaluate_allowance(
    issued: int, monthly_allowance: Optional[int], requested: int
) -> AllowanceCheck:
    """Pure allowance decision for a request of `requested` new vouchers."""
    if monthly_allowance is None:
        return AllowanceCheck(
            allowed=True,
            current_month_issued=issued,
            monthly_allowance=None,
            remaining=None,
            requested=requested,
            excess=0,
            message="No monthly allowance set. Unlimited issuance allowed.",
        )

    remaining = max(0, monthly_allowance - issued)
    if requested <= remaining:
        return AllowanceCheck(
            allowed=True,
            current_month_issued=issued,
            monthly_allowance=monthly_allowance,
            remaining=remaining,
            requested=requested,
            excess=0,
            message=f"Issuance allowed. {remaining - requested} vouchers remaining after this issuance.",
        )

    excess = requested - remaining
    return AllowanceCheck(
        allowed=False,
        current_month_issued=issued,
        monthly_allowance=monthly_allowance,
        remaining=remaining,
        requested=requested,
        excess=excess,
        message=(
            f"Monthly allowance exceeded. Requested {requested}, but only {remaining} remaining. "
            f"Would exceed by {excess}."
        ),
    )


def check_allowance(
    db: Session,
    tenant_id: str,
    business_id: str,
    requested_count: int,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> Result[AllowanceCheck]:
    """Allowance status for issuing `requested_count` vouchers to a business now.

    Returns Ok(AllowanceCheck) whether or not issuance is allowed; callers that
    enforce the guard turn `allowed=False` into ALLOWANCE_EXCEEDED.
    """
    if requested_count < 1:
        return Err(ErrorCode.VALIDATION_FAILED, "requested_count must be at least 1")

    business = BusinessRepository(db, tenant_id).get_by_id(business_id)
    if business is None:
        return Err(ErrorCode.BUSINESS_NOT_FOUND, "Business not found")

    start, end = month_window(now or utcnow(), tz or get_marketplace_timezone())
    issued = VoucherRepository(db, tenant_id).count_issued_between(business_id, start, end)
    return Ok(evaluate_allowance(issued, business.monthly_voucher_allowance, requested_count))


def allowance_error(check: AllowanceCheck) -> Err:
    return Err(
        ErrorCode.ALLOWANCE_EXCEEDED,
        check.message,
        extensions={
            "remaining": check.remaining,
            "requested": check.requested,
            "excess": check.excess,
            "monthly_allowance": check.monthly_allowance,
            "current_month_issued": check.current_month_issued,
        },
    )
