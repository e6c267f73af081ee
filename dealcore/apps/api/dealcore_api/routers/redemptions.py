"""Point-of-service redemption and vendor redemption history."""

import math
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from dealcore_api.auth.actor import Actor, get_actor
from dealcore_api.auth.ownership import check_business_access
from dealcore_api.db.repo_vouchers import VoucherRepository
from dealcore_api.db.session import get_db
from dealcore_api.redemption.processor import redeem_voucher
from dealcore_api.results import Err, ResultError
from dealcore_api.schemas import (
    RedemptionHistoryItem,
    RedemptionHistoryResponse,
    RedemptionRequest,
    RedemptionResponse,
    RedemptionSummary,
)
from dealcore_api.tenancy.resolver import TenantContext, get_tenant_context
from dealcore_api.utils.money import format_cents, format_optional_cents

router = APIRouter(prefix="/redemptions", tags=["redemptions"])

DO_NOT_SERVE = {"redeemed": False, "action": "do_not_serve"}


@router.post("", response_model=RedemptionResponse)
def redeem(
    payload: RedemptionRequest,
    tenant: TenantContext = Depends(get_tenant_context),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
) -> RedemptionResponse:
    """Redeem a voucher at the counter.

    200 means proceed with the order. Any problem response carries
    `redeemed: false` and `action: do_not_serve` with the reason in `code`.
    """
    result = redeem_voucher(db, tenant.tenant_id, actor, payload.redemption_token, payload.business_id)
    if isinstance(result, Err):
        raise ResultError(result, extra=DO_NOT_SERVE)

    receipt = result.value
    return RedemptionResponse(
        redeemed=True,
        voucher_id=receipt.voucher_id,
        deal_id=receipt.deal_id,
        redeemed_at=receipt.redeemed_at,
    )


@router.get("", response_model=RedemptionHistoryResponse)
def list_redemptions(
    business_id: str = Query(..., min_length=1),
    deal_id: Optional[str] = Query(None),
    start: Optional[datetime] = Query(None, description="Inclusive lower bound on redeemed_at"),
    end: Optional[datetime] = Query(None, description="Inclusive upper bound on redeemed_at"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=50),
    tenant: TenantContext = Depends(get_tenant_context),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
) -> RedemptionHistoryResponse:
    """Redemption history for the business's vendor owner (or an admin)."""
    denied = check_business_access(db, tenant.tenant_id, actor, business_id)
    if denied:
        raise ResultError(denied)

    repo = VoucherRepository(db, tenant.tenant_id)
    rows = repo.list_redemptions(business_id, deal_id, start, end, offset=(page - 1) * limit, limit=limit)
    total_count = repo.count_redemptions(business_id, deal_id, start, end)
    total_redemptions, revenue_cents = repo.redemption_totals(business_id)

    items = []
    for voucher, deal in rows:
        hours = None
        if voucher.redeemed_at is not None:
            hours = round((voucher.redeemed_at - voucher.issued_at).total_seconds() / 3600)
        items.append(
            RedemptionHistoryItem(
                voucher_id=voucher.id,
                deal_id=deal.id,
                deal_title=deal.title,
                deal_category=deal.category,
                original_value=format_optional_cents(deal.original_value_cents),
                deal_price=format_optional_cents(deal.deal_price_cents),
                issued_at=voucher.issued_at,
                redeemed_at=voucher.redeemed_at,
                hours_to_redeem=hours,
            )
        )

    return RedemptionHistoryResponse(
        redemptions=items,
        summary=RedemptionSummary(total_redemptions=total_redemptions, total_revenue=format_cents(revenue_cents)),
        page=page,
        limit=limit,
        total_count=total_count,
        total_pages=math.ceil(total_count / limit),
    )
