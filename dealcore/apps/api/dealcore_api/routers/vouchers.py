"""Voucher allowance and voucher record endpoints."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from dealcore_api.auth.actor import Actor, get_actor
from dealcore_api.auth.ownership import check_business_access
from dealcore_api.db.repo_deals import DealRepository
from dealcore_api.db.repo_purchases import PurchaseRepository
from dealcore_api.db.repo_vouchers import VoucherAuditRepository, VoucherRepository
from dealcore_api.db.session import get_db
from dealcore_api.results import Err, ErrorCode, ResultError, unwrap
from dealcore_api.schemas import AllowanceResponse, VoucherAuditEntry, VoucherDetailResponse
from dealcore_api.tenancy.resolver import TenantContext, get_tenant_context
from dealcore_api.utils.money import format_cents, format_optional_cents
from dealcore_api.vouchers.allowance import check_allowance

router = APIRouter(prefix="/vouchers", tags=["vouchers"])


@router.get("/allowance", response_model=AllowanceResponse)
def get_allowance(
    business_id: str = Query(..., min_length=1),
    requested_count: int = Query(1, ge=1),
    tenant: TenantContext = Depends(get_tenant_context),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
) -> AllowanceResponse:
    """Would issuing `requested_count` more vouchers this month fit the business's allowance?

    Read-only: answers with allowed=false instead of an error when it would not.
    """
    denied = check_business_access(db, tenant.tenant_id, actor, business_id)
    if denied:
        raise ResultError(denied)

    check = unwrap(check_allowance(db, tenant.tenant_id, business_id, requested_count))
    return AllowanceResponse(
        business_id=business_id,
        allowed=check.allowed,
        current_month_issued=check.current_month_issued,
        monthly_allowance=check.monthly_allowance,
        remaining=check.remaining,
        requested=check.requested,
        excess=check.excess,
        message=check.message,
    )


@router.get("/{voucher_id}", response_model=VoucherDetailResponse)
def get_voucher(
    voucher_id: str,
    tenant: TenantContext = Depends(get_tenant_context),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
) -> VoucherDetailResponse:
    """Voucher record with its audit trail.

    Visible to the customer who bought it, the business's vendor owner and
    admins; anyone else gets VOUCHER_NOT_FOUND.
    """
    voucher = VoucherRepository(db, tenant.tenant_id).get_by_id(voucher_id)
    purchase = PurchaseRepository(db, tenant.tenant_id).get_by_voucher(voucher_id) if voucher else None

    visible = voucher is not None and (
        actor.is_admin
        or (actor.is_user and purchase is not None and purchase.user_id == actor.user_id)
        or (actor.is_vendor and check_business_access(db, tenant.tenant_id, actor, voucher.business_id) is None)
    )
    if not visible:
        raise ResultError(Err(ErrorCode.VOUCHER_NOT_FOUND, "Voucher not found"))

    deal = DealRepository(db, tenant.tenant_id).get_by_id(voucher.deal_id)
    audit = VoucherAuditRepository(db, tenant.tenant_id).list_for_voucher(voucher.id)

    savings = None
    if deal is not None and deal.original_value_cents is not None and deal.deal_price_cents is not None:
        savings = format_cents(deal.original_value_cents - deal.deal_price_cents)

    return VoucherDetailResponse(
        voucher_id=voucher.id,
        deal_id=voucher.deal_id,
        business_id=voucher.business_id,
        deal_title=deal.title if deal else None,
        status=voucher.status,
        issued_at=voucher.issued_at,
        assigned_at=voucher.assigned_at,
        expires_at=voucher.expires_at,
        redeemed_at=voucher.redeemed_at,
        redeemed_by_business_id=voucher.redeemed_by_business_id,
        purchase_id=purchase.id if purchase else None,
        original_value=format_optional_cents(deal.original_value_cents) if deal else None,
        deal_price=format_optional_cents(deal.deal_price_cents) if deal else None,
        savings=savings,
        audit=[
            VoucherAuditEntry(
                action=entry.action,
                actor_type=entry.actor_type,
                actor_id=entry.actor_id,
                details=entry.details_json,
                created_at=entry.created_at,
            )
            for entry in audit
        ],
    )
