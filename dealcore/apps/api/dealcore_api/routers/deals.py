"""Deal draft endpoints for vendors.

Vendors create and edit inactive drafts for their own businesses; activation
and expiry are admin operations (see routers.admin).
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from dealcore_api.auth.actor import Actor, get_actor
from dealcore_api.db.models import Deal
from dealcore_api.db.repo_deals import DealRepository
from dealcore_api.db.session import get_db
from dealcore_api.deals import lifecycle
from dealcore_api.deals.lifecycle import DealFields
from dealcore_api.results import Err, ErrorCode, ResultError, unwrap
from dealcore_api.schemas import (
    DealCreateRequest,
    DealFieldsPayload,
    DealListResponse,
    DealResponse,
    DealUpdateRequest,
)
from dealcore_api.tenancy.resolver import TenantContext, get_tenant_context
from dealcore_api.utils.money import MoneyError, format_optional_cents, parse_money_string

router = APIRouter(prefix="/deals", tags=["deals"])
logger = logging.getLogger(__name__)


def _cents(field_name: str, value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return parse_money_string(value)
    except MoneyError as e:
        raise ResultError(
            Err(
                ErrorCode.VALIDATION_FAILED,
                f"{field_name}: {e}",
                extensions={"errors": [{"field": field_name, "message": str(e)}]},
            )
        )


def fields_from_payload(payload: DealFieldsPayload) -> DealFields:
    return DealFields(
        title=payload.title,
        description=payload.description,
        category=payload.category,
        original_value_cents=_cents("original_value", payload.original_value),
        deal_price_cents=_cents("deal_price", payload.deal_price),
        redemption_window_start=payload.redemption_window_start,
        redemption_window_end=payload.redemption_window_end,
        voucher_quantity_limit=payload.voucher_quantity_limit,
    )


def deal_to_response(deal: Deal, vouchers_sold: Optional[int] = None) -> DealResponse:
    return DealResponse(
        deal_id=deal.id,
        business_id=deal.business_id,
        title=deal.title,
        description=deal.description,
        category=deal.category,
        original_value=format_optional_cents(deal.original_value_cents),
        deal_price=format_optional_cents(deal.deal_price_cents),
        redemption_window_start=deal.redemption_window_start,
        redemption_window_end=deal.redemption_window_end,
        voucher_quantity_limit=deal.voucher_quantity_limit,
        status=deal.status,
        guard_status=deal.guard_status,
        vouchers_sold=vouchers_sold,
        activated_at=deal.activated_at,
        expired_at=deal.expired_at,
        created_at=deal.created_at,
    )


@router.post("", status_code=status.HTTP_201_CREATED, response_model=DealResponse)
def create_deal(
    payload: DealCreateRequest,
    tenant: TenantContext = Depends(get_tenant_context),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
) -> DealResponse:
    """Create an inactive deal draft for one of the caller's businesses.

    Drafts may be incomplete; completeness is enforced at activation.
    """
    deal = unwrap(lifecycle.create_deal(db, tenant.tenant_id, actor, payload.business_id, fields_from_payload(payload)))
    return deal_to_response(deal, vouchers_sold=0)


@router.get("", response_model=DealListResponse)
def list_deals(
    business_id: Optional[str] = Query(None),
    deal_status: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    tenant: TenantContext = Depends(get_tenant_context),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
) -> DealListResponse:
    deals = DealRepository(db, tenant.tenant_id).list_deals(business_id=business_id, status=deal_status, limit=limit)
    return DealListResponse(deals=[deal_to_response(d) for d in deals])


@router.get("/{deal_id}", response_model=DealResponse)
def get_deal(
    deal_id: str,
    tenant: TenantContext = Depends(get_tenant_context),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
) -> DealResponse:
    deal = unwrap(lifecycle.get_deal(db, tenant.tenant_id, deal_id))
    return deal_to_response(deal, vouchers_sold=lifecycle.count_sold(db, tenant.tenant_id, deal.id))


@router.patch("/{deal_id}", response_model=DealResponse)
def update_deal(
    deal_id: str,
    payload: DealUpdateRequest,
    tenant: TenantContext = Depends(get_tenant_context),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
) -> DealResponse:
    """Edit an inactive draft. Active and expired deals are read-only."""
    deal = unwrap(lifecycle.update_deal(db, tenant.tenant_id, actor, deal_id, fields_from_payload(payload)))
    return deal_to_response(deal)


@router.delete("/{deal_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_deal(
    deal_id: str,
    tenant: TenantContext = Depends(get_tenant_context),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
) -> Response:
    unwrap(lifecycle.delete_deal(db, tenant.tenant_id, actor, deal_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
