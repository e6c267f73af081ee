"""Purchase endpoints.

POST /purchases is called once the payment collaborator has captured the
money. The request names the confirmed payment intent; the allocator binds it
to exactly one voucher. When allocation fails after payment, the failure is
written to the reconciliation outbox before the error is returned.
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from dealcore_api.auth.actor import Actor, get_actor
from dealcore_api.db.models import PaymentFailure, Purchase, Voucher
from dealcore_api.db.repo_purchases import PaymentFailureRepository, PurchaseRepository
from dealcore_api.db.repo_vouchers import VoucherRepository
from dealcore_api.db.session import get_db, get_session_factory
from dealcore_api.monitoring.passive_monitor import observe_payment_failure, observe_purchase
from dealcore_api.purchases.allocator import PurchaseRequest, allocate_voucher
from dealcore_api.purchases.reconciliation import record_failed_allocation
from dealcore_api.results import Err, ErrorCode, ResultError
from dealcore_api.schemas import (
    PaymentFailureRequest,
    PaymentFailureResponse,
    PurchaseCreateRequest,
    PurchaseListResponse,
    PurchaseReceiptResponse,
    PurchaseResponse,
)
from dealcore_api.tenancy.resolver import TenantContext, get_tenant_context
from dealcore_api.utils.money import MoneyError, format_cents, parse_money_string

router = APIRouter(prefix="/purchases", tags=["purchases"])
logger = logging.getLogger(__name__)


def _require_user(actor: Actor) -> None:
    if not actor.is_user:
        raise ResultError(Err(ErrorCode.USER_ROLE_REQUIRED, "Only customer accounts can purchase vouchers"))


@router.post("", status_code=status.HTTP_201_CREATED, response_model=PurchaseReceiptResponse)
def create_purchase(
    payload: PurchaseCreateRequest,
    background_tasks: BackgroundTasks,
    tenant: TenantContext = Depends(get_tenant_context),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
) -> PurchaseReceiptResponse:
    """Allocate one voucher for a confirmed payment.

    Returns the redemption token exactly once; it is the customer's proof of
    purchase at the counter.
    """
    _require_user(actor)
    try:
        amount_cents = parse_money_string(payload.amount_paid)
    except MoneyError as e:
        raise ResultError(Err(ErrorCode.INVALID_PAYMENT_AMOUNT, str(e)))

    request = PurchaseRequest(
        user_id=actor.user_id,
        deal_id=payload.deal_id,
        payment_intent_id=payload.payment_intent_id,
        payment_provider=payload.payment_provider,
        amount_paid_cents=amount_cents,
    )
    result = allocate_voucher(db, tenant.tenant_id, request)

    if isinstance(result, Err):
        try:
            record_failed_allocation(db, tenant.tenant_id, request, result)
        except Exception as e:
            logger.error(
                f"Failed to record purchase reconciliation: {e}",
                exc_info=True,
                extra={
                    "event": "purchase.reconciliation_failed",
                    "tenant_id": tenant.tenant_id,
                    "payment_intent_id": request.payment_intent_id,
                },
            )
        raise ResultError(result)

    receipt = result.value
    background_tasks.add_task(observe_purchase, session_factory, tenant.tenant_id, actor.user_id, receipt.deal_id)

    return PurchaseReceiptResponse(
        purchase_id=receipt.purchase_id,
        voucher_id=receipt.voucher_id,
        deal_id=receipt.deal_id,
        redemption_token=receipt.redemption_token,
        expires_at=receipt.expires_at,
        amount_paid=format_cents(receipt.amount_paid_cents),
        created_at=receipt.created_at,
    )


@router.post(
    "/payment-failures",
    status_code=status.HTTP_201_CREATED,
    response_model=PaymentFailureResponse,
)
def report_payment_failure(
    payload: PaymentFailureRequest,
    background_tasks: BackgroundTasks,
    tenant: TenantContext = Depends(get_tenant_context),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
) -> PaymentFailureResponse:
    """Record a failed payment attempt for the passive monitor's counters."""
    _require_user(actor)
    repo = PaymentFailureRepository(db, tenant.tenant_id)
    try:
        failure = repo.add(
            PaymentFailure(
                tenant_id=tenant.tenant_id,
                user_id=actor.user_id,
                deal_id=payload.deal_id,
                payment_intent_id=payload.payment_intent_id,
                payment_provider=payload.payment_provider,
                reason=payload.reason,
            )
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    background_tasks.add_task(observe_payment_failure, session_factory, tenant.tenant_id, actor.user_id)
    return PaymentFailureResponse(payment_failure_id=failure.id)


def _purchase_response(purchase: Purchase, voucher: Optional[Voucher]) -> PurchaseResponse:
    return PurchaseResponse(
        purchase_id=purchase.id,
        deal_id=purchase.deal_id,
        voucher_id=purchase.voucher_id,
        user_id=purchase.user_id,
        payment_provider=purchase.payment_provider,
        amount_paid=format_cents(purchase.amount_paid_cents),
        status=purchase.status,
        voucher_status=voucher.status if voucher else None,
        voucher_expires_at=voucher.expires_at if voucher else None,
        redeemed_at=voucher.redeemed_at if voucher else None,
        created_at=purchase.created_at,
    )


@router.get("", response_model=PurchaseListResponse)
def list_my_purchases(
    voucher_status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    tenant: TenantContext = Depends(get_tenant_context),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
) -> PurchaseListResponse:
    """The caller's own purchases in this county, newest first.

    `voucher_status=redeemed` narrows the list to the caller's redemption history.
    """
    _require_user(actor)
    rows = PurchaseRepository(db, tenant.tenant_id).list_for_user(
        actor.user_id, voucher_status=voucher_status, limit=limit
    )
    return PurchaseListResponse(purchases=[_purchase_response(p, v) for p, v in rows])


@router.get("/{purchase_id}", response_model=PurchaseResponse)
def get_purchase(
    purchase_id: str,
    tenant: TenantContext = Depends(get_tenant_context),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
) -> PurchaseResponse:
    """Purchase read-back for its buyer or an admin.

    Other callers get PURCHASE_NOT_FOUND so purchase ids cannot be enumerated.
    """
    purchase = PurchaseRepository(db, tenant.tenant_id).get_by_id(purchase_id)
    if purchase is None or not (actor.is_admin or purchase.user_id == actor.user_id):
        raise ResultError(Err(ErrorCode.PURCHASE_NOT_FOUND, "Purchase not found"))

    voucher = VoucherRepository(db, tenant.tenant_id).get_by_id(purchase.voucher_id)
    return _purchase_response(purchase, voucher)
