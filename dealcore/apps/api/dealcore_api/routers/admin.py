"""Admin endpoints.

Every route requires X-Admin-Token (constant-time compare against
ADMIN_TOKEN) and a resolved county; admins act within one county at a time.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from dealcore_api.auth.actor import Actor, require_admin
from dealcore_api.db.models import PurchaseReconciliation, ReviewTask
from dealcore_api.db.repo_purchases import ReconciliationRepository, ReviewTaskRepository
from dealcore_api.db.session import get_db
from dealcore_api.deals import lifecycle
from dealcore_api.results import Err, ErrorCode, ResultError, unwrap
from dealcore_api.routers.deals import deal_to_response
from dealcore_api.schemas import (
    DealActivationResponse,
    DealResponse,
    DealTransitionResponse,
    GuardStatusRequest,
    ReconciliationListResponse,
    ReconciliationResponse,
    ReviewTaskListResponse,
    ReviewTaskResolveRequest,
    ReviewTaskResponse,
)
from dealcore_api.tenancy.resolver import TenantContext, get_tenant_context
from dealcore_api.utils.money import format_cents
from dealcore_api.utils.timeutil import utcnow

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)


def _task_response(task: ReviewTask) -> ReviewTaskResponse:
    return ReviewTaskResponse(
        task_id=task.id,
        task_type=task.task_type,
        subject_type=task.subject_type,
        subject_id=task.subject_id,
        threshold=task.threshold,
        observed=task.observed,
        window_seconds=task.window_seconds,
        resolved=task.resolved,
        resolved_at=task.resolved_at,
        resolved_by=task.resolved_by,
        notes=task.notes,
        created_at=task.created_at,
    )


def _reconciliation_response(row: PurchaseReconciliation) -> ReconciliationResponse:
    return ReconciliationResponse(
        reconciliation_id=row.id,
        user_id=row.user_id,
        deal_id=row.deal_id,
        payment_intent_id=row.payment_intent_id,
        payment_provider=row.payment_provider,
        amount_paid=format_cents(row.amount_paid_cents),
        failure_code=row.failure_code,
        state=row.state,
        attempts=row.attempts,
        last_error=row.last_error,
        purchase_id=row.purchase_id,
        created_at=row.created_at,
        resolved_at=row.resolved_at,
    )


# ============================================================================
# Deal lifecycle
# ============================================================================


@router.post("/deals/{deal_id}/activate", response_model=DealActivationResponse)
def activate_deal(
    deal_id: str,
    tenant: TenantContext = Depends(get_tenant_context),
    admin: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
) -> DealActivationResponse:
    """Activate an inactive deal and materialize its voucher inventory.

    Fails with 400 (missing_fields / validation), 409 (not inactive,
    allowance exceeded) or 403 (business not active).
    """
    result = unwrap(lifecycle.activate_deal(db, tenant.tenant_id, admin, deal_id))
    return DealActivationResponse(
        deal_id=result.deal_id,
        title=result.title,
        business_name=result.business_name,
        previous_status=result.previous_status,
        new_status=result.new_status,
        activated_at=result.activated_at,
        vouchers_materialized=result.vouchers_materialized,
    )


@router.post("/deals/{deal_id}/expire", response_model=DealTransitionResponse)
def expire_deal(
    deal_id: str,
    tenant: TenantContext = Depends(get_tenant_context),
    admin: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
) -> DealTransitionResponse:
    result = unwrap(lifecycle.expire_deal(db, tenant.tenant_id, admin, deal_id))
    return DealTransitionResponse(
        deal_id=result.deal_id,
        previous_status=result.previous_status,
        new_status=result.new_status,
        changed_at=result.changed_at,
    )


@router.put("/deals/{deal_id}/guard-status", response_model=DealResponse)
def set_guard_status(
    deal_id: str,
    payload: GuardStatusRequest,
    tenant: TenantContext = Depends(get_tenant_context),
    admin: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
) -> DealResponse:
    """Record the content evaluator's verdict. Never changes the lifecycle status."""
    deal = unwrap(lifecycle.set_guard_status(db, tenant.tenant_id, admin, deal_id, payload.guard_status))
    return deal_to_response(deal)


# ============================================================================
# Review tasks (passive monitor output)
# ============================================================================


@router.get("/review-tasks", response_model=ReviewTaskListResponse)
def list_review_tasks(
    resolved: Optional[bool] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    tenant: TenantContext = Depends(get_tenant_context),
    admin: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
) -> ReviewTaskListResponse:
    tasks = ReviewTaskRepository(db, tenant.tenant_id).list_tasks(resolved=resolved, limit=limit)
    return ReviewTaskListResponse(tasks=[_task_response(t) for t in tasks])


@router.post("/review-tasks/{task_id}/resolve", response_model=ReviewTaskResponse)
def resolve_review_task(
    task_id: str,
    payload: Optional[ReviewTaskResolveRequest] = None,
    tenant: TenantContext = Depends(get_tenant_context),
    admin: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
) -> ReviewTaskResponse:
    task = ReviewTaskRepository(db, tenant.tenant_id).get_by_id(task_id)
    if task is None:
        raise ResultError(Err(ErrorCode.REVIEW_TASK_NOT_FOUND, "Review task not found"))

    if not task.resolved:
        try:
            task.resolved = True
            task.resolved_at = utcnow()
            task.resolved_by = admin.user_id
            task.notes = payload.notes if payload else None
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(task)
        logger.info(
            "monitor.review_task_resolved",
            extra={
                "event": "monitor.review_task_resolved",
                "tenant_id": tenant.tenant_id,
                "task_id": task_id,
                "admin_id": admin.user_id,
            },
        )
    return _task_response(task)


# ============================================================================
# Purchase reconciliation outbox
# ============================================================================


@router.get("/reconciliations", response_model=ReconciliationListResponse)
def list_reconciliations(
    state: Optional[str] = Query(None, description="pending_retry, refund_required or resolved"),
    limit: int = Query(100, ge=1, le=500),
    tenant: TenantContext = Depends(get_tenant_context),
    admin: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
) -> ReconciliationListResponse:
    rows = ReconciliationRepository(db, tenant.tenant_id).list_by_state(state=state, limit=limit)
    return ReconciliationListResponse(reconciliations=[_reconciliation_response(r) for r in rows])
