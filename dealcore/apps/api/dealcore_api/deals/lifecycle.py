"""Deal lifecycle management.

Two independent axes:
- status (lifecycle): inactive -> active -> expired, nothing else
- guard_status (advisory): verdict of the external content evaluator; a deal
  must be `approved` to sell, but guard changes never move the lifecycle

Ownership: the vendor who owns the deal's business, or an administrator.
Activation is administrator-only and materializes the deal's whole voucher
inventory in the same transaction as the status change.
"""

import logging
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from dealcore_api.auth.actor import Actor
from dealcore_api.db.models import Business, BusinessStatus, Deal, DealStatus, GuardStatus, VoucherStatus
from dealcore_api.db.repo_deals import BusinessRepository, DealRepository
from dealcore_api.db.repo_vouchers import VoucherRepository
from dealcore_api.results import Err, ErrorCode, Ok, Result
from dealcore_api.utils.timeutil import as_utc, utcnow
from dealcore_api.vouchers.allowance import allowance_error, check_allowance
from dealcore_api.vouchers.audit import actor_type_for
from dealcore_api.vouchers.inventory import materialize_vouchers

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    DealStatus.INACTIVE: frozenset({DealStatus.ACTIVE}),
    DealStatus.ACTIVE: frozenset({DealStatus.EXPIRED}),
    DealStatus.EXPIRED: frozenset(),
}

# (api field name, model attribute)
REQUIRED_FOR_ACTIVATION: tuple[tuple[str, str], ...] = (
    ("title", "title"),
    ("description", "description"),
    ("category", "category"),
    ("original_value", "original_value_cents"),
    ("deal_price", "deal_price_cents"),
    ("redemption_window_start", "redemption_window_start"),
    ("redemption_window_end", "redemption_window_end"),
    ("voucher_quantity_limit", "voucher_quantity_limit"),
)


@dataclass
class DealFields:
    """Editable deal content. None means "not provided"."""

    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    original_value_cents: Optional[int] = None
    deal_price_cents: Optional[int] = None
    redemption_window_start: Optional[datetime] = None
    redemption_window_end: Optional[datetime] = None
    voucher_quantity_limit: Optional[int] = None

    def provided(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}


@dataclass(frozen=True)
class ActivationResult:
    deal_id: str
    title: Optional[str]
    previous_status: str
    new_status: str
    activated_at: datetime
    vouchers_materialized: int
    business_name: str


@dataclass(frozen=True)
class TransitionResult:
    deal_id: str
    previous_status: str
    new_status: str
    changed_at: datetime


def validate_transition(current: str, target: str) -> Optional[Err]:
    if target not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        return Err(
            ErrorCode.INVALID_DEAL_TRANSITION,
            f"Cannot transition deal from {current} to {target}",
            extensions={"from_status": current, "to_status": target},
        )
    return None


def missing_required_fields(deal: Deal) -> list[str]:
    missing = []
    for api_name, attr in REQUIRED_FOR_ACTIVATION:
        value = getattr(deal, attr)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(api_name)
    return missing


def validate_deal_values(values: dict[str, Any]) -> list[dict[str, str]]:
    """Field-level checks over the merged (stored + incoming) deal values."""
    errors = []
    original = values.get("original_value_cents")
    price = values.get("deal_price_cents")
    if original is not None and original < 0:
        errors.append({"field": "original_value", "message": "Must not be negative"})
    if price is not None and price < 0:
        errors.append({"field": "deal_price", "message": "Must not be negative"})
    if original is not None and price is not None and price >= original:
        errors.append({"field": "deal_price", "message": "Must be less than original value"})

    start = as_utc(values.get("redemption_window_start"))
    end = as_utc(values.get("redemption_window_end"))
    if start is not None and end is not None and end <= start:
        errors.append({"field": "redemption_window_end", "message": "Must be after redemption window start"})

    quantity = values.get("voucher_quantity_limit")
    if quantity is not None and quantity < 1:
        errors.append({"field": "voucher_quantity_limit", "message": "Must be at least 1"})
    return errors


def _validation_error(errors: list[dict[str, str]]) -> Err:
    return Err(
        ErrorCode.VALIDATION_FAILED,
        "; ".join(f"{e['field']}: {e['message']}" for e in errors),
        extensions={"errors": errors},
    )


def _check_owner(actor: Actor, business: Business) -> Optional[Err]:
    if actor.is_admin:
        return None
    if actor.is_vendor and business.owner_user_id == actor.user_id:
        return None
    return Err(ErrorCode.NOT_DEAL_OWNER, "Only the business owner or an administrator may change this deal")


def _load_owned_deal(
    db: Session, tenant_id: str, actor: Actor, deal_id: str
) -> Result[tuple[Deal, Business]]:
    deal = DealRepository(db, tenant_id).get_by_id(deal_id)
    if deal is None:
        return Err(ErrorCode.DEAL_NOT_FOUND, "Deal not found")
    business = BusinessRepository(db, tenant_id).get_by_id(deal.business_id)
    if business is None:
        return Err(ErrorCode.BUSINESS_NOT_FOUND, "Business for this deal not found")
    denied = _check_owner(actor, business)
    if denied:
        return denied
    return Ok((deal, business))


def _normalize(values: dict[str, Any]) -> dict[str, Any]:
    for key in ("redemption_window_start", "redemption_window_end"):
        if values.get(key) is not None:
            values[key] = as_utc(values[key])
    return values


def get_deal(db: Session, tenant_id: str, deal_id: str) -> Result[Deal]:
    deal = DealRepository(db, tenant_id).get_by_id(deal_id)
    if deal is None:
        return Err(ErrorCode.DEAL_NOT_FOUND, "Deal not found")
    return Ok(deal)


def create_deal(
    db: Session, tenant_id: str, actor: Actor, business_id: str, deal_fields: DealFields
) -> Result[Deal]:
    """Create an inactive deal draft. Incomplete drafts are allowed."""
    business = BusinessRepository(db, tenant_id).get_by_id(business_id)
    if business is None:
        return Err(ErrorCode.BUSINESS_NOT_FOUND, "Business not found")
    denied = _check_owner(actor, business)
    if denied:
        return denied
    if business.status != BusinessStatus.ACTIVE:
        return Err(ErrorCode.BUSINESS_NOT_ACTIVE, "Business must be active to create deals")

    values = _normalize(deal_fields.provided())
    errors = validate_deal_values(values)
    if errors:
        return _validation_error(errors)

    repo = DealRepository(db, tenant_id)
    try:
        deal = repo.add(
            Deal(
                tenant_id=tenant_id,
                business_id=business.id,
                created_by_user_id=actor.user_id,
                status=DealStatus.INACTIVE,
                guard_status=GuardStatus.PENDING,
                **values,
            )
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(deal)

    logger.info(
        "deal.created",
        extra={"event": "deal.created", "tenant_id": tenant_id, "deal_id": deal.id, "business_id": business.id},
    )
    return Ok(deal)


def update_deal(
    db: Session, tenant_id: str, actor: Actor, deal_id: str, deal_fields: DealFields
) -> Result[Deal]:
    """Edit content fields. Only inactive deals are editable."""
    loaded = _load_owned_deal(db, tenant_id, actor, deal_id)
    if isinstance(loaded, Err):
        return loaded
    deal, _business = loaded.value

    if deal.status != DealStatus.INACTIVE:
        return Err(ErrorCode.DEAL_NOT_INACTIVE, f"Deal is {deal.status}; only inactive deals can be edited")

    changes = _normalize(deal_fields.provided())
    merged = {attr: getattr(deal, attr) for _, attr in REQUIRED_FOR_ACTIVATION}
    merged.update(changes)
    errors = validate_deal_values(merged)
    if errors:
        return _validation_error(errors)

    try:
        for key, value in changes.items():
            setattr(deal, key, value)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(deal)
    return Ok(deal)


def activate_deal(
    db: Session, tenant_id: str, actor: Actor, deal_id: str, now: Optional[datetime] = None
) -> Result[ActivationResult]:
    """inactive -> active, materializing voucher_quantity_limit vouchers atomically.

    Checks, in order: admin, deal exists, deal inactive, business active,
    required fields present, field values valid, monthly allowance.
    """
    if not actor.is_admin:
        return Err(ErrorCode.ADMIN_REQUIRED, "Only administrators can activate deals")

    now = now or utcnow()
    deals = DealRepository(db, tenant_id)
    deal = deals.get_by_id(deal_id)
    if deal is None:
        return Err(ErrorCode.DEAL_NOT_FOUND, "Deal not found")
    if deal.status != DealStatus.INACTIVE:
        return Err(
            ErrorCode.DEAL_NOT_INACTIVE,
            f"Deal is {deal.status}; only inactive deals can be activated",
            extensions={"current_status": deal.status},
        )

    # Locked until commit so concurrent activations for one business count allowance serially
    business = BusinessRepository(db, tenant_id).lock_by_id(deal.business_id)
    if business is None:
        return Err(ErrorCode.BUSINESS_NOT_FOUND, "Business for this deal not found")
    if business.status != BusinessStatus.ACTIVE:
        return Err(ErrorCode.BUSINESS_NOT_ACTIVE, "Business must be active before its deals can be activated")

    missing = missing_required_fields(deal)
    if missing:
        return Err(
            ErrorCode.MISSING_REQUIRED_FIELDS,
            f"Missing required fields for activation: {', '.join(missing)}",
            extensions={
                "missing_fields": missing,
                "details": [{"field": name, "message": "Required for activation"} for name in missing],
            },
        )

    errors = validate_deal_values({attr: getattr(deal, attr) for _, attr in REQUIRED_FOR_ACTIVATION})
    if errors:
        return _validation_error(errors)

    quantity = int(deal.voucher_quantity_limit)
    allowance = check_allowance(db, tenant_id, business.id, quantity, now=now)
    if isinstance(allowance, Err):
        return allowance
    if not allowance.value.allowed:
        return allowance_error(allowance.value)

    previous_status = deal.status
    try:
        if not deals.transition_status(
            deal.id, DealStatus.INACTIVE, DealStatus.ACTIVE, activated_at=now, last_active_at=now
        ):
            db.rollback()
            return Err(ErrorCode.DEAL_NOT_INACTIVE, "Deal was activated concurrently")

        voucher_ids = materialize_vouchers(
            db,
            tenant_id,
            deal,
            quantity,
            issued_at=now,
            actor_type=actor_type_for(actor),
            actor_id=actor.user_id,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "deal.activated",
        extra={
            "event": "deal.activated",
            "tenant_id": tenant_id,
            "deal_id": deal_id,
            "business_id": business.id,
            "admin_id": actor.user_id,
            "vouchers_materialized": len(voucher_ids),
        },
    )
    return Ok(
        ActivationResult(
            deal_id=deal_id,
            title=deal.title,
            previous_status=previous_status,
            new_status=DealStatus.ACTIVE,
            activated_at=now,
            vouchers_materialized=len(voucher_ids),
            business_name=business.name,
        )
    )


def expire_deal(
    db: Session, tenant_id: str, actor: Actor, deal_id: str, now: Optional[datetime] = None
) -> Result[TransitionResult]:
    """active -> expired (administrator only). Issued vouchers are left untouched."""
    if not actor.is_admin:
        return Err(ErrorCode.ADMIN_REQUIRED, "Only administrators can expire deals")

    now = now or utcnow()
    deals = DealRepository(db, tenant_id)
    deal = deals.get_by_id(deal_id)
    if deal is None:
        return Err(ErrorCode.DEAL_NOT_FOUND, "Deal not found")

    invalid = validate_transition(deal.status, DealStatus.EXPIRED)
    if invalid:
        return invalid

    previous_status = deal.status
    try:
        if not deals.transition_status(deal.id, DealStatus.ACTIVE, DealStatus.EXPIRED, expired_at=now):
            db.rollback()
            return Err(ErrorCode.INVALID_DEAL_TRANSITION, "Deal status changed concurrently")
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "deal.expired",
        extra={"event": "deal.expired", "tenant_id": tenant_id, "deal_id": deal_id, "admin_id": actor.user_id},
    )
    return Ok(
        TransitionResult(
            deal_id=deal_id, previous_status=previous_status, new_status=DealStatus.EXPIRED, changed_at=now
        )
    )


def delete_deal(db: Session, tenant_id: str, actor: Actor, deal_id: str) -> Result[str]:
    """Delete an inactive deal that never had vouchers."""
    loaded = _load_owned_deal(db, tenant_id, actor, deal_id)
    if isinstance(loaded, Err):
        return loaded
    deal, _business = loaded.value

    if deal.status != DealStatus.INACTIVE:
        return Err(ErrorCode.DEAL_NOT_INACTIVE, f"Deal is {deal.status}; only inactive deals can be deleted")

    voucher_count = VoucherRepository(db, tenant_id).count_for_deal(deal.id)
    if voucher_count > 0:
        return Err(
            ErrorCode.CANNOT_DELETE_WITH_VOUCHERS,
            f"Deal has {voucher_count} vouchers and cannot be deleted",
            extensions={"voucher_count": voucher_count},
        )

    try:
        db.delete(deal)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("deal.deleted", extra={"event": "deal.deleted", "tenant_id": tenant_id, "deal_id": deal_id})
    return Ok(deal_id)


def set_guard_status(
    db: Session, tenant_id: str, actor: Actor, deal_id: str, guard_status: str
) -> Result[Deal]:
    """Record the content evaluator's verdict. Lifecycle status is not touched."""
    if not actor.is_admin:
        return Err(ErrorCode.ADMIN_REQUIRED, "Only administrators can set guard status")
    if guard_status not in GuardStatus.ALL:
        return Err(
            ErrorCode.VALIDATION_FAILED,
            f"Unknown guard status: {guard_status}",
            extensions={"errors": [{"field": "guard_status", "message": "Unknown value"}]},
        )

    deal = DealRepository(db, tenant_id).get_by_id(deal_id)
    if deal is None:
        return Err(ErrorCode.DEAL_NOT_FOUND, "Deal not found")

    previous = deal.guard_status
    try:
        deal.guard_status = guard_status
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(deal)

    logger.info(
        "deal.guard_status_changed",
        extra={
            "event": "deal.guard_status_changed",
            "tenant_id": tenant_id,
            "deal_id": deal_id,
            "previous_guard_status": previous,
            "guard_status": guard_status,
            "admin_id": actor.user_id,
        },
    )
    return Ok(deal)


def count_sold(db: Session, tenant_id: str, deal_id: str) -> int:
    """Vouchers no longer available (assigned or redeemed)."""
    return VoucherRepository(db, tenant_id).count_for_deal(
        deal_id, statuses=(VoucherStatus.ASSIGNED, VoucherStatus.REDEEMED)
    )
