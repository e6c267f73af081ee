"""SQLAlchemy ORM Models for dealcore.

Every business row carries the tenant_id of its owning county. Money is stored
as integer cents (BIGINT); timestamps are timezone-aware UTC.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BIGINT, BOOLEAN, JSON, TEXT, TIMESTAMP, CheckConstraint, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Status vocabularies
class BusinessStatus:
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"


class DealStatus:
    INACTIVE = "inactive"
    ACTIVE = "active"
    EXPIRED = "expired"


class GuardStatus:
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUSPENDED = "suspended"

    ALL = frozenset({PENDING, APPROVED, REJECTED, SUSPENDED})


class VoucherStatus:
    AVAILABLE = "available"
    ASSIGNED = "assigned"
    REDEEMED = "redeemed"


class PurchaseStatus:
    COMPLETED = "completed"


class ReconciliationState:
    PENDING_RETRY = "pending_retry"
    REFUND_REQUIRED = "refund_required"
    RESOLVED = "resolved"


class Tenant(Base):
    """County tenant. Every other row is scoped to exactly one tenant."""

    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    slug: Mapped[str] = mapped_column(TEXT, nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(TEXT, nullable=False)
    is_active: Mapped[bool] = mapped_column(BOOLEAN, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=_now)


class Business(Base):
    """Vendor account owning deals and vouchers."""

    __tablename__ = "businesses"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(TEXT, nullable=False)  # FK to tenants
    owner_user_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    name: Mapped[str] = mapped_column(TEXT, nullable=False)
    status: Mapped[str] = mapped_column(TEXT, nullable=False, default=BusinessStatus.PENDING)

    # NULL = unlimited issuance
    monthly_voucher_allowance: Mapped[Optional[int]] = mapped_column(BIGINT, nullable=True)

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=_now)

    __table_args__ = (
        Index("idx_businesses_tenant", "tenant_id"),
        Index("idx_businesses_owner", "owner_user_id"),
    )


class Deal(Base):
    """Limited-inventory offer.

    Content fields stay nullable so drafts can be saved incomplete; activation
    enforces completeness.
    """

    __tablename__ = "deals"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    business_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    created_by_user_id: Mapped[str] = mapped_column(TEXT, nullable=False)

    title: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    original_value_cents: Mapped[Optional[int]] = mapped_column(BIGINT, nullable=True)
    deal_price_cents: Mapped[Optional[int]] = mapped_column(BIGINT, nullable=True)
    redemption_window_start: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    redemption_window_end: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    voucher_quantity_limit: Mapped[Optional[int]] = mapped_column(BIGINT, nullable=True)

    # Lifecycle axis (inactive -> active -> expired)
    status: Mapped[str] = mapped_column(TEXT, nullable=False, default=DealStatus.INACTIVE)
    # Advisory guard axis, set from the external content evaluator
    guard_status: Mapped[str] = mapped_column(TEXT, nullable=False, default=GuardStatus.PENDING)

    last_active_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    activated_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    expired_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_now, onupdate=_now
    )

    __table_args__ = (
        Index("idx_deals_tenant_status", "tenant_id", "status"),
        Index("idx_deals_business", "business_id"),
        CheckConstraint(
            "deal_price_cents IS NULL OR original_value_cents IS NULL OR deal_price_cents < original_value_cents",
            name="ck_deals_price_below_value",
        ),
    )


class Voucher(Base):
    """Single allocatable unit of a deal. Status only moves forward."""

    __tablename__ = "vouchers"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    deal_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    business_id: Mapped[str] = mapped_column(TEXT, nullable=False)

    redemption_token: Mapped[str] = mapped_column(TEXT, nullable=False, unique=True)
    status: Mapped[str] = mapped_column(TEXT, nullable=False, default=VoucherStatus.AVAILABLE)

    issued_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=_now)
    assigned_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    redeemed_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    redeemed_by_business_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)

    __table_args__ = (
        Index("idx_vouchers_deal_status", "deal_id", "status"),
        Index("idx_vouchers_business_issued", "business_id", "issued_at"),
        Index("idx_vouchers_tenant", "tenant_id"),
    )


class Purchase(Base):
    """Immutable record binding one confirmed payment to one voucher."""

    __tablename__ = "purchases"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    user_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    deal_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    voucher_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    payment_intent_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    payment_provider: Mapped[str] = mapped_column(TEXT, nullable=False)
    amount_paid_cents: Mapped[int] = mapped_column(BIGINT, nullable=False)
    status: Mapped[str] = mapped_column(TEXT, nullable=False, default=PurchaseStatus.COMPLETED)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=_now)

    __table_args__ = (
        UniqueConstraint("payment_intent_id", name="uq_purchases_payment_intent_id"),
        UniqueConstraint("voucher_id", name="uq_purchases_voucher_id"),
        Index("idx_purchases_user_created", "tenant_id", "user_id", "created_at"),
        Index("idx_purchases_deal_created", "tenant_id", "deal_id", "created_at"),
    )


class PaymentFailure(Base):
    """Failed payment attempt reported by the payment collaborator."""

    __tablename__ = "payment_failures"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    user_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    deal_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    payment_intent_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    payment_provider: Mapped[str] = mapped_column(TEXT, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=_now)

    __table_args__ = (Index("idx_payment_failures_user_created", "tenant_id", "user_id", "created_at"),)


class ReviewTask(Base):
    """Advisory task raised by the passive monitor for human review."""

    __tablename__ = "review_tasks"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    task_type: Mapped[str] = mapped_column(TEXT, nullable=False)
    subject_type: Mapped[str] = mapped_column(TEXT, nullable=False)  # user/deal
    subject_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    threshold: Mapped[int] = mapped_column(BIGINT, nullable=False)
    observed: Mapped[int] = mapped_column(BIGINT, nullable=False)
    window_seconds: Mapped[int] = mapped_column(BIGINT, nullable=False)
    resolved: Mapped[bool] = mapped_column(BOOLEAN, nullable=False, default=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    resolved_by: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=_now)

    __table_args__ = (
        Index("idx_review_tasks_subject", "tenant_id", "task_type", "subject_id", "resolved"),
    )


class PurchaseReconciliation(Base):
    """Outbox row for an allocation that failed after payment was confirmed."""

    __tablename__ = "purchase_reconciliations"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    user_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    deal_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    payment_intent_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    payment_provider: Mapped[str] = mapped_column(TEXT, nullable=False)
    amount_paid_cents: Mapped[int] = mapped_column(BIGINT, nullable=False)

    failure_code: Mapped[str] = mapped_column(TEXT, nullable=False)
    state: Mapped[str] = mapped_column(TEXT, nullable=False, default=ReconciliationState.PENDING_RETRY)
    attempts: Mapped[int] = mapped_column(BIGINT, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    purchase_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_now, onupdate=_now
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("payment_intent_id", name="uq_reconciliations_payment_intent_id"),
        Index("idx_reconciliations_tenant_state", "tenant_id", "state"),
    )


class VoucherAuditLog(Base):
    """Append-only voucher event trail."""

    __tablename__ = "voucher_audit_logs"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    voucher_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    deal_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    actor_type: Mapped[str] = mapped_column(TEXT, nullable=False)  # system/user/vendor/admin
    actor_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    action: Mapped[str] = mapped_column(TEXT, nullable=False)  # issued/assigned/redeemed/redemption_rejected
    details_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=_now)

    __table_args__ = (Index("idx_voucher_audit_voucher", "tenant_id", "voucher_id"),)
