"""Pydantic schemas for API requests/responses.

Money crosses the API as 2dp decimal strings ("12.50") and is stored as
integer cents; conversion happens in the routers via utils.money.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

MONEY_PATTERN = r"^\d+(\.\d{1,2})?$"


# ============================================================================
# Deals
# ============================================================================


class DealFieldsPayload(BaseModel):
    """Editable deal content. Every field is optional so drafts can be saved incomplete."""

    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    category: Optional[str] = Field(None, max_length=100)
    original_value: Optional[str] = Field(None, pattern=MONEY_PATTERN, description="Decimal string, e.g. 40.00")
    deal_price: Optional[str] = Field(None, pattern=MONEY_PATTERN, description="Decimal string, e.g. 20.00")
    redemption_window_start: Optional[datetime] = None
    redemption_window_end: Optional[datetime] = None
    voucher_quantity_limit: Optional[int] = Field(None, ge=1)


class DealCreateRequest(DealFieldsPayload):
    """Request body for POST /v1/deals."""

    business_id: str = Field(..., min_length=1)


class DealUpdateRequest(DealFieldsPayload):
    """Request body for PATCH /v1/deals/{deal_id}."""


class DealResponse(BaseModel):
    deal_id: str
    business_id: str
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    original_value: Optional[str] = None
    deal_price: Optional[str] = None
    redemption_window_start: Optional[datetime] = None
    redemption_window_end: Optional[datetime] = None
    voucher_quantity_limit: Optional[int] = None
    status: str
    guard_status: str
    vouchers_sold: Optional[int] = None
    activated_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    created_at: datetime


class DealListResponse(BaseModel):
    deals: list[DealResponse]


class DealActivationResponse(BaseModel):
    """Response for POST /v1/admin/deals/{deal_id}/activate."""

    deal_id: str
    title: Optional[str] = None
    business_name: str
    previous_status: str
    new_status: str
    activated_at: datetime
    vouchers_materialized: int


class DealTransitionResponse(BaseModel):
    deal_id: str
    previous_status: str
    new_status: str
    changed_at: datetime


class GuardStatusRequest(BaseModel):
    guard_status: str = Field(..., description="pending, approved, rejected or suspended")


# ============================================================================
# Allowance
# ============================================================================


class AllowanceResponse(BaseModel):
    """Response for GET /v1/vouchers/allowance."""

    business_id: str
    allowed: bool
    current_month_issued: int
    monthly_allowance: Optional[int] = None
    remaining: Optional[int] = None
    requested: int
    excess: int = 0
    message: str


# ============================================================================
# Purchases
# ============================================================================


class PurchaseCreateRequest(BaseModel):
    """Request body for POST /v1/purchases (payment already confirmed upstream)."""

    deal_id: str = Field(..., min_length=1)
    payment_intent_id: str = Field(..., min_length=1, max_length=255)
    payment_provider: str = Field(..., min_length=1, max_length=50)
    amount_paid: str = Field(..., pattern=MONEY_PATTERN, description="Decimal string, e.g. 20.00")


class PurchaseReceiptResponse(BaseModel):
    """Response for POST /v1/purchases (201 Created)."""

    purchase_id: str
    voucher_id: str
    deal_id: str
    redemption_token: str
    expires_at: Optional[datetime] = None
    amount_paid: str
    created_at: datetime


class PurchaseResponse(BaseModel):
    """Response for GET /v1/purchases/{purchase_id}."""

    purchase_id: str
    deal_id: str
    voucher_id: str
    user_id: str
    payment_provider: str
    amount_paid: str
    status: str
    voucher_status: Optional[str] = None
    voucher_expires_at: Optional[datetime] = None
    redeemed_at: Optional[datetime] = None
    created_at: datetime


class PurchaseListResponse(BaseModel):
    """Response for GET /v1/purchases (the caller's own purchases)."""

    purchases: list[PurchaseResponse]


class PaymentFailureRequest(BaseModel):
    """Request body for POST /v1/purchases/payment-failures."""

    deal_id: Optional[str] = None
    payment_intent_id: Optional[str] = Field(None, max_length=255)
    payment_provider: str = Field(..., min_length=1, max_length=50)
    reason: Optional[str] = Field(None, max_length=500)


class PaymentFailureResponse(BaseModel):
    payment_failure_id: str
    recorded: bool = True


# ============================================================================
# Redemption
# ============================================================================


class RedemptionRequest(BaseModel):
    """Request body for POST /v1/redemptions."""

    redemption_token: str = Field(..., min_length=1, max_length=200)
    business_id: str = Field(..., min_length=1)


class RedemptionResponse(BaseModel):
    redeemed: bool
    voucher_id: str
    deal_id: str
    redeemed_at: datetime
    message: str = "Proceed with order"


class RedemptionHistoryItem(BaseModel):
    voucher_id: str
    deal_id: str
    deal_title: Optional[str] = None
    deal_category: Optional[str] = None
    original_value: Optional[str] = None
    deal_price: Optional[str] = None
    issued_at: datetime
    redeemed_at: Optional[datetime] = None
    hours_to_redeem: Optional[int] = None


class RedemptionSummary(BaseModel):
    total_redemptions: int
    total_revenue: str


class RedemptionHistoryResponse(BaseModel):
    """Response for GET /v1/redemptions (vendor redemption history)."""

    redemptions: list[RedemptionHistoryItem]
    summary: RedemptionSummary
    page: int
    limit: int
    total_count: int
    total_pages: int


# ============================================================================
# Vouchers
# ============================================================================


class VoucherAuditEntry(BaseModel):
    action: str
    actor_type: str
    actor_id: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    created_at: datetime


class VoucherDetailResponse(BaseModel):
    """Response for GET /v1/vouchers/{voucher_id}.

    The redemption token is never echoed back; it is shown once, on purchase.
    """

    voucher_id: str
    deal_id: str
    business_id: str
    deal_title: Optional[str] = None
    status: str
    issued_at: datetime
    assigned_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    redeemed_at: Optional[datetime] = None
    redeemed_by_business_id: Optional[str] = None
    purchase_id: Optional[str] = None
    original_value: Optional[str] = None
    deal_price: Optional[str] = None
    savings: Optional[str] = None
    audit: list[VoucherAuditEntry]


# ============================================================================
# Admin: review tasks and reconciliations
# ============================================================================


class ReviewTaskResponse(BaseModel):
    task_id: str
    task_type: str
    subject_type: str
    subject_id: str
    threshold: int
    observed: int
    window_seconds: int
    resolved: bool
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime


class ReviewTaskListResponse(BaseModel):
    tasks: list[ReviewTaskResponse]


class ReviewTaskResolveRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=2000)


class ReconciliationResponse(BaseModel):
    reconciliation_id: str
    user_id: str
    deal_id: str
    payment_intent_id: str
    payment_provider: str
    amount_paid: str
    failure_code: str
    state: str
    attempts: int
    last_error: Optional[str] = None
    purchase_id: Optional[str] = None
    created_at: datetime
    resolved_at: Optional[datetime] = None


class ReconciliationListResponse(BaseModel):
    reconciliations: list[ReconciliationResponse]


# ============================================================================
# RFC 9457 Problem Details
# ============================================================================


class ProblemDetail(BaseModel):
    """RFC 9457 Problem Details for HTTP API errors.

    `code` carries the machine-readable ErrorCode. Extension members
    (missing_fields, remaining, ...) are allowed as extra top-level fields.
    """

    model_config = ConfigDict(extra="allow")

    type: str = Field(..., description="URI reference identifying the problem type")
    title: str = Field(..., description="Short, human-readable summary")
    status: int = Field(..., description="HTTP status code")
    detail: str | dict[str, Any] = Field(..., description="Human-readable explanation or structured error details")
    instance: Optional[str] = Field(None, description="URI reference identifying the specific occurrence")
    code: Optional[str] = Field(None, description="Machine-readable error code")
