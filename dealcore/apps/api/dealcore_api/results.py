"""Explicit Ok/Err results and the error catalog.

Every guard and atomic operation returns ``Ok(value)`` or ``Err(code, detail)``.
Business outcomes never travel as exceptions; only unexpected faults raise, and
those are converted to the transaction-fatal category at the outermost boundary.

ErrorCode carries its HTTP status, title and category so routers can render any
Err as RFC 9457 Problem Details without a lookup table of their own.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Optional, TypeVar, Union

T = TypeVar("T")


class ErrorCategory(str, Enum):
    AUTHORIZATION = "authorization"
    STATE_CONFLICT = "state_conflict"
    RESOURCE_EXHAUSTION = "resource_exhaustion"
    CONCURRENCY_RACE = "concurrency_race"
    TRANSACTION_FATAL = "transaction_fatal"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"


class ErrorCode(str, Enum):
    # Tenant boundary
    TENANT_CONTEXT_REQUIRED = "TENANT_CONTEXT_REQUIRED"
    TENANT_NOT_FOUND = "TENANT_NOT_FOUND"
    TENANT_INACTIVE = "TENANT_INACTIVE"
    INVALID_TENANT_SLUG = "INVALID_TENANT_SLUG"

    # Authorization
    ADMIN_REQUIRED = "ADMIN_REQUIRED"
    USER_ROLE_REQUIRED = "USER_ROLE_REQUIRED"
    NOT_DEAL_OWNER = "NOT_DEAL_OWNER"
    NOT_BUSINESS_OWNER = "NOT_BUSINESS_OWNER"

    # Deal lifecycle
    DEAL_NOT_FOUND = "DEAL_NOT_FOUND"
    BUSINESS_NOT_FOUND = "BUSINESS_NOT_FOUND"
    BUSINESS_NOT_ACTIVE = "BUSINESS_NOT_ACTIVE"
    DEAL_NOT_INACTIVE = "DEAL_NOT_INACTIVE"
    INVALID_DEAL_TRANSITION = "INVALID_DEAL_TRANSITION"
    MISSING_REQUIRED_FIELDS = "MISSING_REQUIRED_FIELDS"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    CANNOT_DELETE_WITH_VOUCHERS = "CANNOT_DELETE_WITH_VOUCHERS"
    ALLOWANCE_EXCEEDED = "ALLOWANCE_EXCEEDED"

    # Purchase
    DEAL_NOT_ACTIVE = "DEAL_NOT_ACTIVE"
    DEAL_EXPIRED = "DEAL_EXPIRED"
    NO_AVAILABLE_VOUCHERS = "NO_AVAILABLE_VOUCHERS"
    PAYMENT_INTENT_ALREADY_USED = "PAYMENT_INTENT_ALREADY_USED"
    INVALID_PAYMENT_AMOUNT = "INVALID_PAYMENT_AMOUNT"
    DOUBLE_ASSIGNMENT_PREVENTED = "DOUBLE_ASSIGNMENT_PREVENTED"
    PURCHASE_TRANSACTION_FAILED = "PURCHASE_TRANSACTION_FAILED"
    PURCHASE_NOT_FOUND = "PURCHASE_NOT_FOUND"

    # Redemption
    VOUCHER_NOT_FOUND = "VOUCHER_NOT_FOUND"
    ALREADY_REDEEMED = "ALREADY_REDEEMED"
    INVALID_FOR_BUSINESS = "INVALID_FOR_BUSINESS"
    VOUCHER_NOT_ASSIGNED = "VOUCHER_NOT_ASSIGNED"
    VOUCHER_EXPIRED = "VOUCHER_EXPIRED"

    # Admin resources
    REVIEW_TASK_NOT_FOUND = "REVIEW_TASK_NOT_FOUND"

    @property
    def http_status(self) -> int:
        return _CATALOG[self][0]

    @property
    def http_title(self) -> str:
        return _CATALOG[self][1]

    @property
    def category(self) -> ErrorCategory:
        return _CATALOG[self][2]


# code -> (http status, title, category)
_CATALOG: dict[ErrorCode, tuple[int, str, ErrorCategory]] = {
    ErrorCode.TENANT_CONTEXT_REQUIRED: (400, "County context required", ErrorCategory.VALIDATION),
    ErrorCode.TENANT_NOT_FOUND: (404, "County not found", ErrorCategory.NOT_FOUND),
    ErrorCode.TENANT_INACTIVE: (403, "County is not active", ErrorCategory.AUTHORIZATION),
    ErrorCode.INVALID_TENANT_SLUG: (400, "Invalid county slug", ErrorCategory.VALIDATION),
    ErrorCode.ADMIN_REQUIRED: (403, "Administrator required", ErrorCategory.AUTHORIZATION),
    ErrorCode.USER_ROLE_REQUIRED: (403, "Customer account required", ErrorCategory.AUTHORIZATION),
    ErrorCode.NOT_DEAL_OWNER: (403, "Not the deal owner", ErrorCategory.AUTHORIZATION),
    ErrorCode.NOT_BUSINESS_OWNER: (403, "Not the business owner", ErrorCategory.AUTHORIZATION),
    ErrorCode.DEAL_NOT_FOUND: (404, "Deal not found", ErrorCategory.NOT_FOUND),
    ErrorCode.BUSINESS_NOT_FOUND: (404, "Business not found", ErrorCategory.NOT_FOUND),
    ErrorCode.BUSINESS_NOT_ACTIVE: (403, "Business is not active", ErrorCategory.AUTHORIZATION),
    ErrorCode.DEAL_NOT_INACTIVE: (409, "Deal is not inactive", ErrorCategory.STATE_CONFLICT),
    ErrorCode.INVALID_DEAL_TRANSITION: (400, "Invalid deal status transition", ErrorCategory.STATE_CONFLICT),
    ErrorCode.MISSING_REQUIRED_FIELDS: (400, "Missing required fields", ErrorCategory.VALIDATION),
    ErrorCode.VALIDATION_FAILED: (400, "Validation failed", ErrorCategory.VALIDATION),
    ErrorCode.CANNOT_DELETE_WITH_VOUCHERS: (409, "Deal has vouchers", ErrorCategory.STATE_CONFLICT),
    ErrorCode.ALLOWANCE_EXCEEDED: (409, "Monthly voucher allowance exceeded", ErrorCategory.RESOURCE_EXHAUSTION),
    ErrorCode.DEAL_NOT_ACTIVE: (409, "Deal is not active", ErrorCategory.STATE_CONFLICT),
    ErrorCode.DEAL_EXPIRED: (409, "Deal has expired", ErrorCategory.STATE_CONFLICT),
    ErrorCode.NO_AVAILABLE_VOUCHERS: (409, "No vouchers available", ErrorCategory.RESOURCE_EXHAUSTION),
    ErrorCode.PAYMENT_INTENT_ALREADY_USED: (409, "Payment already used", ErrorCategory.STATE_CONFLICT),
    ErrorCode.INVALID_PAYMENT_AMOUNT: (400, "Invalid payment amount", ErrorCategory.VALIDATION),
    ErrorCode.DOUBLE_ASSIGNMENT_PREVENTED: (409, "Voucher assignment conflict", ErrorCategory.CONCURRENCY_RACE),
    ErrorCode.PURCHASE_TRANSACTION_FAILED: (500, "Purchase transaction failed", ErrorCategory.TRANSACTION_FATAL),
    ErrorCode.PURCHASE_NOT_FOUND: (404, "Purchase not found", ErrorCategory.NOT_FOUND),
    ErrorCode.VOUCHER_NOT_FOUND: (404, "Voucher not found", ErrorCategory.NOT_FOUND),
    ErrorCode.ALREADY_REDEEMED: (409, "Voucher already redeemed", ErrorCategory.STATE_CONFLICT),
    ErrorCode.INVALID_FOR_BUSINESS: (403, "Voucher not valid for this business", ErrorCategory.AUTHORIZATION),
    ErrorCode.VOUCHER_NOT_ASSIGNED: (409, "Voucher has not been purchased", ErrorCategory.STATE_CONFLICT),
    ErrorCode.VOUCHER_EXPIRED: (409, "Voucher has expired", ErrorCategory.STATE_CONFLICT),
    ErrorCode.REVIEW_TASK_NOT_FOUND: (404, "Review task not found", ErrorCategory.NOT_FOUND),
}


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful outcome carrying a value."""

    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    """Failed outcome.

    ``extensions`` become extra RFC 9457 members (e.g. missing_fields,
    remaining/requested/excess).
    """

    code: ErrorCode
    detail: str = ""
    extensions: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]


class ResultError(Exception):
    """Carries an Err across a FastAPI dependency boundary.

    Raised by HTTP dependencies and routers only; the app's exception handler
    renders it as Problem Details, adding ``extra`` as top-level members.
    """

    def __init__(self, error: Err, extra: Optional[dict[str, Any]] = None):
        super().__init__(f"{error.code.value}: {error.detail}")
        self.error = error
        self.extra = extra or {}


def unwrap(result: Result[T]) -> T:
    """Value of an Ok, or raise ResultError for an Err (router use only)."""
    if isinstance(result, Err):
        raise ResultError(result)
    return result.value
