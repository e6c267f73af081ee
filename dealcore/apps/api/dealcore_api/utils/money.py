"""Money conversion utilities.

All monetary amounts are persisted as integer cents (BIGINT). The HTTP API
exchanges decimal strings with at most two fractional digits ("12.50").
Floats never take part in a conversion.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

MAX_CENTS = 100_000_000_00  # 100 million in currency units


class MoneyError(ValueError):
    """Base error for money conversion."""


class NegativeAmountError(MoneyError):
    """Amount is below zero."""


class AmountTooLargeError(MoneyError):
    """Amount exceeds MAX_CENTS."""


def validate_cents(cents: int) -> int:
    """Validate a cents value and return it unchanged.

    Raises:
        MoneyError: Not an int (bool is rejected too)
        NegativeAmountError: cents < 0
        AmountTooLargeError: cents > MAX_CENTS
    """
    if isinstance(cents, bool) or not isinstance(cents, int):
        raise MoneyError(f"Amount must be integer cents, got {type(cents).__name__}")
    if cents < 0:
        raise NegativeAmountError(f"Amount cannot be negative: {cents}")
    if cents > MAX_CENTS:
        raise AmountTooLargeError(f"Amount exceeds maximum: {cents}")
    return cents


def decimal_to_cents(amount: Decimal) -> int:
    """Convert a Decimal amount to integer cents.

    Sub-cent precision is rejected rather than rounded so that a payment
    amount never silently changes.
    """
    quantized = amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    if quantized != amount:
        raise MoneyError(f"Amount has more than 2 decimal places: {amount}")
    return validate_cents(int(quantized * 100))


def parse_money_string(value: str) -> int:
    """Parse a decimal string ("12.50") into integer cents."""
    if not isinstance(value, str) or not value.strip():
        raise MoneyError("Amount must be a non-empty decimal string")
    try:
        amount = Decimal(value.strip())
    except InvalidOperation as e:
        raise MoneyError(f"Invalid amount: {value!r}") from e
    if not amount.is_finite():
        raise MoneyError(f"Invalid amount: {value!r}")
    return decimal_to_cents(amount)


def format_cents(cents: int) -> str:
    """Format integer cents as a 2dp decimal string."""
    validate_cents(cents)
    return f"{Decimal(cents) / 100:.2f}"


def format_optional_cents(cents: Optional[int]) -> Optional[str]:
    return None if cents is None else format_cents(cents)
