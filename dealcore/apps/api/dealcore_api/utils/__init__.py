"""Utility functions and helpers."""

from dealcore_api.utils.logging import JSONFormatter, configure_json_logging
from dealcore_api.utils.money import (
    AmountTooLargeError,
    MoneyError,
    NegativeAmountError,
    decimal_to_cents,
    format_cents,
    parse_money_string,
    validate_cents,
)
from dealcore_api.utils.timeutil import as_utc, utcnow

__all__ = [
    "MoneyError",
    "NegativeAmountError",
    "AmountTooLargeError",
    "decimal_to_cents",
    "format_cents",
    "parse_money_string",
    "validate_cents",
    "as_utc",
    "utcnow",
    "JSONFormatter",
    "configure_json_logging",
]
