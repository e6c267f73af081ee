"""Unit tests for money conversion and the Ok/Err result catalog."""

from decimal import Decimal

import pytest

from dealcore_api.results import Err, ErrorCategory, ErrorCode, Ok, ResultError, unwrap
from dealcore_api.utils.money import (
    MAX_CENTS,
    AmountTooLargeError,
    MoneyError,
    NegativeAmountError,
    decimal_to_cents,
    format_cents,
    parse_money_string,
    validate_cents,
)


class TestParseMoneyString:
    @pytest.mark.parametrize(
        "value,expected",
        [("12.50", 1250), ("0", 0), ("7", 700), ("0.01", 1), (" 3.5 ", 350)],
    )
    def test_valid_amounts(self, value, expected):
        assert parse_money_string(value) == expected

    def test_sub_cent_precision_is_rejected(self):
        with pytest.raises(MoneyError, match="decimal places"):
            parse_money_string("1.005")

    @pytest.mark.parametrize("value", ["", "   ", "abc", "NaN", "Infinity"])
    def test_garbage_is_rejected(self, value):
        with pytest.raises(MoneyError):
            parse_money_string(value)

    def test_negative_is_rejected(self):
        with pytest.raises(NegativeAmountError):
            parse_money_string("-1.00")


class TestValidateCents:
    def test_bool_is_not_money(self):
        with pytest.raises(MoneyError):
            validate_cents(True)

    def test_float_is_not_money(self):
        with pytest.raises(MoneyError):
            validate_cents(1.5)  # type: ignore[arg-type]

    def test_upper_bound(self):
        assert validate_cents(MAX_CENTS) == MAX_CENTS
        with pytest.raises(AmountTooLargeError):
            validate_cents(MAX_CENTS + 1)


def test_decimal_to_cents_exact():
    assert decimal_to_cents(Decimal("19.99")) == 1999


def test_format_cents():
    assert format_cents(0) == "0.00"
    assert format_cents(1250) == "12.50"
    assert format_cents(5) == "0.05"


class TestErrorCatalog:
    def test_every_code_has_status_title_and_category(self):
        for code in ErrorCode:
            assert 400 <= code.http_status < 600
            assert code.http_title
            assert isinstance(code.category, ErrorCategory)

    @pytest.mark.parametrize(
        "code,status,category",
        [
            (ErrorCode.NO_AVAILABLE_VOUCHERS, 409, ErrorCategory.RESOURCE_EXHAUSTION),
            (ErrorCode.DOUBLE_ASSIGNMENT_PREVENTED, 409, ErrorCategory.CONCURRENCY_RACE),
            (ErrorCode.PURCHASE_TRANSACTION_FAILED, 500, ErrorCategory.TRANSACTION_FATAL),
            (ErrorCode.MISSING_REQUIRED_FIELDS, 400, ErrorCategory.VALIDATION),
            (ErrorCode.ALREADY_REDEEMED, 409, ErrorCategory.STATE_CONFLICT),
            (ErrorCode.INVALID_FOR_BUSINESS, 403, ErrorCategory.AUTHORIZATION),
        ],
    )
    def test_catalog_entries(self, code, status, category):
        assert code.http_status == status
        assert code.category is category


def test_ok_and_err_flags():
    assert Ok(1).ok is True
    assert Err(ErrorCode.DEAL_NOT_FOUND).ok is False


def test_unwrap_returns_value_or_raises():
    assert unwrap(Ok("deal-1")) == "deal-1"

    err = Err(ErrorCode.DEAL_NOT_FOUND, "Deal not found")
    with pytest.raises(ResultError) as exc_info:
        unwrap(err)
    assert exc_info.value.error is err
    assert exc_info.value.extra == {}
