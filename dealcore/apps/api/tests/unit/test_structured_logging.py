"""Structured JSON logging and log sanitization."""

import json
import logging
import sys

from dealcore_api.context import actor_id_var, request_id_var, tenant_id_var
from dealcore_api.utils.logging import JSONFormatter
from dealcore_api.utils.sanitize import MAX_STR_LOG, sanitize_obj, sanitize_str


def _record(msg: str, level: int = logging.INFO, extra: dict | None = None, exc_info=None) -> logging.LogRecord:
    record = logging.LogRecord(
        name="dealcore.test",
        level=level,
        pathname=__file__,
        lineno=10,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )
    for key, value in (extra or {}).items():
        setattr(record, key, value)
    return record


def test_formatter_emits_standard_fields():
    data = json.loads(JSONFormatter().format(_record("deal.activated")))
    assert data["message"] == "deal.activated"
    assert data["level"] == "INFO"
    for field in ("timestamp", "module", "func", "line"):
        assert field in data


def test_formatter_injects_context_variables():
    tokens = [
        request_id_var.set("req-123"),
        tenant_id_var.set("tenant_lake"),
        actor_id_var.set("vendor-1"),
    ]
    try:
        data = json.loads(JSONFormatter().format(_record("purchase.completed")))
    finally:
        actor_id_var.reset(tokens[2])
        tenant_id_var.reset(tokens[1])
        request_id_var.reset(tokens[0])

    assert data["request_id"] == "req-123"
    assert data["tenant_id"] == "tenant_lake"
    assert data["actor_id"] == "vendor-1"


def test_context_fields_omitted_when_unset():
    data = json.loads(JSONFormatter().format(_record("reaper.tick")))
    assert "request_id" not in data
    assert "tenant_id" not in data


def test_extra_fields_are_merged_and_sensitive_keys_masked():
    data = json.loads(
        JSONFormatter().format(
            _record(
                "purchase.completed",
                extra={"event": "purchase.completed", "deal_id": "d1", "redemption_token": "VCH-ABC-0123456789ABCDEF"},
            )
        )
    )
    assert data["event"] == "purchase.completed"
    assert data["deal_id"] == "d1"
    assert data["redemption_token"] == "[REDACTED]"


def test_redemption_token_in_message_is_masked():
    data = json.loads(JSONFormatter().format(_record("token VCH-LQ2X1-0123456789ABCDEF0123456789ABCDEF seen")))
    assert "0123456789ABCDEF" not in data["message"]
    assert "[REDACTED]" in data["message"]


def test_exception_info_is_serialized():
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        data = json.loads(JSONFormatter().format(_record("failed", logging.ERROR, exc_info=sys.exc_info())))
    assert "RuntimeError" in data["exc_info"]


class TestSanitizer:
    def test_bearer_tokens_are_redacted(self):
        assert sanitize_str("Authorization: Bearer abc.def") == "Authorization: [REDACTED]"

    def test_long_strings_are_truncated_with_digest(self):
        out = sanitize_str("x" * (MAX_STR_LOG + 1))
        assert out.startswith("[TRUNCATED len=")
        assert "sha256=" in out

    def test_nested_sensitive_keys(self):
        out = sanitize_obj({"outer": {"admin_token": "secret-value", "deal_id": "d1"}})
        assert out["outer"]["admin_token"] == "[REDACTED]"
        assert out["outer"]["deal_id"] == "d1"
