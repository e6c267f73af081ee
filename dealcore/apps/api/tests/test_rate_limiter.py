"""Rate limiting: policy selection, Redis fixed windows, IETF RateLimit headers."""

import re
from unittest.mock import MagicMock

import pytest
import redis

from dealcore_api.rate_limiter import (
    NoOpRateLimiter,
    RateLimitResult,
    RedisRateLimiter,
    policy_for,
)

POLICIES = {"issue": (2, 60), "default": (30, 60)}


class DenyingLimiter:
    """Rejects every request with a fixed reset."""

    def check_rate_limit(self, key: str, path: str, method: str = "GET") -> RateLimitResult:
        return RateLimitResult(
            allowed=False, policy_id=policy_for(path, method), quota=2, window=60, remaining=0, reset=42
        )


def _fake_redis(count: int, ttl: int = 57) -> MagicMock:
    client = MagicMock()
    client.incr.return_value = count
    client.ttl.return_value = ttl
    return client


class TestPolicyFor:
    @pytest.mark.parametrize(
        "path", ["/v1/purchases", "/v1/redemptions", "/v1/c/lake-county/purchases", "/v1/redemptions/"]
    )
    def test_issue_writes(self, path):
        assert policy_for(path, "POST") == "issue"

    @pytest.mark.parametrize(
        "path,method",
        [
            ("/v1/purchases", "GET"),
            ("/v1/purchases/payment-failures", "POST"),
            ("/v1/deals", "POST"),
            ("/v1/purchases/abc", "GET"),
        ],
    )
    def test_everything_else_is_default(self, path, method):
        assert policy_for(path, method) == "default"


class TestRedisRateLimiter:
    def test_requires_default_policy(self):
        with pytest.raises(ValueError):
            RedisRateLimiter(_fake_redis(1), {"issue": (1, 60)})

    def test_first_hit_sets_window_expiry(self):
        client = _fake_redis(1, ttl=60)
        limiter = RedisRateLimiter(client, POLICIES)

        result = limiter.check_rate_limit("buyer-1", "/v1/purchases", "POST")

        assert result.allowed is True
        assert result.policy_id == "issue"
        assert result.quota == 2
        assert result.remaining == 1
        assert result.reset == 60
        key = client.incr.call_args[0][0]
        assert re.match(r"^dealcore:ratelimit:issue:buyer-1:\d+$", key)
        client.expire.assert_called_once_with(key, 60)

    def test_later_hits_keep_existing_expiry(self):
        client = _fake_redis(2, ttl=30)
        result = RedisRateLimiter(client, POLICIES).check_rate_limit("buyer-1", "/v1/purchases", "POST")

        assert result.allowed is True
        assert result.remaining == 0
        assert result.reset == 30
        client.expire.assert_not_called()

    def test_over_quota_is_rejected(self):
        result = RedisRateLimiter(_fake_redis(3), POLICIES).check_rate_limit("buyer-1", "/v1/purchases", "POST")
        assert result.allowed is False
        assert result.remaining == 0

    def test_missing_ttl_falls_back_to_window(self):
        result = RedisRateLimiter(_fake_redis(5, ttl=-1), POLICIES).check_rate_limit("buyer-1", "/v1/deals")
        assert result.policy_id == "default"
        assert result.reset == 60

    def test_redis_outage_fails_open(self):
        client = MagicMock()
        client.incr.side_effect = redis.ConnectionError("connection refused")

        result = RedisRateLimiter(client, POLICIES).check_rate_limit("buyer-1", "/v1/purchases", "POST")

        assert result.allowed is True
        assert result.remaining == 2


class TestRateLimitMiddleware:
    def test_2xx_carries_ratelimit_headers(self, test_client, county, buyer_headers):
        resp = test_client.get("/v1/deals", headers=buyer_headers)

        assert resp.status_code == 200
        assert resp.headers["RateLimit-Policy"] == '"default"; q=60; w=60'
        assert resp.headers["RateLimit"] == '"default"; r=60; t=60'
        assert not any(h.lower().startswith("x-ratelimit") for h in resp.headers)

    def test_health_is_not_limited(self, app, test_client):
        app.state.rate_limiter = DenyingLimiter()
        resp = test_client.get("/health")
        assert resp.status_code == 200
        assert "RateLimit" not in resp.headers

    def test_429_is_problem_json_with_retry_after(self, app, test_client, county, buyer_headers):
        app.state.rate_limiter = DenyingLimiter()

        resp = test_client.post(
            "/v1/purchases",
            json={"deal_id": "d", "payment_intent_id": "pi", "payment_provider": "stripe", "amount_paid": "5.00"},
            headers=buyer_headers,
        )

        assert resp.status_code == 429
        assert resp.headers["content-type"].startswith("application/problem+json")
        assert resp.headers["Retry-After"] == "42"
        assert resp.headers["RateLimit"] == '"issue"; r=0; t=42'
        assert resp.json()["status"] == 429

    def test_redis_limiter_counts_per_actor(self, app, test_client, county, headers_for):
        client = _fake_redis(31)
        app.state.rate_limiter = RedisRateLimiter(client, POLICIES)

        resp = test_client.get("/v1/deals", headers=headers_for("buyer-9", "user", county.slug))

        assert resp.status_code == 429
        assert ":buyer-9:" in client.incr.call_args[0][0]

    def test_noop_limiter_without_redis(self):
        from dealcore_api.main import build_rate_limiter

        assert isinstance(build_rate_limiter(), NoOpRateLimiter)
