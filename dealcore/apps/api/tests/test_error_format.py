"""Every error leaves the API as RFC 9457 problem+json."""

import re

import pytest
from fastapi.testclient import TestClient

INSTANCE_PATTERN = re.compile(r"^urn:dealcore:trace:[A-Za-z0-9._:-]{8,}$")


def assert_problem_details(resp, expected_status: int) -> dict:
    assert resp.headers.get("content-type", "").startswith("application/problem+json")
    data = resp.json()
    for field in ("type", "title", "status", "detail", "instance"):
        assert field in data, f"Missing required field: {field}"
    assert data["status"] == expected_status
    assert INSTANCE_PATTERN.match(data["instance"]), data["instance"]
    assert data["type"].startswith("https://api.dealcore.local/problems/")
    return data


class TestDomainErrors:
    def test_domain_error_carries_code_and_kebab_type(self, test_client, county, vendor_headers):
        resp = test_client.get("/v1/deals/missing", headers=vendor_headers)

        data = assert_problem_details(resp, 404)
        assert data["code"] == "DEAL_NOT_FOUND"
        assert data["type"] == "https://api.dealcore.local/problems/deal-not-found"
        assert data["title"] == "Deal not found"

    def test_extensions_are_top_level_members(self, test_client, business, make_deal, admin_headers):
        deal = make_deal(business, description=None)

        resp = test_client.post(f"/v1/admin/deals/{deal.id}/activate", headers=admin_headers)

        data = assert_problem_details(resp, 400)
        assert data["code"] == "MISSING_REQUIRED_FIELDS"
        assert data["missing_fields"] == ["description"]

    def test_instance_uses_request_id(self, test_client, county, vendor_headers):
        resp = test_client.get("/v1/deals/missing", headers={**vendor_headers, "X-Request-ID": "req-abc-12345"})

        assert resp.headers["X-Request-ID"] == "req-abc-12345"
        assert resp.json()["instance"] == "urn:dealcore:trace:req-abc-12345"

    def test_request_id_generated_when_absent(self, test_client):
        resp = test_client.get("/health")
        assert len(resp.headers["X-Request-ID"]) >= 8


class TestHttpErrors:
    def test_missing_actor_is_401(self, test_client, county):
        resp = test_client.get("/v1/deals", headers={"X-County-Slug": county.slug})
        data = assert_problem_details(resp, 401)
        assert data["type"] == "https://api.dealcore.local/problems/http-401"

    def test_unknown_role_is_401(self, test_client, county):
        resp = test_client.get(
            "/v1/deals", headers={"X-County-Slug": county.slug, "X-Actor-Id": "x", "X-Actor-Role": "root"}
        )
        assert_problem_details(resp, 401)

    def test_unknown_route_is_404(self, test_client):
        assert_problem_details(test_client.get("/v1/nowhere"), 404)

    def test_validation_error_is_422(self, test_client, county, buyer_headers):
        resp = test_client.post("/v1/purchases", json={"deal_id": "d"}, headers=buyer_headers)

        data = assert_problem_details(resp, 422)
        assert data["type"] == "https://api.dealcore.local/problems/validation-error"
        assert data["detail"].startswith("Invalid field")

    def test_unhandled_exception_is_opaque_500(self, app, county, vendor_headers, monkeypatch):
        from dealcore_api.routers import deals

        def explode(*args, **kwargs):
            raise RuntimeError("secret connection string leaked?")

        monkeypatch.setattr(deals.DealRepository, "list_deals", explode)
        client = TestClient(app, raise_server_exceptions=False)

        resp = client.get("/v1/deals", headers=vendor_headers)

        data = assert_problem_details(resp, 500)
        assert data["type"] == "https://api.dealcore.local/problems/internal-error"
        assert "secret" not in resp.text


@pytest.mark.parametrize("role", ["user", "vendor"])
def test_admin_route_without_token_is_problem_json(test_client, county, headers_for, role):
    resp = test_client.get("/v1/admin/review-tasks", headers=headers_for("someone", role, county.slug))
    assert_problem_details(resp, 401)
