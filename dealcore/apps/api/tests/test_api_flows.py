"""End-to-end HTTP flows: activate, buy, redeem; purchase read-back; health."""

from dealcore_api.routers import health


def _purchase(test_client, deal_id: str, intent: str, headers: dict, amount: str = "5.00"):
    return test_client.post(
        "/v1/purchases",
        json={"deal_id": deal_id, "payment_intent_id": intent, "payment_provider": "stripe", "amount_paid": amount},
        headers=headers,
    )


class TestMarketplaceFlow:
    def test_draft_to_redemption(self, test_client, business, vendor_headers, admin_headers, buyer_headers, deal_values):
        values = deal_values()
        created = test_client.post(
            "/v1/deals",
            json={
                "business_id": business.id,
                "title": values["title"],
                "description": values["description"],
                "category": values["category"],
                "original_value": "10.00",
                "deal_price": "5.00",
                "redemption_window_start": values["redemption_window_start"].isoformat(),
                "redemption_window_end": values["redemption_window_end"].isoformat(),
                "voucher_quantity_limit": 2,
            },
            headers=vendor_headers,
        )
        assert created.status_code == 201
        deal_id = created.json()["deal_id"]

        activated = test_client.post(f"/v1/admin/deals/{deal_id}/activate", headers=admin_headers)
        assert activated.status_code == 200
        assert activated.json()["vouchers_materialized"] == 2

        # A freshly activated deal waits for the content evaluator
        assert _purchase(test_client, deal_id, "pi_early", buyer_headers).json()["code"] == "DEAL_NOT_ACTIVE"
        test_client.put(
            f"/v1/admin/deals/{deal_id}/guard-status", json={"guard_status": "approved"}, headers=admin_headers
        )

        bought = _purchase(test_client, deal_id, "pi_paid", buyer_headers)
        assert bought.status_code == 201
        receipt = bought.json()
        assert receipt["amount_paid"] == "5.00"
        assert receipt["redemption_token"].startswith("VCH-")

        deal = test_client.get(f"/v1/deals/{deal_id}", headers=vendor_headers).json()
        assert deal["vouchers_sold"] == 1

        redeemed = test_client.post(
            "/v1/redemptions",
            json={"redemption_token": receipt["redemption_token"], "business_id": business.id},
            headers=vendor_headers,
        )
        assert redeemed.status_code == 200
        assert redeemed.json()["voucher_id"] == receipt["voucher_id"]

        purchase = test_client.get(f"/v1/purchases/{receipt['purchase_id']}", headers=buyer_headers)
        assert purchase.status_code == 200
        assert purchase.json()["voucher_status"] == "redeemed"

    def test_reused_payment_intent_on_second_deal(self, test_client, business, make_deal, buyer_headers):
        first = make_deal(business, active=True)
        second = make_deal(business, active=True)
        assert _purchase(test_client, first.id, "pi_once", buyer_headers).status_code == 201

        resp = _purchase(test_client, second.id, "pi_once", buyer_headers)

        assert resp.status_code == 409
        assert resp.json()["code"] == "PAYMENT_INTENT_ALREADY_USED"

    def test_wrong_amount(self, test_client, business, make_deal, buyer_headers):
        deal = make_deal(business, active=True)
        resp = _purchase(test_client, deal.id, "pi_cheap", buyer_headers, amount="4.99")
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_PAYMENT_AMOUNT"
        assert resp.json()["expected_cents"] == 500

    def test_vendor_cannot_purchase(self, test_client, business, make_deal, vendor_headers):
        deal = make_deal(business, active=True)
        resp = _purchase(test_client, deal.id, "pi_vendor", vendor_headers)
        assert resp.status_code == 403
        assert resp.json()["code"] == "USER_ROLE_REQUIRED"


class TestPurchaseVisibility:
    def test_only_buyer_and_admin_see_purchase(
        self, test_client, county, business, make_deal, buyer_headers, admin_headers, headers_for
    ):
        deal = make_deal(business, active=True)
        purchase_id = _purchase(test_client, deal.id, "pi_mine", buyer_headers).json()["purchase_id"]

        assert test_client.get(f"/v1/purchases/{purchase_id}", headers=buyer_headers).status_code == 200
        assert test_client.get(f"/v1/purchases/{purchase_id}", headers=admin_headers).status_code == 200

        other = test_client.get(f"/v1/purchases/{purchase_id}", headers=headers_for("buyer-2", "user", county.slug))
        assert other.status_code == 404
        assert other.json()["code"] == "PURCHASE_NOT_FOUND"


class TestHealth:
    def test_health_reports_services(self, test_client):
        resp = test_client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["services"]["api"] == "up"
        assert body["services"]["database"] == "up"
        assert body["services"]["redis"] == "disabled"

    def test_ready_when_dependencies_up(self, test_client):
        resp = test_client.get("/readyz")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ready"

    def test_not_ready_when_database_down(self, test_client, monkeypatch):
        monkeypatch.setattr(health, "check_database", lambda: "down: connection refused")
        resp = test_client.get("/readyz")
        assert resp.status_code == 503
        assert resp.json()["status"] == "not_ready"
