"""Deal lifecycle: drafts, activation with inventory materialization, expiry, guard status."""

from datetime import datetime, timedelta, timezone

import pytest

from dealcore_api.auth.actor import Actor, ActorRole
from dealcore_api.db.models import Deal, DealStatus, GuardStatus, Voucher, VoucherAuditLog, VoucherStatus
from dealcore_api.deals import lifecycle
from dealcore_api.deals.lifecycle import DealFields, validate_transition
from dealcore_api.results import Err, ErrorCode, Ok

ADMIN = Actor(user_id="admin-1", role=ActorRole.ADMIN)
OWNER = Actor(user_id="vendor-1", role=ActorRole.VENDOR)
STRANGER = Actor(user_id="vendor-2", role=ActorRole.VENDOR)


class TestTransitions:
    @pytest.mark.parametrize(
        "current,target",
        [(DealStatus.INACTIVE, DealStatus.ACTIVE), (DealStatus.ACTIVE, DealStatus.EXPIRED)],
    )
    def test_allowed(self, current, target):
        assert validate_transition(current, target) is None

    @pytest.mark.parametrize(
        "current,target",
        [
            (DealStatus.ACTIVE, DealStatus.INACTIVE),
            (DealStatus.EXPIRED, DealStatus.ACTIVE),
            (DealStatus.EXPIRED, DealStatus.INACTIVE),
            (DealStatus.INACTIVE, DealStatus.EXPIRED),
        ],
    )
    def test_rejected(self, current, target):
        err = validate_transition(current, target)
        assert err.code == ErrorCode.INVALID_DEAL_TRANSITION
        assert err.extensions == {"from_status": current, "to_status": target}


class TestDrafts:
    def test_owner_creates_incomplete_draft(self, db_session, county, business):
        result = lifecycle.create_deal(db_session, county.id, OWNER, business.id, DealFields(title="Half-baked"))
        assert isinstance(result, Ok)
        assert result.value.status == DealStatus.INACTIVE
        assert result.value.guard_status == GuardStatus.PENDING
        assert result.value.description is None

    def test_non_owner_cannot_create(self, db_session, county, business):
        result = lifecycle.create_deal(db_session, county.id, STRANGER, business.id, DealFields(title="x"))
        assert result.code == ErrorCode.NOT_DEAL_OWNER

    def test_price_must_be_below_value(self, db_session, county, business):
        result = lifecycle.create_deal(
            db_session,
            county.id,
            OWNER,
            business.id,
            DealFields(original_value_cents=1000, deal_price_cents=1000),
        )
        assert result.code == ErrorCode.VALIDATION_FAILED
        assert result.extensions["errors"][0]["field"] == "deal_price"

    def test_window_end_after_start(self, db_session, county, business):
        now = datetime.now(timezone.utc)
        result = lifecycle.create_deal(
            db_session,
            county.id,
            OWNER,
            business.id,
            DealFields(redemption_window_start=now, redemption_window_end=now - timedelta(hours=1)),
        )
        assert result.code == ErrorCode.VALIDATION_FAILED

    def test_update_only_while_inactive(self, db_session, county, business, make_deal):
        deal = make_deal(business, active=True)
        result = lifecycle.update_deal(db_session, county.id, OWNER, deal.id, DealFields(title="New"))
        assert result.code == ErrorCode.DEAL_NOT_INACTIVE

    def test_update_validates_merged_values(self, db_session, county, business, make_deal):
        deal = make_deal(business)  # original value 10.00
        result = lifecycle.update_deal(db_session, county.id, OWNER, deal.id, DealFields(deal_price_cents=1500))
        assert result.code == ErrorCode.VALIDATION_FAILED

    def test_delete_inactive_without_vouchers(self, db_session, county, business, make_deal):
        deal_id = make_deal(business).id
        assert lifecycle.delete_deal(db_session, county.id, OWNER, deal_id) == Ok(deal_id)
        db_session.expire_all()
        assert db_session.get(Deal, deal_id) is None

    def test_delete_active_deal_is_rejected(self, db_session, county, business, make_deal):
        deal = make_deal(business, active=True)
        result = lifecycle.delete_deal(db_session, county.id, OWNER, deal.id)
        assert result.code == ErrorCode.DEAL_NOT_INACTIVE


class TestActivation:
    def test_activation_materializes_inventory(self, db_session, county, business, make_deal):
        deal = make_deal(business, voucher_quantity_limit=4)

        result = lifecycle.activate_deal(db_session, county.id, ADMIN, deal.id)

        assert isinstance(result, Ok)
        assert result.value.previous_status == DealStatus.INACTIVE
        assert result.value.new_status == DealStatus.ACTIVE
        assert result.value.vouchers_materialized == 4
        assert result.value.business_name == business.name

        db_session.expire_all()
        vouchers = db_session.query(Voucher).filter_by(deal_id=deal.id).all()
        assert len(vouchers) == 4
        assert {v.status for v in vouchers} == {VoucherStatus.AVAILABLE}
        assert len({v.redemption_token for v in vouchers}) == 4
        assert all(v.redemption_token.startswith("VCH-") for v in vouchers)
        issued = db_session.query(VoucherAuditLog).filter_by(deal_id=deal.id, action="issued").count()
        assert issued == 4

    def test_only_admin_activates(self, db_session, county, business, make_deal):
        deal = make_deal(business)
        result = lifecycle.activate_deal(db_session, county.id, OWNER, deal.id)
        assert result.code == ErrorCode.ADMIN_REQUIRED

    def test_missing_fields_are_listed_and_status_unchanged(self, db_session, county, business, make_deal):
        deal = make_deal(business, description=None, category="  ")

        result = lifecycle.activate_deal(db_session, county.id, ADMIN, deal.id)

        assert isinstance(result, Err)
        assert result.code == ErrorCode.MISSING_REQUIRED_FIELDS
        assert result.extensions["missing_fields"] == ["description", "category"]
        db_session.expire_all()
        assert db_session.get(Deal, deal.id).status == DealStatus.INACTIVE
        assert db_session.query(Voucher).filter_by(deal_id=deal.id).count() == 0

    def test_second_activation_conflicts(self, db_session, county, business, make_deal):
        deal = make_deal(business)
        assert isinstance(lifecycle.activate_deal(db_session, county.id, ADMIN, deal.id), Ok)
        again = lifecycle.activate_deal(db_session, county.id, ADMIN, deal.id)
        assert again.code == ErrorCode.DEAL_NOT_INACTIVE

    def test_inactive_business_blocks_activation(self, db_session, county, make_business, make_deal):
        pending = make_business(county, status="pending")
        deal = make_deal(pending)
        result = lifecycle.activate_deal(db_session, county.id, ADMIN, deal.id)
        assert result.code == ErrorCode.BUSINESS_NOT_ACTIVE

    def test_allowance_blocks_activation_atomically(self, db_session, county, make_business, make_deal):
        capped = make_business(county, monthly_voucher_allowance=5)
        deal = make_deal(capped, voucher_quantity_limit=6)

        result = lifecycle.activate_deal(db_session, county.id, ADMIN, deal.id)

        assert result.code == ErrorCode.ALLOWANCE_EXCEEDED
        assert result.extensions["remaining"] == 5
        assert result.extensions["requested"] == 6
        assert result.extensions["excess"] == 1
        db_session.expire_all()
        assert db_session.get(Deal, deal.id).status == DealStatus.INACTIVE
        assert db_session.query(Voucher).filter_by(deal_id=deal.id).count() == 0


class TestExpiryAndGuard:
    def test_expire_active_deal(self, db_session, county, business, make_deal):
        deal = make_deal(business, active=True)
        result = lifecycle.expire_deal(db_session, county.id, ADMIN, deal.id)
        assert result.value.new_status == DealStatus.EXPIRED

        # Issued vouchers are left as they were
        db_session.expire_all()
        statuses = {v.status for v in db_session.query(Voucher).filter_by(deal_id=deal.id)}
        assert statuses == {VoucherStatus.AVAILABLE}

    def test_expired_is_terminal(self, db_session, county, business, make_deal):
        deal = make_deal(business, active=True)
        lifecycle.expire_deal(db_session, county.id, ADMIN, deal.id)
        again = lifecycle.expire_deal(db_session, county.id, ADMIN, deal.id)
        assert again.code == ErrorCode.INVALID_DEAL_TRANSITION

    def test_guard_status_never_moves_lifecycle(self, db_session, county, business, make_deal):
        deal = make_deal(business, active=True)
        result = lifecycle.set_guard_status(db_session, county.id, ADMIN, deal.id, GuardStatus.REJECTED)
        assert result.value.guard_status == GuardStatus.REJECTED
        assert result.value.status == DealStatus.ACTIVE

    def test_unknown_guard_status(self, db_session, county, business, make_deal):
        deal = make_deal(business)
        result = lifecycle.set_guard_status(db_session, county.id, ADMIN, deal.id, "maybe")
        assert result.code == ErrorCode.VALIDATION_FAILED


class TestDealRoutes:
    def test_vendor_creates_and_reads_draft(self, test_client, business, vendor_headers):
        resp = test_client.post(
            "/v1/deals",
            json={"business_id": business.id, "title": "Pie night", "original_value": "20.00", "deal_price": "12.50"},
            headers=vendor_headers,
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == "inactive"
        assert body["deal_price"] == "12.50"
        assert body["vouchers_sold"] == 0

        fetched = test_client.get(f"/v1/deals/{body['deal_id']}", headers=vendor_headers)
        assert fetched.status_code == 200
        assert fetched.json()["title"] == "Pie night"

    def test_money_must_be_decimal_string(self, test_client, business, vendor_headers):
        resp = test_client.post(
            "/v1/deals",
            json={"business_id": business.id, "deal_price": "12.505"},
            headers=vendor_headers,
        )
        assert resp.status_code == 422

    def test_patch_and_delete(self, test_client, business, make_deal, vendor_headers):
        deal = make_deal(business)
        patched = test_client.patch(f"/v1/deals/{deal.id}", json={"title": "Renamed"}, headers=vendor_headers)
        assert patched.status_code == 200
        assert patched.json()["title"] == "Renamed"

        deleted = test_client.delete(f"/v1/deals/{deal.id}", headers=vendor_headers)
        assert deleted.status_code == 204
        assert test_client.get(f"/v1/deals/{deal.id}", headers=vendor_headers).status_code == 404

    def test_list_filters_by_status(self, test_client, business, make_deal, vendor_headers):
        make_deal(business)
        active = make_deal(business, active=True)
        resp = test_client.get("/v1/deals", params={"status": "active"}, headers=vendor_headers)
        assert resp.status_code == 200
        assert [d["deal_id"] for d in resp.json()["deals"]] == [active.id]

    def test_admin_activation_route(self, test_client, business, make_deal, admin_headers):
        deal = make_deal(business, voucher_quantity_limit=2)
        resp = test_client.post(f"/v1/admin/deals/{deal.id}/activate", headers=admin_headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["vouchers_materialized"] == 2
        assert body["previous_status"] == "inactive"
        assert body["new_status"] == "active"

    def test_admin_routes_require_token(self, test_client, business, make_deal, vendor_headers):
        deal = make_deal(business)
        resp = test_client.post(f"/v1/admin/deals/{deal.id}/activate", headers=vendor_headers)
        assert resp.status_code == 401

    def test_forged_admin_role_is_rejected(self, test_client, county, business, make_deal):
        deal = make_deal(business)
        resp = test_client.get(
            f"/v1/deals/{deal.id}",
            headers={"X-Actor-Id": "mallory", "X-Actor-Role": "admin", "X-Admin-Token": "wrong", "X-County-Slug": county.slug},
        )
        assert resp.status_code == 401

    def test_guard_status_route(self, test_client, business, make_deal, admin_headers):
        deal = make_deal(business, active=True)
        resp = test_client.put(
            f"/v1/admin/deals/{deal.id}/guard-status",
            json={"guard_status": "suspended"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["guard_status"] == "suspended"
        assert resp.json()["status"] == "active"
