"""Pytest configuration and fixtures for reaper tests."""

import os
import sys
from pathlib import Path

# Reaper and API packages side by side
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "api"))

os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import pytest
from sqlalchemy.orm import Session

from dealcore_api.db.engine import build_engine, build_sessionmaker
from dealcore_api.db.models import (
    Base,
    Business,
    BusinessStatus,
    Deal,
    DealStatus,
    GuardStatus,
    PurchaseReconciliation,
    ReconciliationState,
    Tenant,
)
from dealcore_api.vouchers.inventory import materialize_vouchers
from dealcore_reaper.shutdown import shutdown_event


@pytest.fixture(autouse=True)
def _reset_shutdown():
    shutdown_event.clear()
    yield
    shutdown_event.clear()


@pytest.fixture(scope="function")
def session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'reaper_test.db'}")
    Base.metadata.create_all(engine)
    try:
        yield build_sessionmaker(engine)
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture(scope="function")
def db_session(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
        session.rollback()
    finally:
        session.close()


@pytest.fixture
def county(db_session: Session) -> Tenant:
    tenant = Tenant(id="tenant_lake", slug="lake-county", display_name="Lake County")
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture
def business(db_session: Session, county: Tenant) -> Business:
    business = Business(
        tenant_id=county.id, owner_user_id="vendor-1", name="Corner Bakery", status=BusinessStatus.ACTIVE
    )
    db_session.add(business)
    db_session.commit()
    db_session.refresh(business)
    return business


@pytest.fixture
def make_active_deal(db_session: Session, business: Business) -> Callable[..., Deal]:
    def _make(quantity: int = 2, last_active_at: Optional[datetime] = None) -> Deal:
        now = datetime.now(timezone.utc)
        deal = Deal(
            tenant_id=business.tenant_id,
            business_id=business.id,
            created_by_user_id=business.owner_user_id,
            title="Two coffees for one",
            description="Any size",
            category="food",
            original_value_cents=1000,
            deal_price_cents=500,
            redemption_window_start=now - timedelta(days=1),
            redemption_window_end=now + timedelta(days=30),
            voucher_quantity_limit=quantity,
            status=DealStatus.ACTIVE,
            guard_status=GuardStatus.APPROVED,
            activated_at=last_active_at or now,
            last_active_at=last_active_at or now,
        )
        db_session.add(deal)
        db_session.flush()
        materialize_vouchers(db_session, business.tenant_id, deal, quantity, issued_at=now, actor_type="system")
        db_session.commit()
        db_session.refresh(deal)
        return deal

    return _make


@pytest.fixture
def make_pending(db_session: Session, county: Tenant) -> Callable[..., PurchaseReconciliation]:
    """Outbox row as the purchase route leaves it after a transient failure."""

    def _make(deal_id: str, intent: str = "pi_pending", user_id: str = "buyer-1") -> PurchaseReconciliation:
        row = PurchaseReconciliation(
            tenant_id=county.id,
            user_id=user_id,
            deal_id=deal_id,
            payment_intent_id=intent,
            payment_provider="stripe",
            amount_paid_cents=500,
            failure_code="PURCHASE_TRANSACTION_FAILED",
            state=ReconciliationState.PENDING_RETRY,
            attempts=0,
        )
        db_session.add(row)
        db_session.commit()
        db_session.refresh(row)
        return row

    return _make
