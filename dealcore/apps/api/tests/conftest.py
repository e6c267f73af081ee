"""Pytest configuration and fixtures."""

import os
import sys
from pathlib import Path
# Inject sys.path for reliable pytest imports
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))  # => .../apps/api

# The module-level engine in dealcore_api.db.session must never reach for PostgreSQL in tests
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DEALCORE_JSON_LOGS", "false")

import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from dealcore_api.db.engine import build_engine, build_sessionmaker
from dealcore_api.db.models import Base, Business, BusinessStatus, Deal, DealStatus, GuardStatus, Tenant
from dealcore_api.db.redis_client import RedisClient
from dealcore_api.db.repo_tenants import TenantRepository
from dealcore_api.db.session import get_db, get_session_factory
from dealcore_api.main import create_app
from dealcore_api.rate_limiter import NoOpRateLimiter
from dealcore_api.vouchers.inventory import materialize_vouchers

ADMIN_TOKEN = "test-admin-token"
VENDOR_ID = "vendor-1"
OTHER_VENDOR_ID = "vendor-2"
BUYER_ID = "buyer-1"


@pytest.fixture(autouse=True)
def _test_env(monkeypatch):
    """Admin token configured; Redis and timezone left at their defaults."""
    monkeypatch.setenv("ADMIN_TOKEN", ADMIN_TOKEN)
    monkeypatch.delenv("REDIS_URL", raising=False)
    monkeypatch.delenv("DEALCORE_TIMEZONE", raising=False)
    RedisClient.set_client(None)
    yield
    RedisClient.set_client(None)


@pytest.fixture(scope="function")
def engine(tmp_path):
    """File-backed SQLite so every session (and thread) gets its own connection."""
    engine = build_engine(f"sqlite:///{tmp_path / 'dealcore_test.db'}")
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Session:
    """Fresh session for arranging and asserting test data."""
    session = session_factory()
    try:
        yield session
        session.rollback()
    finally:
        session.close()


@pytest.fixture
def app(session_factory):
    """App wired to the test database, one session per request like production."""
    application = create_app(rate_limiter=NoOpRateLimiter(quota=60, window=60))

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    application.dependency_overrides[get_db] = override_get_db
    application.dependency_overrides[get_session_factory] = lambda: session_factory
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def test_client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def county(db_session: Session) -> Tenant:
    return TenantRepository(db_session).create(
        Tenant(id=f"tenant_{uuid.uuid4().hex[:8]}", slug="lake-county", display_name="Lake County")
    )


@pytest.fixture
def other_county(db_session: Session) -> Tenant:
    return TenantRepository(db_session).create(
        Tenant(id=f"tenant_{uuid.uuid4().hex[:8]}", slug="pine-county", display_name="Pine County")
    )


@pytest.fixture
def make_business(db_session: Session) -> Callable[..., Business]:
    def _make(
        tenant: Tenant,
        owner_user_id: str = VENDOR_ID,
        status: str = BusinessStatus.ACTIVE,
        monthly_voucher_allowance: Optional[int] = None,
        name: str = "Corner Bakery",
    ) -> Business:
        business = Business(
            tenant_id=tenant.id,
            owner_user_id=owner_user_id,
            name=name,
            status=status,
            monthly_voucher_allowance=monthly_voucher_allowance,
        )
        db_session.add(business)
        db_session.commit()
        db_session.refresh(business)
        return business

    return _make


@pytest.fixture
def business(county: Tenant, make_business) -> Business:
    return make_business(county)


def complete_deal_values(now: Optional[datetime] = None) -> dict:
    now = now or datetime.now(timezone.utc)
    return {
        "title": "Two coffees for one",
        "description": "Any size, any blend",
        "category": "food",
        "original_value_cents": 1000,
        "deal_price_cents": 500,
        "redemption_window_start": now - timedelta(days=1),
        "redemption_window_end": now + timedelta(days=30),
        "voucher_quantity_limit": 3,
    }


@pytest.fixture
def make_deal(db_session: Session) -> Callable[..., Deal]:
    """Insert a deal directly; `active=True` also materializes its vouchers."""

    def _make(business: Business, active: bool = False, guard_status: str = GuardStatus.APPROVED, **overrides) -> Deal:
        values = complete_deal_values()
        values.update(overrides)
        now = datetime.now(timezone.utc)
        deal = Deal(
            tenant_id=business.tenant_id,
            business_id=business.id,
            created_by_user_id=business.owner_user_id,
            status=DealStatus.ACTIVE if active else DealStatus.INACTIVE,
            guard_status=guard_status,
            activated_at=now if active else None,
            last_active_at=now if active else None,
            **values,
        )
        db_session.add(deal)
        db_session.flush()
        if active:
            materialize_vouchers(
                db_session,
                business.tenant_id,
                deal,
                int(deal.voucher_quantity_limit),
                issued_at=now,
                actor_type="system",
            )
        db_session.commit()
        db_session.refresh(deal)
        return deal

    return _make


def actor_headers(user_id: str, role: str, county_slug: Optional[str] = None) -> dict[str, str]:
    headers = {"X-Actor-Id": user_id, "X-Actor-Role": role}
    if role == "admin":
        headers["X-Admin-Token"] = ADMIN_TOKEN
    if county_slug:
        headers["X-County-Slug"] = county_slug
    return headers


@pytest.fixture
def vendor_headers(county: Tenant) -> dict[str, str]:
    return actor_headers(VENDOR_ID, "vendor", county.slug)


@pytest.fixture
def buyer_headers(county: Tenant) -> dict[str, str]:
    return actor_headers(BUYER_ID, "user", county.slug)


@pytest.fixture
def admin_headers(county: Tenant) -> dict[str, str]:
    return actor_headers("admin-1", "admin", county.slug)


@pytest.fixture
def headers_for() -> Callable[..., dict[str, str]]:
    return actor_headers


@pytest.fixture
def deal_values() -> Callable[..., dict]:
    return complete_deal_values
