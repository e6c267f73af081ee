"""Tenant (county) repository.

Tenants are the scope itself, so this is the one repository not bound to a tenant.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from dealcore_api.db.models import Tenant


class TenantRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, tenant_id: str) -> Optional[Tenant]:
        return self.db.execute(select(Tenant).where(Tenant.id == tenant_id)).scalar_one_or_none()

    def get_by_slug(self, slug: str) -> Optional[Tenant]:
        return self.db.execute(select(Tenant).where(Tenant.slug == slug)).scalar_one_or_none()

    def list_active_ids(self) -> list[str]:
        """IDs of active tenants, for background sweepers that work county by county."""
        stmt = select(Tenant.id).where(Tenant.is_active.is_(True)).order_by(Tenant.slug)
        return list(self.db.execute(stmt).scalars().all())

    def create(self, tenant: Tenant) -> Tenant:
        self.db.add(tenant)
        self.db.commit()
        self.db.refresh(tenant)
        return tenant
