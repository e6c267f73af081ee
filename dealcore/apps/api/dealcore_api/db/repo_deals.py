"""Business and deal repositories (tenant-scoped)."""

from datetime import datetime
from typing import Optional

from sqlalchemy import func, update

from dealcore_api.db.models import Business, Deal, DealStatus, GuardStatus
from dealcore_api.db.repo_base import TenantScopedRepository


class BusinessRepository(TenantScopedRepository[Business]):
    model = Business

    def lock_by_id(self, business_id: str) -> Optional[Business]:
        """Row lock serializing allowance checks for one business until commit."""
        stmt = (
            self.scoped()
            .where(Business.id == business_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()


class DealRepository(TenantScopedRepository[Deal]):
    model = Deal

    def list_deals(
        self,
        business_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 100,
    ) -> list[Deal]:
        stmt = self.scoped()
        if business_id:
            stmt = stmt.where(Deal.business_id == business_id)
        if status:
            stmt = stmt.where(Deal.status == status)
        stmt = stmt.order_by(Deal.created_at.desc(), Deal.id).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def transition_status(self, deal_id: str, from_status: str, to_status: str, **values) -> bool:
        """Conditional status write.

        Returns:
            True if this caller moved the deal, False if its status had already changed.
        """
        stmt = (
            update(Deal)
            .where(
                Deal.id == deal_id,
                Deal.tenant_id == self.tenant_id,
                Deal.status == from_status,
            )
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1

    def touch_last_active(self, deal_id: str, at: datetime) -> None:
        stmt = (
            update(Deal)
            .where(Deal.id == deal_id, Deal.tenant_id == self.tenant_id)
            .values(last_active_at=at)
            .execution_options(synchronize_session=False)
        )
        self.db.execute(stmt)

    @staticmethod
    def _inactive_guarded_since(cutoff: datetime) -> tuple:
        last_seen = func.coalesce(Deal.last_active_at, Deal.activated_at, Deal.created_at)
        return (
            Deal.status == DealStatus.ACTIVE,
            Deal.guard_status == GuardStatus.APPROVED,
            last_seen < cutoff,
        )

    def find_inactive_guarded(self, cutoff: datetime, limit: int = 100) -> list[Deal]:
        """Active, guard-approved deals with no purchase/redemption since cutoff.

        Deals never touched fall back to activated_at, then created_at.
        """
        stmt = self.scoped().where(*self._inactive_guarded_since(cutoff)).order_by(Deal.id).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def suspend_if_inactive(self, deal_id: str, cutoff: datetime) -> bool:
        """approved -> suspended, only if the deal is still idle since cutoff.

        Returns:
            False when a purchase or redemption touched the deal after the scan.
        """
        stmt = (
            update(Deal)
            .where(Deal.id == deal_id, Deal.tenant_id == self.tenant_id, *self._inactive_guarded_since(cutoff))
            .values(guard_status=GuardStatus.SUSPENDED)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1
