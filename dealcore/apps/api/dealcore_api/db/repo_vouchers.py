"""Voucher and voucher-audit repositories (tenant-scoped)."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Select, and_, func, insert, update

from dealcore_api.db.models import Deal, Voucher, VoucherAuditLog, VoucherStatus
from dealcore_api.db.repo_base import TenantScopedRepository


class VoucherRepository(TenantScopedRepository[Voucher]):
    model = Voucher

    def get_by_token(self, redemption_token: str) -> Optional[Voucher]:
        stmt = self.scoped().where(Voucher.redemption_token == redemption_token)
        return self.db.execute(stmt).scalar_one_or_none()

    def bulk_insert(self, rows: list[dict]) -> None:
        """Insert many voucher rows in one statement; tenant_id is stamped here."""
        if not rows:
            return
        self.db.execute(insert(Voucher), [{**row, "tenant_id": self.tenant_id} for row in rows])

    def count_for_deal(self, deal_id: str, statuses: Optional[tuple[str, ...]] = None) -> int:
        stmt = self.scoped(func.count(Voucher.id)).where(Voucher.deal_id == deal_id)
        if statuses:
            stmt = stmt.where(Voucher.status.in_(statuses))
        return self.db.execute(stmt).scalar_one()

    def count_issued_between(self, business_id: str, start: datetime, end: datetime) -> int:
        """Vouchers issued for a business in the half-open window [start, end)."""
        stmt = self.scoped(func.count(Voucher.id)).where(
            Voucher.business_id == business_id,
            Voucher.issued_at >= start,
            Voucher.issued_at < end,
        )
        return self.db.execute(stmt).scalar_one()

    def pick_available_id(self, deal_id: str) -> Optional[str]:
        """Pick one available voucher for the deal.

        FOR UPDATE SKIP LOCKED lets concurrent buyers pick different rows on
        PostgreSQL; dialects without row locks ignore the clause and rely on
        the conditional write in assign().
        """
        stmt = (
            self.scoped(Voucher.id)
            .where(Voucher.deal_id == deal_id, Voucher.status == VoucherStatus.AVAILABLE)
            .order_by(Voucher.issued_at, Voucher.id)
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def lock_by_id(self, voucher_id: str) -> Optional[Voucher]:
        stmt = (
            self.scoped()
            .where(Voucher.id == voucher_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def assign(self, voucher_id: str, at: datetime) -> bool:
        """available -> assigned, only if still available. Returns True if this caller won."""
        stmt = (
            update(Voucher)
            .where(
                Voucher.id == voucher_id,
                Voucher.tenant_id == self.tenant_id,
                Voucher.status == VoucherStatus.AVAILABLE,
            )
            .values(status=VoucherStatus.ASSIGNED, assigned_at=at)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1

    def redeem(self, voucher_id: str, business_id: str, at: datetime, precondition: str) -> bool:
        """precondition -> redeemed, only if status still equals precondition."""
        stmt = (
            update(Voucher)
            .where(
                Voucher.id == voucher_id,
                Voucher.tenant_id == self.tenant_id,
                Voucher.status == precondition,
            )
            .values(status=VoucherStatus.REDEEMED, redeemed_at=at, redeemed_by_business_id=business_id)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1

    def _redeemed_for(
        self,
        stmt: Select,
        business_id: str,
        deal_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Select:
        stmt = stmt.where(Voucher.business_id == business_id, Voucher.status == VoucherStatus.REDEEMED)
        if deal_id:
            stmt = stmt.where(Voucher.deal_id == deal_id)
        if start is not None:
            stmt = stmt.where(Voucher.redeemed_at >= start)
        if end is not None:
            stmt = stmt.where(Voucher.redeemed_at <= end)
        return stmt

    def list_redemptions(
        self,
        business_id: str,
        deal_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> list[tuple[Voucher, Deal]]:
        """Redeemed vouchers of a business, most recent first, each with its deal."""
        stmt = self.scoped(Voucher, Deal).join(
            Deal, and_(Deal.id == Voucher.deal_id, Deal.tenant_id == Voucher.tenant_id)
        )
        stmt = self._redeemed_for(stmt, business_id, deal_id, start, end)
        stmt = stmt.order_by(Voucher.redeemed_at.desc(), Voucher.id).offset(offset).limit(limit)
        return [(voucher, deal) for voucher, deal in self.db.execute(stmt).all()]

    def count_redemptions(
        self,
        business_id: str,
        deal_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> int:
        stmt = self._redeemed_for(self.scoped(func.count(Voucher.id)), business_id, deal_id, start, end)
        return self.db.execute(stmt).scalar_one()

    def redemption_totals(self, business_id: str) -> tuple[int, int]:
        """(redeemed voucher count, sum of their deal prices in cents) over all time."""
        stmt = (
            self.scoped(func.count(Voucher.id), func.coalesce(func.sum(Deal.deal_price_cents), 0))
            .select_from(Voucher)
            .join(Deal, and_(Deal.id == Voucher.deal_id, Deal.tenant_id == Voucher.tenant_id))
        )
        count, revenue = self.db.execute(self._redeemed_for(stmt, business_id)).one()
        return int(count), int(revenue)


class VoucherAuditRepository(TenantScopedRepository[VoucherAuditLog]):
    model = VoucherAuditLog

    def record(
        self,
        voucher_id: str,
        deal_id: str,
        action: str,
        actor_type: str,
        actor_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> VoucherAuditLog:
        return self.add(
            VoucherAuditLog(
                tenant_id=self.tenant_id,
                voucher_id=voucher_id,
                deal_id=deal_id,
                action=action,
                actor_type=actor_type,
                actor_id=actor_id,
                details_json=details,
            )
        )

    def record_many(self, rows: list[dict]) -> None:
        if not rows:
            return
        self.db.execute(insert(VoucherAuditLog), [{**row, "tenant_id": self.tenant_id} for row in rows])

    def list_for_voucher(self, voucher_id: str) -> list[VoucherAuditLog]:
        stmt = (
            self.scoped()
            .where(VoucherAuditLog.voucher_id == voucher_id)
            .order_by(VoucherAuditLog.created_at, VoucherAuditLog.id)
        )
        return list(self.db.execute(stmt).scalars().all())
