"""Purchase, payment-failure, review-task and reconciliation repositories (tenant-scoped)."""

from datetime import datetime
from typing import Optional

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from dealcore_api.db.models import (
    PaymentFailure,
    Purchase,
    PurchaseReconciliation,
    ReviewTask,
    Voucher,
)
from dealcore_api.db.repo_base import TenantScopedRepository


def payment_intent_in_use(db: Session, payment_intent_id: str) -> bool:
    """Whether any county already has a purchase for this payment intent.

    Payment intents are unique across the whole platform, so this check is the
    one purchase read that is not tenant-scoped. It answers existence only.
    """
    stmt = select(Purchase.id).where(Purchase.payment_intent_id == payment_intent_id).limit(1)
    return db.execute(stmt).first() is not None


class PurchaseRepository(TenantScopedRepository[Purchase]):
    model = Purchase

    def get_by_payment_intent(self, payment_intent_id: str) -> Optional[Purchase]:
        stmt = self.scoped().where(Purchase.payment_intent_id == payment_intent_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def count_for_user_since(self, user_id: str, since: datetime) -> int:
        stmt = self.scoped(func.count(Purchase.id)).where(
            Purchase.user_id == user_id, Purchase.created_at >= since
        )
        return self.db.execute(stmt).scalar_one()

    def count_for_deal_since(self, deal_id: str, since: datetime) -> int:
        stmt = self.scoped(func.count(Purchase.id)).where(
            Purchase.deal_id == deal_id, Purchase.created_at >= since
        )
        return self.db.execute(stmt).scalar_one()

    def get_by_voucher(self, voucher_id: str) -> Optional[Purchase]:
        stmt = self.scoped().where(Purchase.voucher_id == voucher_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def list_for_user(
        self,
        user_id: str,
        voucher_status: Optional[str] = None,
        limit: int = 50,
    ) -> list[tuple[Purchase, Voucher]]:
        """A customer's purchases, newest first, each with its voucher."""
        stmt = (
            self.scoped(Purchase, Voucher)
            .join(Voucher, and_(Voucher.id == Purchase.voucher_id, Voucher.tenant_id == Purchase.tenant_id))
            .where(Purchase.user_id == user_id)
        )
        if voucher_status:
            stmt = stmt.where(Voucher.status == voucher_status)
        stmt = stmt.order_by(Purchase.created_at.desc(), Purchase.id).limit(limit)
        return [(purchase, voucher) for purchase, voucher in self.db.execute(stmt).all()]


class PaymentFailureRepository(TenantScopedRepository[PaymentFailure]):
    model = PaymentFailure

    def count_for_user_since(self, user_id: str, since: datetime) -> int:
        stmt = self.scoped(func.count(PaymentFailure.id)).where(
            PaymentFailure.user_id == user_id, PaymentFailure.created_at >= since
        )
        return self.db.execute(stmt).scalar_one()


class ReviewTaskRepository(TenantScopedRepository[ReviewTask]):
    model = ReviewTask

    def find_open(self, task_type: str, subject_id: str, since: datetime) -> Optional[ReviewTask]:
        """Unresolved task of the same type and subject created since `since`."""
        stmt = (
            self.scoped()
            .where(
                ReviewTask.task_type == task_type,
                ReviewTask.subject_id == subject_id,
                ReviewTask.resolved.is_(False),
                ReviewTask.created_at >= since,
            )
            .limit(1)
        )
        return self.db.execute(stmt).scalars().first()

    def list_tasks(self, resolved: Optional[bool] = None, limit: int = 100) -> list[ReviewTask]:
        stmt = self.scoped()
        if resolved is not None:
            stmt = stmt.where(ReviewTask.resolved.is_(resolved))
        stmt = stmt.order_by(ReviewTask.created_at.desc(), ReviewTask.id).limit(limit)
        return list(self.db.execute(stmt).scalars().all())


class ReconciliationRepository(TenantScopedRepository[PurchaseReconciliation]):
    model = PurchaseReconciliation

    def get_by_payment_intent(self, payment_intent_id: str) -> Optional[PurchaseReconciliation]:
        stmt = self.scoped().where(PurchaseReconciliation.payment_intent_id == payment_intent_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def list_by_state(self, state: Optional[str] = None, limit: int = 100) -> list[PurchaseReconciliation]:
        stmt = self.scoped()
        if state:
            stmt = stmt.where(PurchaseReconciliation.state == state)
        stmt = stmt.order_by(PurchaseReconciliation.created_at, PurchaseReconciliation.id).limit(limit)
        return list(self.db.execute(stmt).scalars().all())
