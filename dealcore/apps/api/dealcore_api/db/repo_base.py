"""Tenant-scoped repository base.

A repository is bound to one tenant_id at construction. Every query it builds
carries that tenant_id and every row it adds must belong to it, so a handler
holding a repository cannot reach another county's data.
"""

from typing import Any, Generic, Optional, TypeVar

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from dealcore_api.db.models import Base

ModelT = TypeVar("ModelT", bound=Base)


class TenantScopeError(ValueError):
    """Raised when a row from another tenant is handed to a repository."""


class TenantScopedRepository(Generic[ModelT]):
    model: type[ModelT]

    def __init__(self, db: Session, tenant_id: str):
        if not tenant_id:
            raise ValueError("tenant_id is required for tenant-scoped repositories")
        self.db = db
        self.tenant_id = tenant_id

    def scoped(self, *columns: Any) -> Select:
        """SELECT over this repository's model (or given columns) filtered to the tenant."""
        stmt = select(*columns) if columns else select(self.model)
        return stmt.where(self.model.tenant_id == self.tenant_id)

    def get_by_id(self, entity_id: str) -> Optional[ModelT]:
        stmt = self.scoped().where(self.model.id == entity_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def add(self, entity: ModelT) -> ModelT:
        """Stage a new row, stamping the tenant when unset.

        Raises:
            TenantScopeError: entity already carries a different tenant_id
        """
        if entity.tenant_id is None:
            entity.tenant_id = self.tenant_id
        elif entity.tenant_id != self.tenant_id:
            raise TenantScopeError(
                f"{type(entity).__name__} belongs to tenant {entity.tenant_id}, "
                f"repository is bound to {self.tenant_id}"
            )
        self.db.add(entity)
        return entity
