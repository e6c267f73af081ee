"""Tenant (county) boundary resolution.

Resolution order, first hint present wins:
  1. path     - /v1/c/{county}/...
  2. session  - "county_context" cookie
  3. header   - X-County-Slug, then X-County-Id

A request that names no county, names an unknown one, or names an inactive
one fails. There is no default county.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from dealcore_api.context import tenant_id_var
from dealcore_api.db.models import Tenant
from dealcore_api.db.repo_tenants import TenantRepository
from dealcore_api.db.session import get_db
from dealcore_api.results import Err, ErrorCode, Ok, Result, ResultError

logger = logging.getLogger(__name__)

COUNTY_PATH_PARAM = "county"
COUNTY_COOKIE = "county_context"
COUNTY_SLUG_HEADER = "X-County-Slug"
COUNTY_ID_HEADER = "X-County-Id"

SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


@dataclass(frozen=True)
class TenantContext:
    tenant_id: str
    slug: str
    display_name: str
    source: str  # path/session/header


def is_valid_slug(slug: str) -> bool:
    return bool(SLUG_PATTERN.match(slug))


def _lookup(repo: TenantRepository, hint: str, by_id: bool) -> Result[Tenant]:
    if by_id:
        tenant = repo.get_by_id(hint)
    else:
        if not is_valid_slug(hint):
            return Err(ErrorCode.INVALID_TENANT_SLUG, f"'{hint}' is not a valid county slug")
        tenant = repo.get_by_slug(hint)

    if tenant is None:
        return Err(ErrorCode.TENANT_NOT_FOUND, f"County '{hint}' does not exist")
    if not tenant.is_active:
        return Err(ErrorCode.TENANT_INACTIVE, f"County '{tenant.slug}' is not active")
    return Ok(tenant)


def _lookup_session(repo: TenantRepository, hint: str) -> Result[Tenant]:
    """Cookie values may be a slug or a tenant id; generated ids are slug-shaped too."""
    if is_valid_slug(hint) and repo.get_by_slug(hint) is not None:
        return _lookup(repo, hint, by_id=False)
    return _lookup(repo, hint, by_id=True)


def resolve_tenant(
    db: Session,
    *,
    path_hint: Optional[str] = None,
    session_hint: Optional[str] = None,
    header_slug: Optional[str] = None,
    header_id: Optional[str] = None,
) -> Result[TenantContext]:
    """Resolve the active tenant from request hints.

    The session cookie may hold either a slug or a tenant id. A slug match
    wins; otherwise the value is looked up as an id.
    """
    repo = TenantRepository(db)

    if path_hint:
        source, result = "path", _lookup(repo, path_hint, by_id=False)
    elif session_hint:
        source, result = "session", _lookup_session(repo, session_hint)
    elif header_slug:
        source, result = "header", _lookup(repo, header_slug, by_id=False)
    elif header_id:
        source, result = "header", _lookup(repo, header_id, by_id=True)
    else:
        return Err(
            ErrorCode.TENANT_CONTEXT_REQUIRED,
            "County context required: use /v1/c/{county}/..., the county_context cookie, "
            "or the X-County-Slug / X-County-Id header",
        )

    if isinstance(result, Err):
        logger.info(
            "tenant.resolve_failed",
            extra={"event": "tenant.resolve_failed", "source": source, "code": result.code.value},
        )
        return result

    tenant = result.value
    return Ok(
        TenantContext(
            tenant_id=tenant.id,
            slug=tenant.slug,
            display_name=tenant.display_name,
            source=source,
        )
    )


def get_tenant_context(request: Request, db: Session = Depends(get_db)) -> TenantContext:
    """FastAPI dependency: resolve the tenant or fail the request."""
    result = resolve_tenant(
        db,
        path_hint=request.path_params.get(COUNTY_PATH_PARAM),
        session_hint=request.cookies.get(COUNTY_COOKIE),
        header_slug=request.headers.get(COUNTY_SLUG_HEADER),
        header_id=request.headers.get(COUNTY_ID_HEADER),
    )
    if isinstance(result, Err):
        raise ResultError(result)

    # End the read so later work can open its own transaction settings
    db.rollback()

    tenant_id_var.set(result.value.tenant_id)
    return result.value
