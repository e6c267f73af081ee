"""Caller identity.

Identity and sessions are issued upstream; the gateway forwards the verified
caller as X-Actor-Id / X-Actor-Role. The admin role is additionally gated by
X-Admin-Token (constant-time compare against ADMIN_TOKEN), so a forwarded
role header alone never grants admin rights.
"""

import logging
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from fastapi import Header, HTTPException, status

from dealcore_api.config.env import get_admin_token
from dealcore_api.context import actor_id_var, request_id_var

logger = logging.getLogger(__name__)


class ActorRole(str, Enum):
    USER = "user"
    VENDOR = "vendor"
    ADMIN = "admin"


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: ActorRole

    @property
    def is_admin(self) -> bool:
        return self.role is ActorRole.ADMIN

    @property
    def is_vendor(self) -> bool:
        return self.role is ActorRole.VENDOR

    @property
    def is_user(self) -> bool:
        return self.role is ActorRole.USER


def verify_admin_token(provided_token: Optional[str]) -> None:
    """Verify admin token using constant-time comparison.

    Raises:
        HTTPException 401: If token is missing or invalid
        HTTPException 500: If ADMIN_TOKEN not configured
    """
    try:
        expected_token = get_admin_token()
    except RuntimeError as e:
        logger.error(f"Admin token not configured: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Admin token not configured on server",
        )

    if not provided_token or not secrets.compare_digest(provided_token, expected_token):
        logger.warning(
            "Invalid admin token attempt",
            extra={"event": "admin.auth_failed", "request_id": request_id_var.get()},
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-Admin-Token",
            headers={"WWW-Authenticate": "Header"},
        )


def get_actor(
    x_actor_id: Optional[str] = Header(None, alias="X-Actor-Id"),
    x_actor_role: Optional[str] = Header(None, alias="X-Actor-Role"),
    x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
) -> Actor:
    """FastAPI dependency: the authenticated caller."""
    if not x_actor_id or not x_actor_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-Id and X-Actor-Role headers are required",
        )
    try:
        role = ActorRole(x_actor_role.lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unknown actor role: {x_actor_role}",
        )

    if role is ActorRole.ADMIN:
        verify_admin_token(x_admin_token)

    actor_id_var.set(x_actor_id)
    return Actor(user_id=x_actor_id, role=role)


def require_admin(
    x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
    x_actor_id: Optional[str] = Header(None, alias="X-Actor-Id"),
) -> Actor:
    """FastAPI dependency for /v1/admin routes: a valid admin token is mandatory."""
    verify_admin_token(x_admin_token)
    actor_id = x_actor_id or "admin"
    actor_id_var.set(actor_id)
    return Actor(user_id=actor_id, role=ActorRole.ADMIN)
