"""Business ownership checks shared by redemption and allowance routes."""

from typing import Optional

from sqlalchemy.orm import Session

from dealcore_api.auth.actor import Actor
from dealcore_api.db.repo_deals import BusinessRepository
from dealcore_api.results import Err, ErrorCode


def check_business_access(db: Session, tenant_id: str, actor: Actor, business_id: str) -> Optional[Err]:
    """None when the actor may act for the business (its vendor owner, or an admin)."""
    business = BusinessRepository(db, tenant_id).get_by_id(business_id)
    if business is None:
        return Err(ErrorCode.BUSINESS_NOT_FOUND, "Business not found")
    if actor.is_admin:
        return None
    if actor.is_vendor and business.owner_user_id == actor.user_id:
        return None
    return Err(ErrorCode.NOT_BUSINESS_OWNER, "Only the business owner can act for this business")
