"""Voucher audit trail vocabulary.

Audit rows are written inside the same transaction as the state change they
describe, except redemption rejections, which are recorded after the rejected
attempt has rolled back.
"""

from typing import Optional

from dealcore_api.auth.actor import Actor


class AuditActor:
    SYSTEM = "system"
    USER = "user"
    VENDOR = "vendor"
    ADMIN = "admin"


class AuditAction:
    ISSUED = "issued"
    ASSIGNED = "assigned"
    REDEEMED = "redeemed"
    REDEMPTION_REJECTED = "redemption_rejected"


def actor_type_for(actor: Optional[Actor]) -> str:
    if actor is None:
        return AuditActor.SYSTEM
    return actor.role.value
