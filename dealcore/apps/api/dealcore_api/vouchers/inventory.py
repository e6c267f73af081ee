"""Voucher inventory materialization.

Activation turns a deal's quantity limit into that many `available` voucher
rows, each with a fresh redemption token. The caller owns the transaction, so
materialization commits or rolls back together with the status change.
"""

import logging
import secrets
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from dealcore_api.db.models import Deal, VoucherStatus
from dealcore_api.db.repo_vouchers import VoucherAuditRepository, VoucherRepository
from dealcore_api.vouchers.audit import AuditAction

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "VCH"
_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_redemption_token(issued_at: datetime) -> str:
    """VCH-<issue time, base36 ms>-<128 random bits as 32 hex chars>.

    The timestamp segment only aids support lookups; uniqueness and
    unguessability come from the random segment.
    """
    millis = int(issued_at.timestamp() * 1000)
    return f"{TOKEN_PREFIX}-{_to_base36(millis)}-{secrets.token_hex(16).upper()}"


def materialize_vouchers(
    db: Session,
    tenant_id: str,
    deal: Deal,
    quantity: int,
    issued_at: datetime,
    actor_type: str,
    actor_id: Optional[str] = None,
) -> list[str]:
    """Insert `quantity` available vouchers for the deal and their `issued` audit rows.

    Returns:
        The new voucher ids.
    """
    if quantity < 1:
        raise ValueError(f"quantity must be >= 1, got {quantity}")

    voucher_rows = []
    audit_rows = []
    for _ in range(quantity):
        voucher_id = str(uuid.uuid4())
        voucher_rows.append(
            {
                "id": voucher_id,
                "deal_id": deal.id,
                "business_id": deal.business_id,
                "redemption_token": generate_redemption_token(issued_at),
                "status": VoucherStatus.AVAILABLE,
                "issued_at": issued_at,
                "expires_at": deal.redemption_window_end,
            }
        )
        audit_rows.append(
            {
                "id": str(uuid.uuid4()),
                "voucher_id": voucher_id,
                "deal_id": deal.id,
                "actor_type": actor_type,
                "actor_id": actor_id,
                "action": AuditAction.ISSUED,
                "details_json": None,
                "created_at": issued_at,
            }
        )

    VoucherRepository(db, tenant_id).bulk_insert(voucher_rows)
    VoucherAuditRepository(db, tenant_id).record_many(audit_rows)

    logger.info(
        "vouchers.materialized",
        extra={
            "event": "vouchers.materialized",
            "tenant_id": tenant_id,
            "deal_id": deal.id,
            "business_id": deal.business_id,
            "quantity": quantity,
        },
    )
    return [row["id"] for row in voucher_rows]
