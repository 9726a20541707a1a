"""
Audit log helpers.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.database.models.admin import AuditAction, AuditLog, AuditTargetType

logger = logging.getLogger(__name__)


async def record_audit(
    db: AsyncSession,
    actor_user_id: Optional[str],
    action: AuditAction,
    target_type: AuditTargetType,
    target_id: Optional[str],
    description: Optional[str] = None,
    metadata: Optional[dict] = None,
    ip_address: Optional[str] = None,
) -> AuditLog:
    """
    Add an audit log entry to the current transaction.

    The caller commits; the entry is rolled back with the action it records.
    """
    details = dict(metadata) if metadata else {}
    if description:
        details["description"] = description

    entry = AuditLog(
        actor_user_id=actor_user_id,
        action=action.value,
        target_type=target_type.value,
        target_id=target_id,
        details=details or None,
        ip_address=ip_address,
    )
    db.add(entry)
    await db.flush()
    logger.info(
        "Audit: %s on %s %s",
        action.value,
        target_type.value,
        target_id,
        extra={"user_id": actor_user_id},
    )
    return entry
