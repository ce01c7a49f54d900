"""
Audit sink: one row per reservation / purchase / order event.

Fire-and-forget. Callers commit their ticket transition first and then
record the event, so a failed audit write can never undo it; the failure
is logged and dropped.
"""

from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from prizedraw.models.audit_log import AuditLog
from prizedraw.core.logging import get_logger

logger = get_logger("prizedraw.audit")


async def record_audit_event(
    db: AsyncSession,
    action: str,
    *,
    entity: str,
    entity_id: Optional[int],
    user_id: Optional[int] = None,
    details: Optional[dict] = None,
) -> None:
    logger.info(
        "audit_event",
        action=action,
        entity=entity,
        entity_id=entity_id,
        user_id=user_id,
        **(details or {}),
    )
    try:
        db.add(
            AuditLog(
                user_id=user_id,
                action=action,
                entity=entity,
                entity_id=entity_id,
                details=details,
            )
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("audit_write_failed", action=action, entity=entity, entity_id=entity_id, error=str(e))
