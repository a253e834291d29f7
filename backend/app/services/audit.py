"""
Audit logging for dispatch decisions.

Records who ran the auto scheduler, what it assigned and what was undone.
"""

import logging
from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from backend.app.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


class AuditAction:
    """Standardized audit action constants."""
    AUTO_SCHEDULE_RUN = "AUTO_SCHEDULE_RUN"
    TRIP_AUTO_ASSIGNED = "TRIP_AUTO_ASSIGNED"
    AUTO_SCHEDULE_UNDONE = "AUTO_SCHEDULE_UNDONE"


async def log_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[int] = None,
    trip_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Write one audit entry.

    Args:
        db: Database session
        action: Action being recorded (use AuditAction constants)
        actor_id: Profile that triggered it, None for unattended runs
        trip_id: Trip concerned, for single-trip actions
        metadata: Additional context as JSON

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        action=action,
        trip_id=trip_id,
        meta_data=metadata,
    )

    db.add(audit_log)
    await db.commit()
    await db.refresh(audit_log)

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit entries, most recent first.

    Args:
        db: Database session
        action: Filter by action type
        limit: Maximum number of records to return
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())


class AuditTrail:
    """Session-owning wrapper so background code can write audit entries."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def record(
        self,
        action: str,
        actor_id: Optional[int] = None,
        trip_id: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        async with self.session_factory() as db:
            await log_event(db, action, actor_id=actor_id, trip_id=trip_id, metadata=metadata)
