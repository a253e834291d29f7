"""
Audit Log Database Model.

Tracks dispatch decisions made by the auto scheduler.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model.

    Events logged:
    - AUTO_SCHEDULE_RUN (one row per batch)
    - TRIP_AUTO_ASSIGNED (single "Schedule Now" assignment)
    - AUTO_SCHEDULE_UNDONE
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who triggered it (None for timer-driven runs without an actor)
    actor_id = Column(Integer, index=True, nullable=True)

    action = Column(String(100), nullable=False, index=True)

    trip_id = Column(Integer, index=True, nullable=True)

    # Counts, batch timestamp, chosen driver...
    meta_data = Column(JSON, nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor_id})>"
