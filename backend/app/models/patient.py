"""
Patient database model.
"""

from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from backend.app.db.session import Base


class Patient(Base):
    """Member who rides. mobility_needs is e.g. 'ambulatory' or 'wheelchair'."""
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    full_name = Column(String(255), nullable=False, index=True)
    phone = Column(String(50), nullable=True)
    mobility_needs = Column(String(50), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Patient(id={self.id}, full_name='{self.full_name}')>"
