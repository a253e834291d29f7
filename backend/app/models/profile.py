"""
Profile database model.

Drivers are profiles with role=driver. This service only reads them.
"""

from sqlalchemy import Column, Integer, String, Float, Date, DateTime, Enum
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.enums import ProfileRole, ProfileStatus


class Profile(Base):
    """
    Dashboard profile (dispatcher, admin or driver).

    Location columns are written by the driver app's location updates.
    """
    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    full_name = Column(String(255), nullable=False, index=True)
    email = Column(String(255), unique=True, index=True, nullable=True)
    phone = Column(String(50), nullable=True)

    role = Column(Enum(ProfileRole), default=ProfileRole.DRIVER, nullable=False, index=True)
    status = Column(Enum(ProfileStatus), default=ProfileStatus.ACTIVE, nullable=False, index=True)

    # Last reported GPS position (NULL when tracking is off)
    current_latitude = Column(Float, nullable=True)
    current_longitude = Column(Float, nullable=True)

    # Employment start, drives the experience metric
    first_start_date = Column(Date, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def has_location(self) -> bool:
        return self.current_latitude is not None and self.current_longitude is not None

    def __repr__(self):
        return f"<Profile(id={self.id}, full_name='{self.full_name}', role='{self.role.value}')>"
