"""
Trip database model.

Trips are booked outside this service; the auto scheduler only writes the
driver assignment and the auto-schedule marker.
"""

from sqlalchemy import Column, Integer, String, Float, Boolean, ForeignKey, DateTime, Enum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.trip_enums import TripStatus


class Trip(Base):
    """
    Trip model.

    A batch of auto-assigned trips shares one auto_scheduled_at value, which
    is how a batch is found again for undo.
    """
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    patient_id = Column(Integer, ForeignKey('patients.id'), nullable=True, index=True)

    # Locations (coordinates are optional, geocoding may have failed)
    pickup_address = Column(String(500), nullable=False)
    pickup_lat = Column(Float, nullable=True)
    pickup_lng = Column(Float, nullable=True)
    dropoff_address = Column(String(500), nullable=False)
    dropoff_lat = Column(Float, nullable=True)
    dropoff_lng = Column(Float, nullable=True)

    # Times (naive UTC)
    scheduled_pickup_time = Column(DateTime, nullable=False, index=True)
    actual_pickup_time = Column(DateTime, nullable=True)
    actual_dropoff_time = Column(DateTime, nullable=True)

    # Assignment
    status = Column(Enum(TripStatus), default=TripStatus.PENDING, nullable=False, index=True)
    driver_id = Column(Integer, ForeignKey('profiles.id'), nullable=True, index=True)
    assigned_at = Column(DateTime, nullable=True)

    # Auto-schedule marker
    auto_scheduled = Column(Boolean, default=False, nullable=False)
    auto_scheduled_at = Column(DateTime, nullable=True, index=True)
    auto_scheduled_by = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    patient = relationship("Patient", lazy="selectin")

    def __repr__(self):
        return f"<Trip(id={self.id}, driver_id={self.driver_id}, status='{self.status.value}')>"
