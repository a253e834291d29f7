"""
Trip-related enumerations.
"""

import enum


class TripStatus(str, enum.Enum):
    """Trip status enumeration."""
    PENDING = "pending"  # Booked, awaiting a driver
    SCHEDULED = "scheduled"  # Confirmed time, awaiting a driver
    ASSIGNED = "assigned"  # Driver assigned, not started
    ACTIVE = "active"  # Driver en route to pickup
    PICKED_UP = "picked_up"  # Patient on board
    COMPLETED = "completed"  # Dropped off
    CANCELLED = "cancelled"  # Cancelled (trips are never deleted)


# Trips a driver may be auto-assigned to (when driver_id is NULL)
ASSIGNABLE_STATUSES = (TripStatus.SCHEDULED, TripStatus.PENDING)

# Trips that count towards a driver's current workload
IN_FLIGHT_STATUSES = (TripStatus.ASSIGNED, TripStatus.ACTIVE, TripStatus.PICKED_UP)
