"""
Profile enumerations.

Defines the role and status types of dashboard profiles.
"""

import enum


class ProfileRole(str, enum.Enum):
    """
    Profile role enumeration.

    Roles:
        ADMIN: Company administrator
        DISPATCHER: Manages trips, drivers and billing
        DRIVER: Candidate for trip assignment
    """
    ADMIN = "admin"
    DISPATCHER = "dispatcher"
    DRIVER = "driver"


class ProfileStatus(str, enum.Enum):
    """Only ACTIVE drivers are considered by the auto scheduler."""
    ACTIVE = "active"
    INACTIVE = "inactive"
