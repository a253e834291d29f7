"""
Read access to driver profiles.
"""

from typing import List

from sqlalchemy import select

from backend.app.models.enums import ProfileRole, ProfileStatus
from backend.app.models.profile import Profile


class DriverRepository:

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def list_active_drivers(self) -> List[Profile]:
        """Active driver profiles, by name."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Profile)
                .where(
                    Profile.role == ProfileRole.DRIVER,
                    Profile.status == ProfileStatus.ACTIVE
                )
                .order_by(Profile.full_name, Profile.id)
            )
            return list(result.scalars().all())
