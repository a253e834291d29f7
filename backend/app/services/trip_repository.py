"""
Trip persistence used by the auto scheduler.

Every method opens its own session so the repository can be shared between
request handlers and the background scheduling loop.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import SQLAlchemyError

from backend.app.core.exceptions import PersistenceError
from backend.app.models.profile import Profile
from backend.app.models.trip import Trip
from backend.app.models.trip_enums import ASSIGNABLE_STATUSES, IN_FLIGHT_STATUSES, TripStatus
from backend.app.services.change_feed import TRIPS_CHANNEL

logger = logging.getLogger(__name__)


class TripRepository:

    def __init__(self, session_factory, change_feed=None):
        self.session_factory = session_factory
        self.change_feed = change_feed

    async def announce_change(self) -> None:
        if self.change_feed is not None:
            await self.change_feed.publish(TRIPS_CHANNEL)

    async def get(self, trip_id: int) -> Optional[Trip]:
        async with self.session_factory() as session:
            result = await session.execute(select(Trip).where(Trip.id == trip_id))
            return result.scalar_one_or_none()

    async def list_unscheduled(self, limit: int = 50) -> List[Trip]:
        """Trips waiting for a driver, earliest pickup first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Trip)
                .where(
                    Trip.driver_id.is_(None),
                    Trip.status.in_(ASSIGNABLE_STATUSES)
                )
                .order_by(Trip.scheduled_pickup_time.asc(), Trip.id.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def list_active_assignments(self) -> list:
        """(driver_id, status) rows of every in-flight trip."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Trip.driver_id, Trip.status).where(
                    Trip.driver_id.is_not(None),
                    Trip.status.in_(IN_FLIGHT_STATUSES)
                )
            )
            return list(result.all())

    async def list_history(self) -> list:
        """
        Every trip ever given a driver, with that driver's employment start.

        Rows are ordered by scheduled pickup so running metrics are built
        chronologically.
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(
                    Trip.driver_id,
                    Trip.status,
                    Trip.scheduled_pickup_time,
                    Trip.actual_pickup_time,
                    Profile.first_start_date,
                )
                .outerjoin(Profile, Profile.id == Trip.driver_id)
                .where(Trip.driver_id.is_not(None))
                .order_by(Trip.scheduled_pickup_time.asc(), Trip.id.asc())
            )
            return list(result.all())

    async def update_assignment(
        self,
        trip_id: int,
        driver_id: int,
        status: TripStatus = TripStatus.ASSIGNED,
        auto_scheduled: bool = True,
        auto_scheduled_at: Optional[datetime] = None,
        auto_scheduled_by: Optional[int] = None,
        assigned_at: Optional[datetime] = None,
        announce: bool = True,
    ) -> None:
        """
        Assign a driver to a trip that is still unassigned.

        Batch callers pass announce=False and publish one change message
        for the whole batch.

        Raises:
            PersistenceError: if the write fails or the trip was assigned or
                moved out of an assignable status in the meantime
        """
        values = {
            "driver_id": driver_id,
            "status": status,
            "auto_scheduled": auto_scheduled,
            "assigned_at": assigned_at,
        }
        if auto_scheduled_at is not None:
            values["auto_scheduled_at"] = auto_scheduled_at
            values["auto_scheduled_by"] = auto_scheduled_by

        async with self.session_factory() as session:
            try:
                result = await session.execute(
                    update(Trip)
                    .where(
                        Trip.id == trip_id,
                        Trip.driver_id.is_(None),
                        Trip.status.in_(ASSIGNABLE_STATUSES)
                    )
                    .values(**values)
                )
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.error("Trip assignment write failed", extra={"trip_id": trip_id}, exc_info=True)
                raise PersistenceError(str(exc), details={"trip_id": trip_id}) from exc

        if result.rowcount == 0:
            raise PersistenceError(
                f"Trip {trip_id} is no longer awaiting a driver",
                details={"trip_id": trip_id}
            )

        if announce:
            await self.announce_change()

    async def bulk_revert_by_batch(self, batch_timestamp: datetime) -> int:
        """
        Unassign every trip of an auto-schedule batch in one statement.

        Returns:
            Number of trips reverted

        Raises:
            PersistenceError: if the update fails (nothing is reverted)
        """
        async with self.session_factory() as session:
            try:
                result = await session.execute(
                    update(Trip)
                    .where(Trip.auto_scheduled_at == batch_timestamp)
                    .values(
                        driver_id=None,
                        status=TripStatus.PENDING,
                        assigned_at=None,
                        auto_scheduled_at=None,
                        auto_scheduled_by=None,
                    )
                )
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.error(
                    "Batch revert failed",
                    extra={"batch_timestamp": batch_timestamp.isoformat()},
                    exc_info=True
                )
                raise PersistenceError(str(exc)) from exc

        if result.rowcount:
            await self.announce_change()
        return result.rowcount

    async def find_recent_batch_timestamp(self, since: datetime) -> Optional[datetime]:
        """Latest auto-schedule batch timestamp at or after `since`, if any."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.max(Trip.auto_scheduled_at)).where(
                    Trip.auto_scheduled_at.is_not(None),
                    Trip.auto_scheduled_at >= since
                )
            )
            return result.scalar()
