"""
Notification Service.

Tells a driver about a new assignment: an in-app notification row, plus an
optional call to the trip-confirmation webhook (SMS gateway) when configured.
"""

import logging
from typing import Optional, Dict, Any

import httpx
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.exceptions import NotificationError
from backend.app.core.reliability import CircuitBreaker, CircuitOpenError
from backend.app.models.notification import Notification, NotificationType
from backend.app.models.trip import Trip

logger = logging.getLogger(__name__)


class NotificationService:

    def __init__(
        self,
        session_factory,
        webhook_url: Optional[str] = None,
        timeout_seconds: float = None,
        breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.session_factory = session_factory
        self.webhook_url = webhook_url
        self.timeout_seconds = timeout_seconds or settings.notification_timeout_seconds
        self.breaker = breaker or CircuitBreaker(failure_threshold=3, reset_timeout=30)
        self.transport = transport

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        profile_id: int,
        title: str,
        message: str,
        type: NotificationType = NotificationType.INFO,
        trip_id: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Notification:
        """Create a single notification."""
        notif = Notification(
            profile_id=profile_id,
            trip_id=trip_id,
            type=type,
            title=title,
            message=message,
            metadata_payload=metadata
        )
        db.add(notif)
        await db.flush()  # Caller commits
        return notif

    async def notify_trip_assigned(self, trip_id: int) -> None:
        """
        Notify the driver now assigned to `trip_id`.

        Raises:
            NotificationError: on any failure; callers treat it as non-fatal
        """
        async with self.session_factory() as db:
            try:
                result = await db.execute(select(Trip).where(Trip.id == trip_id))
                trip = result.scalar_one_or_none()
                if trip is None or trip.driver_id is None:
                    raise NotificationError(f"Trip {trip_id} has no assigned driver to notify")

                pickup = trip.scheduled_pickup_time.strftime("%Y-%m-%d %H:%M")
                await self.create_notification(
                    db,
                    profile_id=trip.driver_id,
                    trip_id=trip.id,
                    type=NotificationType.TRIP_ASSIGNED,
                    title="New trip assigned",
                    message=f"Pickup {pickup} at {trip.pickup_address}",
                    metadata={"dropoff_address": trip.dropoff_address},
                )
                await db.commit()
            except SQLAlchemyError as exc:
                await db.rollback()
                raise NotificationError(f"Could not store notification: {exc}") from exc

        if self.webhook_url:
            try:
                await self.breaker.call(self._send_trip_confirmation, trip_id)
            except (httpx.HTTPError, CircuitOpenError) as exc:
                raise NotificationError(f"Trip confirmation not sent: {exc}") from exc

    async def _send_trip_confirmation(self, trip_id: int) -> None:
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            response = await client.post(self.webhook_url, json={"tripId": trip_id})
            response.raise_for_status()
        logger.info("Trip confirmation requested", extra={"trip_id": trip_id})
