"""
Wires the auto scheduler's collaborators together for the application.
"""

from datetime import timedelta
from typing import Optional

from backend.app.core.config import Settings, settings as default_settings
from backend.app.services.assignment_engine import AssignmentEngine
from backend.app.services.audit import AuditTrail
from backend.app.services.change_feed import ChangeFeed
from backend.app.services.driver_repository import DriverRepository
from backend.app.services.notification_service import NotificationService
from backend.app.services.scheduling_loop import SchedulingLoop
from backend.app.services.trip_repository import TripRepository


def build_scheduling_loop(
    session_factory,
    change_feed: Optional[ChangeFeed] = None,
    notifier=None,
    config: Optional[Settings] = None,
) -> SchedulingLoop:
    """
    Build the scheduling loop and everything it drives.

    Args:
        session_factory: async_sessionmaker shared by all repositories
        change_feed: Redis change feed; None disables publish/subscribe
        notifier: Overrides the default NotificationService
        config: Settings to read intervals and windows from
    """
    config = config or default_settings

    trip_repository = TripRepository(session_factory, change_feed=change_feed)
    driver_repository = DriverRepository(session_factory)
    if notifier is None:
        notifier = NotificationService(
            session_factory,
            webhook_url=config.trip_confirmation_webhook_url,
            timeout_seconds=config.notification_timeout_seconds,
        )

    engine = AssignmentEngine(
        trip_repository,
        driver_repository,
        notifier,
        audit=AuditTrail(session_factory),
        on_time_grace=timedelta(minutes=config.on_time_grace_minutes),
        undo_window=timedelta(minutes=config.undo_window_minutes),
    )
    return SchedulingLoop(
        engine,
        trip_repository,
        change_feed=change_feed,
        auto_schedule_interval=config.auto_schedule_interval_seconds,
        refresh_interval=config.state_refresh_interval_seconds,
        unscheduled_limit=config.unscheduled_trip_limit,
    )
