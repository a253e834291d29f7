"""
Driver performance aggregation.

Derives per-driver metrics from the full assignment history. The result is
rebuilt from scratch on every refresh; nothing here is persisted.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, Iterable, Optional

from backend.app.core.clock import utcnow
from backend.app.models.trip_enums import TripStatus

# No rating subsystem exists yet; every driver gets the same placeholder
DEFAULT_AVERAGE_RATING = 4.5

# Experience reported when the employment start date is unknown
DEFAULT_EXPERIENCE_MONTHS = 5

DEFAULT_ON_TIME_GRACE = timedelta(minutes=15)

TOP_PERFORMER_MIN_TRIPS = 20
TOP_PERFORMER_MIN_ON_TIME_RATE = 0.9


@dataclass
class DriverPerformance:
    driver_id: int
    total_trips: int = 0
    on_time_rate: float = 0.0
    cancellation_rate: float = 0.0
    average_rating: float = DEFAULT_AVERAGE_RATING
    experience_months: int = DEFAULT_EXPERIENCE_MONTHS

    @property
    def is_top_performer(self) -> bool:
        return (
            self.total_trips > TOP_PERFORMER_MIN_TRIPS
            and self.on_time_rate > TOP_PERFORMER_MIN_ON_TIME_RATE
        )


def months_employed(start: date, today: date) -> int:
    """Whole 30-day months between start and today (may be 0 or negative)."""
    return (today - start).days // 30


def cumulative_mean(previous: float, hit: bool, n: int) -> float:
    """Running mean after the n-th observation."""
    return (previous * (n - 1) + (1 if hit else 0)) / n


def aggregate_driver_performance(
    history: Iterable,
    today: Optional[date] = None,
    on_time_grace: timedelta = DEFAULT_ON_TIME_GRACE,
) -> Dict[int, DriverPerformance]:
    """
    Build performance metrics for every driver appearing in the history.

    Args:
        history: Rows exposing driver_id, status, scheduled_pickup_time,
            actual_pickup_time and first_start_date (the driver's employment
            start, may be None). Processed in the given order.
        today: Reference date for experience (defaults to today, UTC)
        on_time_grace: How late a pickup may be and still count as on time

    Returns:
        {driver_id: DriverPerformance}
    """
    today = today or utcnow().date()
    performance: Dict[int, DriverPerformance] = {}

    for trip in history:
        if trip.driver_id is None:
            continue

        perf = performance.get(trip.driver_id)
        if perf is None:
            perf = DriverPerformance(driver_id=trip.driver_id)
            performance[trip.driver_id] = perf

        perf.total_trips += 1
        n = perf.total_trips

        # Trips without both pickup times leave the on-time rate untouched,
        # but still count towards n
        if trip.actual_pickup_time is not None and trip.scheduled_pickup_time is not None:
            on_time = trip.actual_pickup_time - trip.scheduled_pickup_time <= on_time_grace
            perf.on_time_rate = cumulative_mean(perf.on_time_rate, on_time, n)

        cancelled = TripStatus(trip.status) == TripStatus.CANCELLED
        perf.cancellation_rate = cumulative_mean(perf.cancellation_rate, cancelled, n)

        start = getattr(trip, "first_start_date", None)
        if start is not None:
            perf.experience_months = max(1, months_employed(start, today))

    return performance
