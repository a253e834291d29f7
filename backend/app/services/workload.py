"""
Workload tracking.

A driver's workload is the number of trips currently in flight for them
(assigned, active or picked up).
"""

import logging
from typing import Dict, Iterable

from backend.app.models.trip_enums import IN_FLIGHT_STATUSES, TripStatus

logger = logging.getLogger(__name__)


def count_workloads(assignments: Iterable) -> Dict[int, int]:
    """
    Count in-flight trips per driver.

    Args:
        assignments: Rows exposing driver_id and status. Rows without a
            driver or outside the in-flight statuses are ignored.

    Returns:
        {driver_id: trip_count}; drivers with no trips are absent
    """
    workloads: Dict[int, int] = {}
    for row in assignments:
        if row.driver_id is None or TripStatus(row.status) not in IN_FLIGHT_STATUSES:
            continue
        workloads[row.driver_id] = workloads.get(row.driver_id, 0) + 1
    return workloads


class WorkloadTracker:
    """Caches the last workload snapshot read from the trip repository."""

    def __init__(self, trip_repository):
        self.trip_repository = trip_repository
        self.snapshot: Dict[int, int] = {}

    async def refresh(self) -> Dict[int, int]:
        rows = await self.trip_repository.list_active_assignments()
        self.snapshot = count_workloads(rows)
        logger.debug("Workload refreshed", extra={"drivers_busy": len(self.snapshot)})
        return self.snapshot

    def get(self, driver_id: int) -> int:
        return self.snapshot.get(driver_id, 0)
