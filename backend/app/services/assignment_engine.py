"""
Assignment engine.

Assigns unscheduled trips to the best scoring active driver, either one trip
at a time ("Schedule Now") or as a batch. Every trip of a batch is stamped
with the same auto_scheduled_at value, which is what undo keys on.
"""

import asyncio
import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from backend.app.core.clock import utcnow
from backend.app.core.exceptions import (
    NoBatchToUndoError,
    PersistenceError,
    TripNotEligibleError,
    UndoPersistenceError,
)
from backend.app.core.observability import correlation_id_var
from backend.app.models.trip_enums import ASSIGNABLE_STATUSES, TripStatus
from backend.app.services.audit import AuditAction
from backend.app.services.driver_performance import (
    DEFAULT_ON_TIME_GRACE,
    DriverPerformance,
    aggregate_driver_performance,
)
from backend.app.services.driver_scoring import (
    DriverScore,
    ScoringWeights,
    find_best_driver,
    rank_drivers,
)
from backend.app.services.workload import WorkloadTracker

logger = logging.getLogger(__name__)

NO_DRIVERS_MESSAGE = "No available drivers"
ASSIGN_FAILED_MESSAGE = "Failed to assign"

DEFAULT_UNDO_WINDOW = timedelta(minutes=10)


@dataclass
class AssignmentResult:
    success: bool
    trip_id: Optional[int]
    message: str
    driver_id: Optional[int] = None
    driver_name: Optional[str] = None

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class UndoResult:
    batch_timestamp: datetime
    reverted_count: int

    @property
    def message(self) -> str:
        plural = "s" if self.reverted_count != 1 else ""
        return f"Successfully unassigned {self.reverted_count} trip{plural}"


@dataclass
class ScoringInputs:
    drivers: list
    workloads: Dict[int, int] = field(default_factory=dict)
    performance: Dict[int, DriverPerformance] = field(default_factory=dict)


class AssignmentEngine:
    """
    Holds the undo state (last batch timestamp) for the process.

    Only the most recent batch can be undone, and only once.
    """

    def __init__(
        self,
        trip_repository,
        driver_repository,
        notifier,
        audit=None,
        on_time_grace: timedelta = DEFAULT_ON_TIME_GRACE,
        undo_window: timedelta = DEFAULT_UNDO_WINDOW,
    ):
        self.trip_repository = trip_repository
        self.driver_repository = driver_repository
        self.workload = WorkloadTracker(trip_repository)
        self.notifier = notifier
        self.audit = audit
        self.on_time_grace = on_time_grace
        self.undo_window = undo_window

        self.last_batch_at: Optional[datetime] = None
        self.can_undo = False
        self._last_issued_batch_at: Optional[datetime] = None
        self._batch_lock = asyncio.Lock()

    @property
    def batch_in_progress(self) -> bool:
        return self._batch_lock.locked()

    async def load_scoring_inputs(self) -> ScoringInputs:
        """Fresh roster, workload snapshot and performance history."""
        drivers = await self.driver_repository.list_active_drivers()
        if not drivers:
            return ScoringInputs(drivers=[])

        workloads = await self.workload.refresh()
        performance = aggregate_driver_performance(
            await self.trip_repository.list_history(),
            on_time_grace=self.on_time_grace,
        )
        return ScoringInputs(drivers=drivers, workloads=workloads, performance=performance)

    def _next_batch_timestamp(self) -> datetime:
        # Batch identity is the timestamp, so two batches must never share one
        batch_at = utcnow()
        if self._last_issued_batch_at is not None and batch_at <= self._last_issued_batch_at:
            batch_at = self._last_issued_batch_at + timedelta(microseconds=1)
        self._last_issued_batch_at = batch_at
        return batch_at

    async def preview_candidates(self, trip, weights: ScoringWeights) -> List[DriverScore]:
        """Score breakdown of every candidate for a trip, best first. Read-only."""
        inputs = await self.load_scoring_inputs()
        return rank_drivers(trip, inputs.drivers, inputs.workloads, inputs.performance, weights)

    async def assign_single_trip(
        self,
        trip,
        weights: ScoringWeights,
        actor_id: Optional[int] = None,
        explain: bool = False,
    ) -> AssignmentResult:
        """
        Assign one trip to its best driver. Not undoable.

        Raises:
            TripNotEligibleError: if the trip already has a driver or is not
                pending/scheduled
        """
        if trip.driver_id is not None or TripStatus(trip.status) not in ASSIGNABLE_STATUSES:
            raise TripNotEligibleError(trip.id, TripStatus(trip.status).value)

        inputs = await self.load_scoring_inputs()
        driver, _ = find_best_driver(
            trip, inputs.drivers, inputs.workloads, inputs.performance, weights, explain=explain
        )
        if driver is None:
            logger.info("No driver found for trip", extra={"trip_id": trip.id})
            return AssignmentResult(success=False, trip_id=trip.id, message=NO_DRIVERS_MESSAGE)

        try:
            await self.trip_repository.update_assignment(
                trip.id,
                driver.id,
                status=TripStatus.ASSIGNED,
                auto_scheduled=True,
                assigned_at=utcnow(),
            )
        except PersistenceError as exc:
            logger.warning("Single assignment failed", extra={"trip_id": trip.id, "error": exc.message})
            return AssignmentResult(success=False, trip_id=trip.id, message=ASSIGN_FAILED_MESSAGE)

        await self._notify(trip.id)
        await self._record(
            AuditAction.TRIP_AUTO_ASSIGNED,
            actor_id=actor_id,
            trip_id=trip.id,
            metadata={"driver_id": driver.id, "driver_name": driver.full_name},
        )

        return AssignmentResult(
            success=True,
            trip_id=trip.id,
            driver_id=driver.id,
            driver_name=driver.full_name,
            message=f"Successfully assigned trip to {driver.full_name}",
        )

    async def auto_schedule_all(
        self,
        trips: list,
        weights: ScoringWeights,
        actor_id: Optional[int] = None,
        explain: bool = False,
    ) -> List[AssignmentResult]:
        """
        Assign every trip, in the given order, under one batch timestamp.

        A failure on one trip (no driver, write error) is recorded in its
        result and the batch moves on. Runs are serialized; callers arriving
        while a batch is in flight wait for it.
        """
        if not trips:
            return []

        async with self._batch_lock:
            batch_at = self._next_batch_timestamp()
            inputs = await self.load_scoring_inputs()

            # Counted locally so a driver picked for one trip carries that
            # load into the scoring of the next
            workloads = dict(inputs.workloads)
            results: List[AssignmentResult] = []

            for trip in trips:
                driver, _ = find_best_driver(
                    trip, inputs.drivers, workloads, inputs.performance, weights, explain=explain
                )
                if driver is None:
                    results.append(AssignmentResult(success=False, trip_id=trip.id, message=NO_DRIVERS_MESSAGE))
                    continue

                try:
                    await self.trip_repository.update_assignment(
                        trip.id,
                        driver.id,
                        status=TripStatus.ASSIGNED,
                        auto_scheduled=True,
                        auto_scheduled_at=batch_at,
                        auto_scheduled_by=actor_id,
                        assigned_at=batch_at,
                        announce=False,
                    )
                except PersistenceError as exc:
                    logger.warning(
                        "Batch assignment failed for trip",
                        extra={"trip_id": trip.id, "error": exc.message}
                    )
                    results.append(AssignmentResult(success=False, trip_id=trip.id, message=ASSIGN_FAILED_MESSAGE))
                    continue

                workloads[driver.id] = workloads.get(driver.id, 0) + 1
                results.append(AssignmentResult(
                    success=True,
                    trip_id=trip.id,
                    driver_id=driver.id,
                    driver_name=driver.full_name,
                    message=f"Assigned to {driver.full_name}",
                ))
                await self._notify(trip.id)

            assigned = sum(1 for r in results if r.success)
            if assigned:
                self.last_batch_at = batch_at
                self.can_undo = True
                await self.trip_repository.announce_change()

            logger.info(
                "Auto-schedule batch finished",
                extra={
                    "correlation_id": correlation_id_var.get(),
                    "batch_timestamp": batch_at.isoformat(),
                    "trips": len(trips),
                    "assigned": assigned,
                    "failed": len(trips) - assigned,
                }
            )
            await self._record(
                AuditAction.AUTO_SCHEDULE_RUN,
                actor_id=actor_id,
                metadata={
                    "batch_timestamp": batch_at.isoformat(),
                    "trips": len(trips),
                    "assigned": assigned,
                    "weights": weights.model_dump(),
                },
            )
            return results

    async def undo_last_batch(self, batch_timestamp: Optional[datetime] = None) -> UndoResult:
        """
        Unassign every trip of a batch (the last one by default).

        Raises:
            NoBatchToUndoError: if no batch timestamp is given or tracked
            UndoPersistenceError: if the revert fails; the batch stays undoable
        """
        batch_at = batch_timestamp or self.last_batch_at
        if batch_at is None:
            raise NoBatchToUndoError()

        try:
            reverted = await self.trip_repository.bulk_revert_by_batch(batch_at)
        except PersistenceError as exc:
            logger.error("Undo failed", extra={"batch_timestamp": batch_at.isoformat(), "error": exc.message})
            raise UndoPersistenceError(exc.message, details={"batch_timestamp": batch_at.isoformat()}) from exc

        if batch_at == self.last_batch_at:
            self.last_batch_at = None
            self.can_undo = False

        logger.info("Auto-schedule batch undone", extra={"batch_timestamp": batch_at.isoformat(), "reverted": reverted})
        await self._record(
            AuditAction.AUTO_SCHEDULE_UNDONE,
            metadata={"batch_timestamp": batch_at.isoformat(), "reverted": reverted},
        )
        return UndoResult(batch_timestamp=batch_at, reverted_count=reverted)

    async def restore_undo_state(self, now: Optional[datetime] = None) -> Optional[datetime]:
        """
        Offer undo again after a restart if a batch ran within the undo window.
        """
        since = (now or utcnow()) - self.undo_window
        recent = await self.trip_repository.find_recent_batch_timestamp(since)
        if recent is not None:
            self.last_batch_at = recent
            self.can_undo = True
            self._last_issued_batch_at = max(recent, self._last_issued_batch_at or recent)
        return recent

    async def _notify(self, trip_id: int) -> None:
        try:
            await self.notifier.notify_trip_assigned(trip_id)
        except Exception as exc:
            logger.warning("Trip notification not sent", extra={"trip_id": trip_id, "error": str(exc)})

    async def _record(self, action: str, **kwargs) -> None:
        if self.audit is None:
            return
        try:
            await self.audit.record(action, **kwargs)
        except Exception:
            logger.error("Audit entry not written", extra={"action": action}, exc_info=True)
