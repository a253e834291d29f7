"""
Auto Scheduler API Endpoints.

Dispatchers inspect scheduler state, tune scoring weights, run batch
assignment, assign single trips and undo the last batch.
"""

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from backend.app.db.session import get_db
from backend.app.core.clock import to_naive_utc, utcnow
from backend.app.core.dependencies import get_current_actor, get_scheduling_loop
from backend.app.core.exceptions import ResourceNotFoundError
from backend.app.models.trip_enums import TripStatus
from backend.app.schemas.auto_scheduler import (
    AssignmentResultResponse,
    AuditEntryResponse,
    BatchRunResponse,
    DriverOverviewResponse,
    DriverScoreResponse,
    SchedulerSettingsUpdate,
    SchedulerStateResponse,
    UndoRequest,
    UndoResponse,
    UnscheduledTripResponse,
)
from backend.app.services.audit import get_audit_trail
from backend.app.services.driver_performance import DriverPerformance, months_employed
from backend.app.services.driver_scoring import ScoringWeights
from backend.app.services.scheduling_loop import SchedulingLoop

router = APIRouter(prefix="/auto-scheduler", tags=["Auto Scheduler"])


def _build_state(loop: SchedulingLoop) -> SchedulerStateResponse:
    snapshot = loop.snapshot

    drivers = []
    for driver in snapshot.drivers:
        perf = snapshot.performance.get(driver.id)
        drivers.append(DriverOverviewResponse(
            id=driver.id,
            full_name=driver.full_name,
            phone=driver.phone,
            has_location=driver.has_location,
            workload=snapshot.workloads.get(driver.id, 0),
            total_trips=perf.total_trips if perf else 0,
            on_time_rate=perf.on_time_rate if perf else 0.0,
            cancellation_rate=perf.cancellation_rate if perf else 0.0,
            experience_months=perf.experience_months if perf else _months_on_roster(driver),
            is_top_performer=(perf or DriverPerformance(driver_id=driver.id)).is_top_performer,
        ))

    trips = []
    for trip in snapshot.unscheduled_trips:
        patient = trip.patient
        trips.append(UnscheduledTripResponse(
            id=trip.id,
            patient_id=trip.patient_id,
            patient_name=patient.full_name if patient else None,
            mobility_needs=patient.mobility_needs if patient else None,
            pickup_address=trip.pickup_address,
            dropoff_address=trip.dropoff_address,
            scheduled_pickup_time=trip.scheduled_pickup_time,
            status=TripStatus(trip.status).value,
        ))

    return SchedulerStateResponse(
        ai_enhanced=loop.ai_enhanced,
        auto_schedule_enabled=loop.auto_schedule_enabled,
        batch_in_progress=loop.batch_in_progress,
        weights=loop.weights,
        last_batch_timestamp=loop.engine.last_batch_at,
        can_undo=loop.engine.can_undo,
        refreshed_at=snapshot.refreshed_at,
        drivers=drivers,
        unscheduled_trips=trips,
        last_results=[AssignmentResultResponse.model_validate(r) for r in loop.last_results],
    )


def _months_on_roster(driver) -> Optional[int]:
    if driver.first_start_date is None:
        return None
    return max(1, months_employed(driver.first_start_date, utcnow().date()))


async def _load_trip(loop: SchedulingLoop, trip_id: int):
    trip = await loop.trip_repository.get(trip_id)
    if trip is None:
        raise ResourceNotFoundError("Trip", trip_id)
    return trip


@router.get("/state", response_model=SchedulerStateResponse)
async def get_scheduler_state(
    refresh: bool = Query(False, description="Reload from the database first"),
    loop: SchedulingLoop = Depends(get_scheduling_loop),
):
    """
    Current scheduler state: toggles, weights, undo availability, the driver
    roster with workload and performance, and trips awaiting a driver.
    """
    if refresh or loop.snapshot.refreshed_at is None:
        await loop.refresh()
    return _build_state(loop)


@router.put("/weights", response_model=ScoringWeights)
async def update_weights(
    weights: ScoringWeights,
    loop: SchedulingLoop = Depends(get_scheduling_loop),
):
    """Replace the scoring weights. Each is a percentage in [0, 100]."""
    loop.set_weights(weights)
    return loop.weights


@router.post("/weights/reset", response_model=ScoringWeights)
async def reset_weights(loop: SchedulingLoop = Depends(get_scheduling_loop)):
    """Restore the default weights (30/25/20/15/10)."""
    loop.reset_weights()
    return loop.weights


@router.put("/settings", response_model=SchedulerStateResponse)
async def update_settings(
    update: SchedulerSettingsUpdate,
    loop: SchedulingLoop = Depends(get_scheduling_loop),
):
    if update.ai_enhanced is not None:
        loop.set_ai_enhanced(update.ai_enhanced)
    if update.auto_schedule_enabled is not None:
        loop.set_auto_schedule(update.auto_schedule_enabled)
    return _build_state(loop)


@router.post("/run", response_model=BatchRunResponse)
async def run_auto_schedule(
    actor_id: Optional[int] = Depends(get_current_actor),
    loop: SchedulingLoop = Depends(get_scheduling_loop),
):
    """
    Assign every unscheduled trip to its best driver as one undoable batch.

    Trips that cannot be assigned are reported in the results; the call
    itself still succeeds.
    """
    results = await loop.run_auto_schedule(actor_id=actor_id)
    assigned = sum(1 for r in results if r.success)
    return BatchRunResponse(
        batch_timestamp=loop.engine.last_batch_at if assigned else None,
        assigned=assigned,
        failed=len(results) - assigned,
        results=[AssignmentResultResponse.model_validate(r) for r in results],
    )


@router.post("/trips/{trip_id}/assign", response_model=AssignmentResultResponse)
async def assign_trip(
    trip_id: int = Path(..., description="Trip ID"),
    actor_id: Optional[int] = Depends(get_current_actor),
    loop: SchedulingLoop = Depends(get_scheduling_loop),
):
    """
    Assign one trip to its best driver ("Schedule Now").

    Not part of any batch, so it cannot be undone.
    """
    trip = await _load_trip(loop, trip_id)
    result = await loop.assign_trip(trip, actor_id=actor_id)
    return AssignmentResultResponse.model_validate(result)


@router.get("/trips/{trip_id}/candidates", response_model=List[DriverScoreResponse])
async def list_trip_candidates(
    trip_id: int = Path(..., description="Trip ID"),
    loop: SchedulingLoop = Depends(get_scheduling_loop),
):
    """Score breakdown of every active driver for a trip, best first."""
    trip = await _load_trip(loop, trip_id)
    scores = await loop.engine.preview_candidates(trip, loop.weights)
    return [DriverScoreResponse.model_validate(s) for s in scores]


@router.post("/undo", response_model=UndoResponse)
async def undo_last_batch(
    request: Optional[UndoRequest] = None,
    loop: SchedulingLoop = Depends(get_scheduling_loop),
):
    """
    Unassign every trip of the last auto-schedule batch.

    Returns 404 when there is nothing to undo.
    """
    batch_timestamp = None
    if request is not None and request.batch_timestamp is not None:
        batch_timestamp = to_naive_utc(request.batch_timestamp)
    result = await loop.undo_last_batch(batch_timestamp)
    return UndoResponse(
        batch_timestamp=result.batch_timestamp,
        reverted_count=result.reverted_count,
        message=result.message,
    )


@router.get("/audit", response_model=List[AuditEntryResponse])
async def list_audit_entries(
    action: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """Recent scheduler runs, assignments and undos, most recent first."""
    return await get_audit_trail(db, action=action, limit=limit)
