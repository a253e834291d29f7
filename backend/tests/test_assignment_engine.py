"""
Assignment engine tests: batch runs, single assignment, undo and restart.
"""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select

from backend.app.core.clock import utcnow
from backend.app.core.exceptions import (
    NoBatchToUndoError,
    PersistenceError,
    TripNotEligibleError,
    UndoPersistenceError,
)
from backend.app.models.audit_log import AuditLog
from backend.app.models.trip_enums import TripStatus
from backend.app.services.assignment_engine import ASSIGN_FAILED_MESSAGE, NO_DRIVERS_MESSAGE
from backend.app.services.audit import AuditAction
from backend.app.services.driver_scoring import ScoringWeights


@pytest.fixture
def engine(scheduling_loop):
    return scheduling_loop.engine


@pytest.mark.asyncio
async def test_empty_batch_is_a_no_op(engine, mocker):
    update = mocker.spy(engine.trip_repository, "update_assignment")

    results = await engine.auto_schedule_all([], ScoringWeights())

    assert update.call_count == 0

    assert results == []
    assert engine.last_batch_at is None
    assert engine.can_undo is False


@pytest.mark.asyncio
async def test_batch_without_drivers_reports_every_trip(engine, make_trip, notifier, load_trips, mocker):
    trips = [await make_trip(), await make_trip()]
    update = mocker.spy(engine.trip_repository, "update_assignment")

    results = await engine.auto_schedule_all(trips, ScoringWeights())

    assert [r.success for r in results] == [False, False]
    assert all(r.message == NO_DRIVERS_MESSAGE for r in results)
    assert engine.can_undo is False
    assert notifier.notified == []
    assert update.call_count == 0

    stored = await load_trips([t.id for t in trips])
    assert all(t.driver_id is None and t.status == TripStatus.PENDING for t in stored)


@pytest.mark.asyncio
async def test_batch_assigns_and_marks_trips(engine, make_driver, make_trip, notifier, load_trips):
    driver = await make_driver("Dana", latitude=40.7128, longitude=-74.0060)
    trips = [await make_trip(), await make_trip(status=TripStatus.SCHEDULED)]

    results = await engine.auto_schedule_all(trips, ScoringWeights(), actor_id=7)

    assert all(r.success for r in results)
    assert results[0].message == "Assigned to Dana"
    assert engine.can_undo is True
    assert notifier.notified == [t.id for t in trips]

    stored = await load_trips([t.id for t in trips])
    for trip in stored:
        assert trip.driver_id == driver.id
        assert trip.status == TripStatus.ASSIGNED
        assert trip.auto_scheduled is True
        assert trip.auto_scheduled_at == engine.last_batch_at
        assert trip.auto_scheduled_by == 7


@pytest.mark.asyncio
async def test_batch_spreads_trips_across_idle_drivers(engine, make_driver, make_trip):
    # Same position for both drivers: only workload separates them
    first = await make_driver("Alex", latitude=40.7128, longitude=-74.0060)
    second = await make_driver("Blair", latitude=40.7128, longitude=-74.0060)
    trips = [await make_trip() for _ in range(4)]

    results = await engine.auto_schedule_all(trips, ScoringWeights())

    assigned = [r.driver_id for r in results]
    assert assigned.count(first.id) == 2
    assert assigned.count(second.id) == 2


@pytest.mark.asyncio
async def test_undo_reverts_exactly_the_batch(engine, make_driver, make_trip, load_trips):
    driver = await make_driver("Dana", latitude=40.7128, longitude=-74.0060)
    batch_trips = [await make_trip() for _ in range(3)]
    manual = await make_trip(status=TripStatus.ASSIGNED, driver_id=driver.id)

    await engine.auto_schedule_all(batch_trips, ScoringWeights())
    batch_at = engine.last_batch_at

    result = await engine.undo_last_batch()

    assert result.batch_timestamp == batch_at
    assert result.reverted_count == 3
    assert result.message == "Successfully unassigned 3 trips"
    assert engine.can_undo is False
    assert engine.last_batch_at is None

    for trip in await load_trips([t.id for t in batch_trips]):
        assert trip.driver_id is None
        assert trip.status == TripStatus.PENDING
        assert trip.auto_scheduled_at is None

    (untouched,) = await load_trips([manual.id])
    assert untouched.driver_id == driver.id
    assert untouched.status == TripStatus.ASSIGNED


@pytest.mark.asyncio
async def test_undo_only_reverts_the_latest_batch(engine, make_driver, make_trip, load_trips):
    await make_driver("Dana", latitude=40.7128, longitude=-74.0060)
    first_batch = [await make_trip()]
    await engine.auto_schedule_all(first_batch, ScoringWeights())
    first_at = engine.last_batch_at

    second_batch = [await make_trip()]
    await engine.auto_schedule_all(second_batch, ScoringWeights())
    assert engine.last_batch_at > first_at

    result = await engine.undo_last_batch()

    assert result.reverted_count == 1
    (first,) = await load_trips([first_batch[0].id])
    (second,) = await load_trips([second_batch[0].id])
    assert first.driver_id is not None
    assert second.driver_id is None


@pytest.mark.asyncio
async def test_undo_without_batch_raises(engine):
    with pytest.raises(NoBatchToUndoError):
        await engine.undo_last_batch()


@pytest.mark.asyncio
async def test_undo_failure_keeps_batch_undoable(engine, make_driver, make_trip, mocker):
    await make_driver("Dana", latitude=40.7128, longitude=-74.0060)
    await engine.auto_schedule_all([await make_trip()], ScoringWeights())
    batch_at = engine.last_batch_at

    mocker.patch.object(
        engine.trip_repository, "bulk_revert_by_batch",
        side_effect=PersistenceError("database is locked"),
    )

    with pytest.raises(UndoPersistenceError) as exc_info:
        await engine.undo_last_batch()

    assert exc_info.value.status_code == 500
    assert "database is locked" in exc_info.value.message
    assert engine.can_undo is True
    assert engine.last_batch_at == batch_at


@pytest.mark.asyncio
async def test_write_failure_is_reported_and_batch_continues(engine, make_driver, make_trip, mocker):
    await make_driver("Dana", latitude=40.7128, longitude=-74.0060)
    trips = [await make_trip(), await make_trip()]

    original = engine.trip_repository.update_assignment

    async def flaky_update(trip_id, *args, **kwargs):
        if trip_id == trips[0].id:
            raise PersistenceError("connection reset")
        return await original(trip_id, *args, **kwargs)

    mocker.patch.object(engine.trip_repository, "update_assignment", side_effect=flaky_update)

    results = await engine.auto_schedule_all(trips, ScoringWeights())

    assert results[0].success is False
    assert results[0].message == ASSIGN_FAILED_MESSAGE
    assert results[1].success is True
    assert engine.can_undo is True


@pytest.mark.asyncio
async def test_trip_taken_meanwhile_is_not_reassigned(engine, make_driver, make_trip, db_session, load_trips):
    await make_driver("Dana", latitude=40.7128, longitude=-74.0060)
    other = await make_driver("Other")
    trip = await make_trip()

    # Someone assigns it by hand after the trip list was read
    trip.driver_id = other.id
    trip.status = TripStatus.ASSIGNED
    await db_session.commit()

    results = await engine.auto_schedule_all([trip], ScoringWeights())

    assert results[0].success is False
    (stored,) = await load_trips([trip.id])
    assert stored.driver_id == other.id


@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_assignment(engine, make_driver, make_trip, notifier, load_trips):
    notifier.fail = True
    await make_driver("Dana", latitude=40.7128, longitude=-74.0060)
    trip = await make_trip()

    results = await engine.auto_schedule_all([trip], ScoringWeights())

    assert results[0].success is True
    (stored,) = await load_trips([trip.id])
    assert stored.status == TripStatus.ASSIGNED


@pytest.mark.asyncio
async def test_batch_timestamps_never_repeat(engine, mocker):
    frozen = utcnow()
    mocker.patch("backend.app.services.assignment_engine.utcnow", return_value=frozen)

    first = engine._next_batch_timestamp()
    second = engine._next_batch_timestamp()

    assert first == frozen
    assert second == frozen + timedelta(microseconds=1)


@pytest.mark.asyncio
async def test_concurrent_batches_do_not_double_assign(engine, make_driver, make_trip, load_trips):
    await make_driver("Dana", latitude=40.7128, longitude=-74.0060)
    await make_driver("Eli", latitude=40.7128, longitude=-74.0060)
    trips = [await make_trip() for _ in range(3)]

    first, second = await asyncio.gather(
        engine.auto_schedule_all(trips, ScoringWeights()),
        engine.auto_schedule_all(trips, ScoringWeights()),
    )

    assert sum(r.success for r in first) + sum(r.success for r in second) == 3
    stored = await load_trips([t.id for t in trips])
    assert all(t.driver_id is not None for t in stored)


@pytest.mark.asyncio
async def test_single_assignment(engine, make_driver, make_trip, notifier, load_trips):
    driver = await make_driver("Dana", latitude=40.7128, longitude=-74.0060)
    trip = await make_trip()

    result = await engine.assign_single_trip(trip, ScoringWeights(), actor_id=3)

    assert result.success is True
    assert result.driver_id == driver.id
    assert result.message == "Successfully assigned trip to Dana"
    assert notifier.notified == [trip.id]
    # Not part of a batch
    assert engine.can_undo is False

    (stored,) = await load_trips([trip.id])
    assert stored.auto_scheduled is True
    assert stored.auto_scheduled_at is None


@pytest.mark.asyncio
async def test_single_assignment_rejects_assigned_trip(engine, make_driver, make_trip):
    driver = await make_driver("Dana")
    trip = await make_trip(status=TripStatus.ASSIGNED, driver_id=driver.id)

    with pytest.raises(TripNotEligibleError):
        await engine.assign_single_trip(trip, ScoringWeights())


@pytest.mark.asyncio
async def test_single_assignment_without_drivers(engine, make_trip):
    trip = await make_trip()

    result = await engine.assign_single_trip(trip, ScoringWeights())

    assert result.success is False
    assert result.message == NO_DRIVERS_MESSAGE


@pytest.mark.asyncio
async def test_batch_writes_audit_entries(engine, make_driver, make_trip, session_factory):
    await make_driver("Dana", latitude=40.7128, longitude=-74.0060)
    await engine.auto_schedule_all([await make_trip()], ScoringWeights(), actor_id=9)
    await engine.undo_last_batch()

    async with session_factory() as session:
        result = await session.execute(select(AuditLog).order_by(AuditLog.id))
        actions = [entry.action for entry in result.scalars().all()]

    assert actions == [AuditAction.AUTO_SCHEDULE_RUN, AuditAction.AUTO_SCHEDULE_UNDONE]


@pytest.mark.asyncio
async def test_restore_undo_state_after_restart(engine, make_driver, make_trip, scheduling_loop):
    await make_driver("Dana", latitude=40.7128, longitude=-74.0060)
    await engine.auto_schedule_all([await make_trip()], ScoringWeights())
    batch_at = engine.last_batch_at

    # A fresh engine knows nothing about earlier batches
    engine.last_batch_at = None
    engine.can_undo = False

    restored = await engine.restore_undo_state()

    assert restored == batch_at
    assert engine.can_undo is True

    engine.last_batch_at = None
    engine.can_undo = False
    assert await engine.restore_undo_state(now=batch_at + timedelta(minutes=11)) is None
    assert engine.can_undo is False


@pytest.mark.asyncio
async def test_preview_candidates_is_read_only(engine, make_driver, make_trip, load_trips):
    await make_driver("Near", latitude=40.7128, longitude=-74.0060)
    await make_driver("Far", latitude=41.2, longitude=-74.0060)
    trip = await make_trip()

    scores = await engine.preview_candidates(trip, ScoringWeights())

    assert [s.driver_name for s in scores] == ["Near", "Far"]
    (stored,) = await load_trips([trip.id])
    assert stored.driver_id is None
