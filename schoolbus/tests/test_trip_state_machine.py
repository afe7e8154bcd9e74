"""
Trip State Machine at the service level.

Exercises the conditional writes that keep concurrent callers safe: the
one-active-trip index, the check-in unique constraint and the
compare-and-swap on ``checked_in_children``.
"""

import pytest
from sqlalchemy import select

from schoolbus.app.core.exceptions import ConflictError, InvalidArgumentError
from schoolbus.app.db.document_store import AppendResult, DocumentStore
from schoolbus.app.db.session import utcnow
from schoolbus.app.domain.trips.trip_state_machine import TripStateMachine
from schoolbus.app.models.bus import Bus
from schoolbus.app.models.check_in import CheckIn
from schoolbus.app.models.enums import UserRole
from schoolbus.app.models.notification import Notification
from schoolbus.app.models.trip import Trip
from schoolbus.app.models.trip_enums import BusStatus, CheckInMethod, TripStatus, TripType
from schoolbus.app.schemas.auth import CallerIdentity

DRIVER = CallerIdentity(user_id="driver-1", role=UserRole.DRIVER, school_id="school-1")


@pytest.fixture
def machine(db_session, seed):
    return TripStateMachine(DocumentStore(db_session), DRIVER, check_in_append_retries=3)


async def start(machine) -> str:
    response = await machine.start_trip("bus-1", "route-1", "driver-1", TripType.PICKUP)
    return response.trip_id


@pytest.mark.asyncio
async def test_start_collects_outbox(machine):
    await start(machine)
    # One trip_started record per child with a parent
    assert len(machine.outbox) == 2


@pytest.mark.asyncio
async def test_location_ping_stores_no_notification(machine, mocker):
    trip_id = await start(machine)
    notify = mocker.spy(machine.fanout, "notify")

    await machine.update_trip_location(trip_id, 40.1, -75.2)

    assert [event.kind for event in notify.call_args.args[0]] == ["location_updated"]
    assert len(machine.outbox) == 2
    notifications = await machine.store.query(Notification)
    assert len(notifications) == 2


@pytest.mark.asyncio
async def test_active_trip_index_catches_lost_race(machine, mocker):
    """Two starts that both pass the pre-check: the index rejects the second."""
    await start(machine)
    mocker.patch.object(machine.store, "active_trip_for_bus", return_value=None)

    with pytest.raises(ConflictError):
        await start(machine)

    trips = await machine.store.query(Trip, Trip.bus_id == "bus-1")
    assert len(trips) == 1


@pytest.mark.asyncio
async def test_check_in_unique_constraint_catches_lost_race(machine, session_factory):
    trip_id = await start(machine)

    # Another writer's check-in landed after our trip read
    async with session_factory() as other:
        other.add(CheckIn(
            trip_id=trip_id,
            child_id="child-1",
            stop_id="stop-1",
            driver_id="driver-1",
            bus_id="bus-1",
            route_id="route-1",
            method=CheckInMethod.QR,
            timestamp=utcnow(),
        ))
        await other.commit()

    with pytest.raises(ConflictError):
        await machine.complete_check_in(trip_id, "child-1", "stop-1", CheckInMethod.MANUAL)


@pytest.mark.asyncio
async def test_append_is_idempotent(machine):
    trip_id = await start(machine)
    store = machine.store

    assert await store.append_checked_in_child(trip_id, "child-1", 3) == AppendResult.APPENDED
    assert await store.append_checked_in_child(trip_id, "child-1", 3) == AppendResult.ALREADY_PRESENT

    trip = await store.get(Trip, trip_id)
    assert trip.checked_in_children == ["child-1"]
    assert trip.version == 2


@pytest.mark.asyncio
async def test_append_preserves_concurrent_appends(machine, session_factory):
    trip_id = await start(machine)
    await machine.store.commit()

    async with session_factory() as other:
        assert await DocumentStore(other).append_checked_in_child(trip_id, "child-2", 3) == AppendResult.APPENDED
        await other.commit()

    assert await machine.store.append_checked_in_child(trip_id, "child-1", 3) == AppendResult.APPENDED
    trip = await machine.store.get(Trip, trip_id)
    assert trip.checked_in_children == ["child-2", "child-1"]


@pytest.mark.asyncio
async def test_append_gives_up_under_contention(machine, mocker):
    trip_id = await start(machine)
    update = mocker.patch.object(machine.store, "update", return_value=False)

    result = await machine.store.append_checked_in_child(trip_id, "child-1", 3)

    assert result == AppendResult.CONTENDED
    assert update.call_count == 3


@pytest.mark.asyncio
async def test_contended_check_in_rolls_back(machine, mocker, session_factory):
    trip_id = await start(machine)
    mocker.patch.object(machine.store, "append_checked_in_child", return_value=AppendResult.CONTENDED)

    with pytest.raises(ConflictError):
        await machine.complete_check_in(trip_id, "child-1", "stop-1", CheckInMethod.MANUAL)

    async with session_factory() as db:
        rows = (await db.execute(select(CheckIn))).scalars().all()
    assert rows == []


@pytest.mark.asyncio
async def test_trip_ended_between_read_and_append(machine, mocker):
    trip_id = await start(machine)
    mocker.patch.object(machine.store, "append_checked_in_child", return_value=AppendResult.NOT_ACTIVE)

    with pytest.raises(InvalidArgumentError):
        await machine.complete_check_in(trip_id, "child-1", "stop-1", CheckInMethod.MANUAL)


@pytest.mark.asyncio
async def test_end_leaves_newer_bus_assignment_alone(machine, session_factory):
    """The bus is only released if it still points at the trip being ended."""
    trip_id = await start(machine)
    await machine.store.update(Bus, "bus-1", {"current_trip_id": "other-trip"})
    await machine.store.commit()

    response = await machine.end_trip(trip_id)
    assert response.status == "completed"

    async with session_factory() as db:
        bus = await db.get(Bus, "bus-1")
        trip = await db.get(Trip, trip_id)
    assert bus.current_trip_id == "other-trip"
    assert bus.status == BusStatus.IN_TRANSIT
    assert trip.status == TripStatus.COMPLETED
    assert trip.version == 2


@pytest.mark.asyncio
async def test_end_counts_check_ins_committed_before_completion(machine):
    trip_id = await start(machine)
    await machine.complete_check_in(trip_id, "child-1", "stop-1", CheckInMethod.FACE_ID)
    await machine.complete_check_in(trip_id, "child-2", "stop-2", CheckInMethod.QR)

    response = await machine.end_trip(trip_id)

    assert response.statistics.total_children == 2
    assert response.statistics.checked_in_children == 2
    assert response.statistics.missed_children == []
