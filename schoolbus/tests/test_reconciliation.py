"""
Bus projection reconciliation.
"""

import pytest

from schoolbus.app.db.document_store import DocumentStore
from schoolbus.app.domain.trips.reconciliation import reconcile_bus_projections
from schoolbus.app.models.bus import Bus
from schoolbus.app.models.trip import Trip
from schoolbus.app.models.trip_enums import BusStatus


async def make_stale(db_session):
    """Bus still points at a trip that no longer runs."""
    await DocumentStore(db_session).update(
        Bus, "bus-2", {"status": BusStatus.IN_TRANSIT, "current_trip_id": "ghost-trip"}
    )
    await db_session.commit()


@pytest.mark.asyncio
async def test_repairs_bus_without_active_trip(db_session, seed, session_factory):
    await make_stale(db_session)

    repaired = await reconcile_bus_projections(DocumentStore(db_session))

    assert repaired == ["bus-2"]
    async with session_factory() as db:
        bus = await db.get(Bus, "bus-2")
    assert bus.status == BusStatus.ACTIVE
    assert bus.current_trip_id is None


@pytest.mark.asyncio
async def test_repairs_bus_that_lost_its_active_trip_pointer(client, seed, auth_headers, db_session, session_factory):
    trip_id = (await client.post(
        "/v1/driver/trips",
        headers=auth_headers("driver-1"),
        json={"bus_id": "bus-1", "route_id": "route-1", "driver_id": "driver-1", "type": "pickup"},
    )).json()["trip_id"]
    await DocumentStore(db_session).update(Bus, "bus-1", {"status": BusStatus.ACTIVE, "current_trip_id": None})
    await db_session.commit()

    repaired = await reconcile_bus_projections(DocumentStore(db_session), school_id="school-1")

    assert repaired == ["bus-1"]
    async with session_factory() as db:
        bus = await db.get(Bus, "bus-1")
    assert bus.current_trip_id == trip_id
    assert bus.status == BusStatus.IN_TRANSIT


@pytest.mark.asyncio
async def test_bus_changed_after_read_is_left_alone(db_session, seed, session_factory, mocker):
    await make_stale(db_session)
    store = DocumentStore(db_session)
    real_query = store.query

    async def query_then_start_trip(model, *criteria, **kwargs):
        rows = await real_query(model, *criteria, **kwargs)
        if model is Trip:
            # A driver starts a trip on bus-2 after the trips table was read
            await store.update(Bus, "bus-2", {"status": BusStatus.IN_TRANSIT, "current_trip_id": "fresh-trip"})
        return rows

    mocker.patch.object(store, "query", side_effect=query_then_start_trip)

    assert await reconcile_bus_projections(store) == []
    async with session_factory() as db:
        bus = await db.get(Bus, "bus-2")
    assert bus.current_trip_id == "fresh-trip"
    assert bus.status == BusStatus.IN_TRANSIT


@pytest.mark.asyncio
async def test_consistent_buses_are_left_alone(db_session, seed):
    assert await reconcile_bus_projections(DocumentStore(db_session)) == []


@pytest.mark.asyncio
async def test_reconcile_endpoint(client, db_session, seed, auth_headers):
    await make_stale(db_session)

    denied = await client.post(
        "/v1/admin/ops/reconcile-buses", params={"school_id": "school-1"}, headers=auth_headers("admin-2")
    )
    assert denied.status_code == 403

    driver = await client.post("/v1/admin/ops/reconcile-buses", headers=auth_headers("driver-1"))
    assert driver.status_code == 403

    response = await client.post("/v1/admin/ops/reconcile-buses", headers=auth_headers("admin-1"))
    assert response.status_code == 200
    assert response.json()["repaired_bus_ids"] == ["bus-2"]
