"""
Notification events and the persistence phase of fan-out.
"""

import pytest
from datetime import datetime, timezone
from pydantic import TypeAdapter
from sqlalchemy import select

from schoolbus.app.db.document_store import DocumentStore
from schoolbus.app.domain.notifications.events import (
    ChildCheckedIn,
    ChildMissed,
    EmergencyAlert,
    LocationUpdated,
    NotificationEvent,
    TripStarted,
    data_map,
    render_emergency,
    render_title_body,
)
from schoolbus.app.domain.notifications.fanout import NotificationFanout
from schoolbus.app.models.notification import Notification, NotificationType, PushStatus
from schoolbus.app.models.trip_enums import TripType


def trip_started(child_id: str, trip_id: str = "trip-1") -> TripStarted:
    return TripStarted(
        trip_id=trip_id,
        bus_id="bus-1",
        route_id="route-1",
        bus_number="42",
        trip_type=TripType.PICKUP,
        child_id=child_id,
    )


def test_event_union_parses_by_kind():
    adapter = TypeAdapter(NotificationEvent)

    event = adapter.validate_python({
        "kind": "child_missed",
        "trip_id": "trip-1",
        "bus_id": "bus-1",
        "bus_number": "42",
        "trip_type": "dropoff",
        "child_id": "child-1",
    })
    assert isinstance(event, ChildMissed)

    event = adapter.validate_python({
        "kind": "location_updated", "trip_id": "trip-1", "bus_id": "bus-1", "latitude": 1.0, "longitude": 2.0,
    })
    assert isinstance(event, LocationUpdated)


def test_dedup_keys_are_scoped_by_event_trip_and_child():
    checked_in = ChildCheckedIn(
        trip_id="trip-1",
        bus_id="bus-1",
        bus_number="42",
        trip_type=TripType.DROPOFF,
        child_id="child-1",
        check_in_id="ci-1",
        timestamp=datetime(2026, 10, 17, 7, 30, tzinfo=timezone.utc),
    )
    assert trip_started("child-1").dedup_key == "trip_started:trip-1:child-1"
    assert checked_in.dedup_key == "child_dropped_off:trip-1:child-1"
    assert checked_in.notification_type == NotificationType.CHILD_DROPPED_OFF

    title, body = render_title_body(checked_in, "Alice")
    assert title == "Alice Dropped Off"
    assert body == "Alice has been dropped off by bus 42."

    data = data_map(checked_in, "Alice")
    assert data["timestamp"] == "2026-10-17T07:30:00+00:00"
    assert all(isinstance(value, str) for value in data.values())


def test_emergency_rendering():
    alert = EmergencyAlert(
        school_id="school-1", message="Road closed", severity="critical", additional_data={"zone": "north"}
    )
    title, body, data = render_emergency(alert)

    assert alert.topic == "school_school-1_emergencies"
    assert title == "Emergency Alert - CRITICAL"
    assert body == "Road closed"
    assert data == {"school_id": "school-1", "severity": "critical", "zone": "north"}


@pytest.mark.asyncio
async def test_fanout_persists_one_record_per_parent(db_session, seed):
    fanout = NotificationFanout(DocumentStore(db_session))

    report = await fanout.notify([trip_started("child-1"), trip_started("child-2")])
    await db_session.commit()

    assert report.persisted == 2
    assert report.recipients == ["parent-1", "parent-2"]
    assert report.event_types == ["trip_started"]
    assert len(report.notification_ids) == 2

    rows = (await db_session.execute(select(Notification).order_by(Notification.user_id))).scalars().all()
    assert [row.user_id for row in rows] == ["parent-1", "parent-2"]
    assert all(row.push_status == PushStatus.PENDING for row in rows)
    assert rows[0].data["child_name"] == "Alice"


@pytest.mark.asyncio
async def test_fanout_skips_unresolved_children(db_session, seed):
    fanout = NotificationFanout(DocumentStore(db_session))

    report = await fanout.notify([trip_started("child-1"), trip_started("child-404")])

    assert report.persisted == 1
    assert report.unresolved_children == ["child-404"]


@pytest.mark.asyncio
async def test_fanout_is_idempotent(db_session, seed):
    fanout = NotificationFanout(DocumentStore(db_session))

    await fanout.notify([trip_started("child-1")])
    await db_session.commit()

    report = await fanout.notify([trip_started("child-1"), trip_started("child-1")])
    await db_session.commit()

    assert report.persisted == 0
    assert report.duplicates_skipped == 2
    rows = (await db_session.execute(select(Notification))).scalars().all()
    assert len(rows) == 1


@pytest.mark.asyncio
async def test_fanout_ignores_location_pings(db_session, seed):
    fanout = NotificationFanout(DocumentStore(db_session))

    report = await fanout.notify([
        LocationUpdated(trip_id="trip-1", bus_id="bus-1", latitude=1.0, longitude=2.0)
    ])

    assert report.persisted == 0
    assert report.event_types == ["location_updated"]
    assert report.notification_ids == []
