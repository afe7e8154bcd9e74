"""
Bus projection reconciliation.

Trip records are the source of truth. A crash between the trip write and the
bus write leaves a bus whose ``current_trip_id``/``status`` disagree with the
trips table; this pass rewrites such buses from their active trip.
"""

import logging
from typing import List, Optional

from schoolbus.app.db.document_store import DocumentStore
from schoolbus.app.db.session import utcnow
from schoolbus.app.models.bus import Bus
from schoolbus.app.models.trip import Trip
from schoolbus.app.models.trip_enums import BusStatus, TripStatus

logger = logging.getLogger("schoolbus.trips")


async def reconcile_bus_projections(store: DocumentStore, school_id: Optional[str] = None) -> List[str]:
    """
    Repair bus projections that disagree with the active trips.

    Returns:
        Ids of the buses that were rewritten
    """
    bus_criteria = [Bus.school_id == school_id] if school_id else []
    buses = await store.query(Bus, *bus_criteria, order_by=(Bus.id,))
    if not buses:
        return []

    active_trips = await store.query(
        Trip,
        Trip.status == TripStatus.ACTIVE,
        Trip.bus_id.in_([bus.id for bus in buses]),
    )
    active_by_bus = {trip.bus_id: trip for trip in active_trips}

    now = utcnow()
    repaired = []
    for bus in buses:
        trip = active_by_bus.get(bus.id)
        expected_trip_id = trip.id if trip else None
        expected_status = BusStatus.IN_TRANSIT if trip else BusStatus.ACTIVE

        if bus.current_trip_id == expected_trip_id and bus.status == expected_status:
            continue

        values = {
            "current_trip_id": expected_trip_id,
            "status": expected_status,
            "updated_at": now,
        }
        if trip is not None:
            values.update(
                current_latitude=trip.current_latitude,
                current_longitude=trip.current_longitude,
            )
        # Compare-and-swap against the snapshot read above
        observed_trip = (
            Bus.current_trip_id.is_(None)
            if bus.current_trip_id is None
            else Bus.current_trip_id == bus.current_trip_id
        )
        updated = await store.update(Bus, bus.id, values, observed_trip, Bus.status == bus.status)
        if not updated:
            logger.info("Bus changed during reconciliation, skipped", extra={"bus_id": bus.id})
            continue
        repaired.append(bus.id)

        logger.warning(
            "Bus projection repaired",
            extra={
                "bus_id": bus.id,
                "stale_trip_id": bus.current_trip_id,
                "active_trip_id": expected_trip_id,
            },
        )

    await store.commit()
    return repaired
