"""
Trip State Machine (Domain Logic).

Owns trip creation, location updates, check-ins and completion.

States: ``active`` -> ``completed`` (terminal). Every operation receives
its store handle and the resolved caller explicitly. All precondition checks
run before the first write; writes go trip record first, bus projection
second, notification records last, and the unit of work commits once.
"""

import logging
from typing import List, Optional

from sqlalchemy import and_, or_

from schoolbus.app.core.config import settings
from schoolbus.app.core.exceptions import (
    ConflictError,
    InsufficientPermissionsError,
    InvalidArgumentError,
)
from schoolbus.app.core.guards import can_view_driver_records, enforce_identity_match
from schoolbus.app.db.document_store import AppendResult, DocumentStore
from schoolbus.app.db.session import new_document_id, utcnow
from schoolbus.app.domain.notifications.events import ChildCheckedIn, ChildMissed, LocationUpdated, TripStarted
from schoolbus.app.domain.notifications.fanout import DeliveryReport, NotificationFanout
from schoolbus.app.domain.trips.statistics import calculate_trip_statistics
from schoolbus.app.models.bus import Bus
from schoolbus.app.models.check_in import CheckIn
from schoolbus.app.models.child import Child
from schoolbus.app.models.route import Route
from schoolbus.app.models.trip import Trip
from schoolbus.app.models.trip_enums import BusStatus, CheckInMethod, TripStatus, TripType
from schoolbus.app.models.user import User
from schoolbus.app.schemas.auth import CallerIdentity
from schoolbus.app.schemas.trip import TripListResponse, TripResponse
from schoolbus.app.schemas.trip_execution import (
    CheckInResponse,
    LocationUpdateResponse,
    TripEndResponse,
    TripStartResponse,
)

logger = logging.getLogger("schoolbus.trips")

ACTIVE_TRIP_EXISTS = "There is already an active trip for this bus"
ALREADY_CHECKED_IN = "Child is already checked in on this trip"


class TripStateMachine:
    """
    One instance per request.

    ``outbox`` collects the ids of notification records committed by this
    instance so the caller can hand them to push delivery.
    """

    def __init__(
        self,
        store: DocumentStore,
        caller: CallerIdentity,
        check_in_append_retries: int = settings.check_in_append_retries,
    ):
        self.store = store
        self.caller = caller
        self.fanout = NotificationFanout(store)
        self.check_in_append_retries = check_in_append_retries
        self.outbox: List[str] = []

    async def _commit(self, report: Optional[DeliveryReport] = None) -> None:
        await self.store.commit()
        if report is not None:
            self.outbox.extend(report.notification_ids)

    async def _require_trip(self, trip_id: str) -> Trip:
        return await self.store.require(Trip, trip_id, "Trip")

    @staticmethod
    def _require_active(trip: Trip) -> None:
        if trip.status != TripStatus.ACTIVE:
            raise InvalidArgumentError(
                "Trip is not active",
                details={"trip_id": trip.id, "status": trip.status.value},
            )

    # Transitions

    async def start_trip(
        self,
        bus_id: str,
        route_id: str,
        driver_id: str,
        trip_type: TripType,
    ) -> TripStartResponse:
        """
        Start a trip for a bus on a route.

        Validates, in order:
        - Caller is the driver named in the request
        - Bus and route exist
        - Driver is assigned to the bus
        - No active trip exists for the bus

        The last check is repeated by the partial unique index on
        ``trips(bus_id) WHERE status = 'active'`` when the trip is created,
        so two concurrent starts cannot both succeed.
        """
        enforce_identity_match(self.caller, driver_id, "Driver can only start their own trips")

        bus = await self.store.require(Bus, bus_id, "Bus")
        route = await self.store.require(Route, route_id, "Route")

        if bus.driver_id != driver_id:
            raise InsufficientPermissionsError("Driver not assigned to this bus")

        if await self.store.active_trip_for_bus(bus_id) is not None:
            raise ConflictError(ACTIVE_TRIP_EXISTS, details={"bus_id": bus_id})

        children = await self.store.active_route_children(route_id)
        now = utcnow()

        trip = Trip(
            id=new_document_id(),
            bus_id=bus_id,
            route_id=route_id,
            driver_id=driver_id,
            bus_number=bus.bus_number,
            route_name=route.name,
            type=trip_type,
            status=TripStatus.ACTIVE,
            children_ids=[child.id for child in children],
            checked_in_children=[],
            current_latitude=bus.current_latitude or 0.0,
            current_longitude=bus.current_longitude or 0.0,
            location_timestamp=now,
            version=1,
            start_time=now,
            created_at=now,
            updated_at=now,
        )
        trip_id = await self.store.create_unique(trip, ACTIVE_TRIP_EXISTS)

        await self.store.update(Bus, bus_id, {
            "status": BusStatus.IN_TRANSIT,
            "current_trip_id": trip_id,
            "updated_at": now,
        })

        report = await self.fanout.notify([
            TripStarted(
                trip_id=trip_id,
                bus_id=bus_id,
                route_id=route_id,
                bus_number=bus.bus_number,
                trip_type=trip_type,
                child_id=child.id,
            )
            for child in children
        ])
        await self._commit(report)

        logger.info(
            "Trip started",
            extra={"trip_id": trip_id, "bus_id": bus_id, "children": len(children)},
        )
        return TripStartResponse(trip_id=trip_id, status="started")

    async def update_trip_location(self, trip_id: str, latitude: float, longitude: float) -> LocationUpdateResponse:
        """
        Overwrite the trip's location and mirror it onto the bus.

        Last write wins in receipt order. The ping passes through the fan-out,
        which stores nothing for it.
        """
        trip = await self._require_trip(trip_id)
        enforce_identity_match(
            self.caller, trip.driver_id, "Only the assigned driver can update trip location"
        )
        self._require_active(trip)

        now = utcnow()
        updated = await self.store.update(
            Trip,
            trip_id,
            {
                "current_latitude": latitude,
                "current_longitude": longitude,
                "location_timestamp": now,
                "updated_at": now,
            },
            Trip.status == TripStatus.ACTIVE,
        )
        if not updated:
            raise InvalidArgumentError("Trip is not active", details={"trip_id": trip_id})

        await self.store.update(Bus, trip.bus_id, {
            "current_latitude": latitude,
            "current_longitude": longitude,
            "last_location_update": now,
            "updated_at": now,
        })
        report = await self.fanout.notify([
            LocationUpdated(trip_id=trip_id, bus_id=trip.bus_id, latitude=latitude, longitude=longitude)
        ])
        await self._commit(report)

        return LocationUpdateResponse(success=True)

    async def complete_check_in(
        self,
        trip_id: str,
        child_id: str,
        stop_id: str,
        method: CheckInMethod,
        photo_url: Optional[str] = None,
    ) -> CheckInResponse:
        """
        Record a child boarding or alighting.

        A child is checked in at most once per trip: the check-in row is
        unique on (trip_id, child_id) and the trip's list is extended with
        an append-if-absent compare-and-swap.
        """
        trip = await self._require_trip(trip_id)
        enforce_identity_match(
            self.caller, trip.driver_id, "Only the assigned driver can complete check-ins"
        )
        self._require_active(trip)

        if child_id not in (trip.children_ids or []):
            raise InvalidArgumentError(
                "Child is not on this trip",
                details={"trip_id": trip_id, "child_id": child_id},
            )

        child = await self.store.require(Child, child_id, "Child")

        if child_id in (trip.checked_in_children or []):
            raise ConflictError(ALREADY_CHECKED_IN, details={"trip_id": trip_id, "child_id": child_id})

        now = utcnow()
        check_in = CheckIn(
            id=new_document_id(),
            trip_id=trip_id,
            child_id=child_id,
            child_name=child.name,
            stop_id=stop_id,
            driver_id=trip.driver_id,
            bus_id=trip.bus_id,
            route_id=trip.route_id,
            method=method,
            photo_url=photo_url,
            latitude=trip.current_latitude,
            longitude=trip.current_longitude,
            location_timestamp=trip.location_timestamp,
            timestamp=now,
        )
        check_in_id = await self.store.create_unique(check_in, ALREADY_CHECKED_IN)

        outcome = await self.store.append_checked_in_child(
            trip_id, child_id, self.check_in_append_retries
        )
        if outcome != AppendResult.APPENDED:
            await self.store.rollback()
            if outcome == AppendResult.ALREADY_PRESENT:
                raise ConflictError(ALREADY_CHECKED_IN, details={"trip_id": trip_id, "child_id": child_id})
            if outcome == AppendResult.NOT_ACTIVE:
                raise InvalidArgumentError("Trip is not active", details={"trip_id": trip_id})
            raise ConflictError("Trip is being updated concurrently, retry the check-in")

        report = await self.fanout.notify([
            ChildCheckedIn(
                trip_id=trip_id,
                bus_id=trip.bus_id,
                bus_number=trip.bus_number or "",
                trip_type=trip.type,
                child_id=child_id,
                check_in_id=check_in_id,
                timestamp=now,
            )
        ])
        await self._commit(report)

        logger.info(
            "Child checked in",
            extra={"trip_id": trip_id, "child_id": child_id, "method": method.value},
        )
        return CheckInResponse(check_in_id=check_in_id, status="completed")

    async def end_trip(self, trip_id: str) -> TripEndResponse:
        """
        Complete a trip, release the bus and alert parents of missed children.

        The ``active -> completed`` transition is conditional, so concurrent
        calls complete the trip (and send missed-child alerts) once.
        """
        trip = await self._require_trip(trip_id)
        enforce_identity_match(self.caller, trip.driver_id, "Only the assigned driver can end trips")
        self._require_active(trip)

        now = utcnow()
        ended = await self.store.update(
            Trip,
            trip_id,
            {
                "status": TripStatus.COMPLETED,
                "end_time": now,
                "updated_at": now,
                "version": Trip.version + 1,
            },
            Trip.status == TripStatus.ACTIVE,
        )
        if not ended:
            raise InvalidArgumentError("Trip is not active", details={"trip_id": trip_id})

        # Check-ins that committed before the transition are included
        trip = await self._require_trip(trip_id)

        await self.store.update(
            Bus,
            trip.bus_id,
            {"status": BusStatus.ACTIVE, "current_trip_id": None, "updated_at": now},
            Bus.current_trip_id == trip_id,
        )

        statistics = calculate_trip_statistics(trip.children_ids or [], trip.checked_in_children or [])

        report = await self.fanout.notify([
            ChildMissed(
                trip_id=trip_id,
                bus_id=trip.bus_id,
                bus_number=trip.bus_number or "",
                trip_type=trip.type,
                child_id=child_id,
            )
            for child_id in statistics.missed_children
        ])
        await self._commit(report)

        logger.info(
            "Trip completed",
            extra={
                "trip_id": trip_id,
                "total_children": statistics.total_children,
                "checked_in_children": statistics.checked_in_children,
                "missed_children": len(statistics.missed_children),
            },
        )
        return TripEndResponse(status=TripStatus.COMPLETED.value, statistics=statistics)

    # Reads

    async def _authorize_driver_records(self, driver_id: str) -> None:
        driver = None
        if self.caller.user_id != driver_id:
            driver = await self.store.get(User, driver_id)
        if not can_view_driver_records(self.caller, driver_id, driver):
            raise InsufficientPermissionsError("Access denied")

    async def get_active_trips(self, driver_id: str) -> TripListResponse:
        await self._authorize_driver_records(driver_id)

        trips = await self.store.query(
            Trip,
            Trip.driver_id == driver_id,
            Trip.status == TripStatus.ACTIVE,
            order_by=(Trip.created_at.desc(), Trip.id.desc()),
        )
        return TripListResponse(trips=[TripResponse.model_validate(trip) for trip in trips])

    async def get_trip_history(
        self,
        driver_id: str,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> TripListResponse:
        """
        Trips of a driver, newest first.

        ``cursor`` is the id of the last trip of the previous page; the next
        page starts strictly after it.
        """
        await self._authorize_driver_records(driver_id)

        limit = limit or settings.trip_history_default_limit
        limit = max(1, min(limit, settings.trip_history_max_limit))

        criteria = [Trip.driver_id == driver_id]
        if cursor:
            anchor = await self.store.get(Trip, cursor)
            if anchor is None or anchor.driver_id != driver_id:
                raise InvalidArgumentError("Invalid cursor", details={"cursor": cursor})
            criteria.append(
                or_(
                    Trip.created_at < anchor.created_at,
                    and_(Trip.created_at == anchor.created_at, Trip.id < anchor.id),
                )
            )

        rows = await self.store.query(
            Trip,
            *criteria,
            order_by=(Trip.created_at.desc(), Trip.id.desc()),
            limit=limit + 1,
        )
        page = rows[:limit]
        next_cursor = page[-1].id if len(rows) > limit else None

        return TripListResponse(
            trips=[TripResponse.model_validate(trip) for trip in page],
            next_cursor=next_cursor,
        )
