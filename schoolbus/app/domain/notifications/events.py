"""
Notification events.

A closed tagged union: each event kind carries only the fields needed to
render its message. Events are turned into string maps only at the
store/transport boundary (``data_map``).
"""

from datetime import datetime
from typing import Annotated, Dict, Literal, Union
from pydantic import BaseModel, Field

from schoolbus.app.models.notification import NotificationType
from schoolbus.app.models.trip_enums import TripType


class TripStarted(BaseModel):
    kind: Literal["trip_started"] = "trip_started"
    trip_id: str
    bus_id: str
    route_id: str
    bus_number: str
    trip_type: TripType
    child_id: str

    @property
    def notification_type(self) -> NotificationType:
        return NotificationType.TRIP_STARTED

    @property
    def dedup_key(self) -> str:
        return f"{self.kind}:{self.trip_id}:{self.child_id}"


class LocationUpdated(BaseModel):
    """Emitted on every location ping; it has no recipients."""
    kind: Literal["location_updated"] = "location_updated"
    trip_id: str
    bus_id: str
    latitude: float
    longitude: float


class ChildCheckedIn(BaseModel):
    kind: Literal["child_checked_in"] = "child_checked_in"
    trip_id: str
    bus_id: str
    bus_number: str
    trip_type: TripType
    child_id: str
    check_in_id: str
    timestamp: datetime

    @property
    def notification_type(self) -> NotificationType:
        if self.trip_type == TripType.PICKUP:
            return NotificationType.CHILD_PICKED_UP
        return NotificationType.CHILD_DROPPED_OFF

    @property
    def dedup_key(self) -> str:
        return f"{self.notification_type.value}:{self.trip_id}:{self.child_id}"


class ChildMissed(BaseModel):
    kind: Literal["child_missed"] = "child_missed"
    trip_id: str
    bus_id: str
    bus_number: str
    trip_type: TripType
    child_id: str

    @property
    def notification_type(self) -> NotificationType:
        return NotificationType.CHILD_MISSED

    @property
    def dedup_key(self) -> str:
        return f"{self.kind}:{self.trip_id}:{self.child_id}"


class EmergencyAlert(BaseModel):
    """School-wide broadcast delivered to a topic, not to stored inboxes."""
    kind: Literal["emergency_alert"] = "emergency_alert"
    school_id: str
    message: str
    severity: str
    additional_data: Dict[str, str] = Field(default_factory=dict)

    @property
    def topic(self) -> str:
        return f"school_{self.school_id}_emergencies"


NotificationEvent = Annotated[
    Union[TripStarted, LocationUpdated, ChildCheckedIn, ChildMissed, EmergencyAlert],
    Field(discriminator="kind"),
]

ChildScopedEvent = Union[TripStarted, ChildCheckedIn, ChildMissed]


def _trip_label(trip_type: TripType) -> str:
    return "Pickup" if trip_type == TripType.PICKUP else "Drop-off"


def _trip_verb(trip_type: TripType) -> str:
    return "picked up" if trip_type == TripType.PICKUP else "dropped off"


def render_title_body(event: ChildScopedEvent, child_name: str) -> tuple[str, str]:
    """Human-readable title and body for a child-scoped event."""
    if isinstance(event, TripStarted):
        return (
            f"{_trip_label(event.trip_type)} Trip Started",
            f"Bus {event.bus_number} has started the {event.trip_type.value} route for {child_name}.",
        )
    if isinstance(event, ChildCheckedIn):
        return (
            f"{child_name} {_trip_verb(event.trip_type).title()}",
            f"{child_name} has been {_trip_verb(event.trip_type)} by bus {event.bus_number}.",
        )
    if isinstance(event, ChildMissed):
        return (
            f"{child_name} Missed {_trip_label(event.trip_type)}",
            f"{child_name} was not {_trip_verb(event.trip_type)} during the scheduled trip.",
        )
    raise TypeError(f"Not a child-scoped event: {type(event).__name__}")


def data_map(event: ChildScopedEvent, child_name: str) -> Dict[str, str]:
    """Machine-readable payload; push data payloads must be string-valued."""
    data = {
        "trip_id": event.trip_id,
        "bus_id": event.bus_id,
        "child_id": event.child_id,
        "child_name": child_name,
    }
    if isinstance(event, TripStarted):
        data.update(route_id=event.route_id, type=event.trip_type.value)
    elif isinstance(event, ChildCheckedIn):
        data.update(
            bus_number=event.bus_number,
            check_in_id=event.check_in_id,
            timestamp=event.timestamp.isoformat(),
        )
    elif isinstance(event, ChildMissed):
        data.update(bus_number=event.bus_number, type=event.trip_type.value)
    return data


def render_emergency(event: EmergencyAlert) -> tuple[str, str, Dict[str, str]]:
    data = {"school_id": event.school_id, "severity": event.severity}
    data.update(event.additional_data)
    return f"Emergency Alert - {event.severity.upper()}", event.message, data
