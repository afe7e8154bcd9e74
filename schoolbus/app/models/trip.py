"""
Trip database model.

A trip is one directional run of a bus along a route. The partial unique
index allows at most one active trip per bus, which turns trip creation into
a conditional create.
"""

from sqlalchemy import Column, Integer, String, Float, ForeignKey, DateTime, Enum, JSON, Index, text
from schoolbus.app.db.session import Base, new_document_id
from schoolbus.app.models.enums import enum_values
from schoolbus.app.models.trip_enums import TripStatus, TripType


class Trip(Base):
    """
    Trip model.

    ``children_ids`` is fixed when the trip starts. ``checked_in_children`` is
    append-only, in arrival order, and only ever written through a
    compare-and-swap on ``version``.
    """
    __tablename__ = "trips"

    id = Column(String(64), primary_key=True, default=new_document_id)

    # References
    bus_id = Column(String(64), ForeignKey("buses.id"), nullable=False, index=True)
    route_id = Column(String(64), ForeignKey("routes.id"), nullable=False, index=True)
    driver_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)

    # Denormalized for notification text
    bus_number = Column(String(32), nullable=True)
    route_name = Column(String(255), nullable=True)

    type = Column(Enum(TripType, values_callable=enum_values, native_enum=False), nullable=False)
    status = Column(
        Enum(TripStatus, values_callable=enum_values, native_enum=False),
        default=TripStatus.ACTIVE,
        nullable=False,
        index=True
    )

    # Children
    children_ids = Column(JSON, nullable=False, default=list)
    checked_in_children = Column(JSON, nullable=False, default=list)

    # Latest known position
    current_latitude = Column(Float, nullable=False, default=0.0)
    current_longitude = Column(Float, nullable=False, default=0.0)
    location_timestamp = Column(DateTime(timezone=True), nullable=True)

    # Compare-and-swap token
    version = Column(Integer, nullable=False, default=1)

    # Timestamps
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index(
            "ix_trips_one_active_per_bus", "bus_id", unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("ix_trips_driver_created", "driver_id", "created_at"),
    )

    @property
    def current_location(self) -> dict:
        return {
            "latitude": self.current_latitude,
            "longitude": self.current_longitude,
            "timestamp": self.location_timestamp,
        }

    def __repr__(self):
        return f"<Trip(id={self.id}, bus_id={self.bus_id}, status='{self.status.value}')>"
