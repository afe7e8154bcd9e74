"""
Check-in database model.

An immutable record of one child boarding or alighting. The unique
constraint on (trip_id, child_id) is the hard idempotency guard for
repeated or concurrent check-ins.
"""

from sqlalchemy import Column, String, Float, ForeignKey, DateTime, Enum, UniqueConstraint
from sqlalchemy.sql import func
from schoolbus.app.db.session import Base, new_document_id
from schoolbus.app.models.enums import enum_values
from schoolbus.app.models.trip_enums import CheckInMethod


class CheckIn(Base):
    __tablename__ = "checkins"

    id = Column(String(64), primary_key=True, default=new_document_id)

    trip_id = Column(String(64), ForeignKey("trips.id"), nullable=False, index=True)
    child_id = Column(String(64), ForeignKey("children.id"), nullable=False, index=True)
    child_name = Column(String(255), nullable=True)
    stop_id = Column(String(64), nullable=False)

    # Context copied from the trip
    driver_id = Column(String(64), nullable=False)
    bus_id = Column(String(64), nullable=False)
    route_id = Column(String(64), nullable=False)

    method = Column(Enum(CheckInMethod, values_callable=enum_values, native_enum=False), nullable=False)
    photo_url = Column(String(1024), nullable=True)

    # Location snapshot
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    location_timestamp = Column(DateTime(timezone=True), nullable=True)

    timestamp = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("trip_id", "child_id", name="uq_checkins_trip_child"),
    )

    def __repr__(self):
        return f"<CheckIn(id={self.id}, trip_id={self.trip_id}, child_id={self.child_id})>"
