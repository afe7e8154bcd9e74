"""
Bus database model.

A bus is owned by fleet management; while a trip is active the trip engine is
the only writer of its status, current trip and location fields.
"""

from sqlalchemy import Column, String, Float, ForeignKey, DateTime, Enum
from sqlalchemy.sql import func
from schoolbus.app.db.session import Base
from schoolbus.app.models.enums import enum_values
from schoolbus.app.models.trip_enums import BusStatus


class Bus(Base):
    """Bus model with its live-state projection."""
    __tablename__ = "buses"

    id = Column(String(64), primary_key=True)
    bus_number = Column(String(32), nullable=False)
    school_id = Column(String(64), index=True, nullable=True)

    # Assignment
    driver_id = Column(String(64), ForeignKey("users.id"), nullable=True, index=True)

    # Live projection
    status = Column(
        Enum(BusStatus, values_callable=enum_values, native_enum=False),
        default=BusStatus.ACTIVE,
        nullable=False
    )
    current_trip_id = Column(String(64), nullable=True, index=True)
    current_latitude = Column(Float, nullable=True)
    current_longitude = Column(Float, nullable=True)
    last_location_update = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Bus(id={self.id}, number='{self.bus_number}', status='{self.status.value}')>"
