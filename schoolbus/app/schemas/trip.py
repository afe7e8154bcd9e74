"""
Trip schemas for visibility endpoints.
"""

from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime
from schoolbus.app.models.trip_enums import TripStatus, TripType


class LocationSnapshot(BaseModel):
    latitude: float
    longitude: float
    timestamp: Optional[datetime] = None


class TripResponse(BaseModel):
    """Schema for trip response."""
    id: str
    bus_id: str
    route_id: str
    driver_id: str
    bus_number: Optional[str]
    route_name: Optional[str]
    type: TripType
    status: TripStatus
    children_ids: List[str]
    checked_in_children: List[str]
    current_location: LocationSnapshot
    start_time: datetime
    end_time: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TripListResponse(BaseModel):
    """Schema for a page of trips."""
    trips: List[TripResponse]
    next_cursor: Optional[str] = None
