"""
Trip execution schemas.
"""

from pydantic import BaseModel, Field
from typing import Optional
from schoolbus.app.domain.trips.statistics import TripStatistics
from schoolbus.app.models.trip_enums import CheckInMethod, TripType


class TripStartRequest(BaseModel):
    """Schema for starting a trip."""
    bus_id: str = Field(..., min_length=1)
    route_id: str = Field(..., min_length=1)
    driver_id: str = Field(..., min_length=1)
    type: TripType


class TripStartResponse(BaseModel):
    """Response after starting a trip."""
    trip_id: str
    status: str  # started


class LocationUpdate(BaseModel):
    """Schema for a GPS location ping."""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class LocationUpdateResponse(BaseModel):
    success: bool


class CheckInRequest(BaseModel):
    """Schema for recording a child at a stop."""
    child_id: str = Field(..., min_length=1)
    stop_id: str = Field(..., min_length=1)
    method: CheckInMethod
    photo_url: Optional[str] = None


class CheckInResponse(BaseModel):
    """Response after a check-in."""
    check_in_id: str
    status: str  # completed


class TripEndResponse(BaseModel):
    """Response after ending a trip."""
    status: str  # completed
    statistics: TripStatistics
