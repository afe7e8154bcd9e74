"""
Trip-related enumerations.
"""

import enum


class TripStatus(str, enum.Enum):
    """Trip status enumeration."""
    ACTIVE = "active"  # Bus is on the road
    COMPLETED = "completed"  # Terminal


class TripType(str, enum.Enum):
    """Direction of a trip."""
    PICKUP = "pickup"  # Home to school
    DROPOFF = "dropoff"  # School to home


class CheckInMethod(str, enum.Enum):
    """How the driver confirmed a child at a stop."""
    MANUAL = "manual"
    QR = "qr"
    FACE_ID = "face_id"


class BusStatus(str, enum.Enum):
    """Live bus status projection."""
    ACTIVE = "active"  # Available, no trip running
    IN_TRANSIT = "inTransit"  # Running a trip
