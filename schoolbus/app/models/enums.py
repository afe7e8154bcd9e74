"""
User roles enumeration.

Defines the role types known to the trip engine.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        DRIVER: Operates a bus and runs its trips
        PARENT: Receives notifications about their children
        SCHOOL_ADMIN: Administers the buses and drivers of one school
        SUPER_ADMIN: System-level access across schools
    """
    DRIVER = "driver"
    PARENT = "parent"
    SCHOOL_ADMIN = "schoolAdmin"
    SUPER_ADMIN = "superAdmin"


def enum_values(enum_cls):
    """Persist enum values rather than member names."""
    return [member.value for member in enum_cls]
