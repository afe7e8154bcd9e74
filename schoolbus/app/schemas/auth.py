"""
Caller identity schema.
"""

from pydantic import BaseModel
from typing import Optional
from schoolbus.app.models.enums import UserRole


class CallerIdentity(BaseModel):
    """Resolved, authenticated caller passed explicitly into every operation."""
    user_id: str
    role: UserRole
    school_id: Optional[str] = None

    @property
    def is_super_admin(self) -> bool:
        return self.role == UserRole.SUPER_ADMIN
