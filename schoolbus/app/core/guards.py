"""
Identity Guard: role-based and identity-match access control.

Driver-scoped mutations require an exact identity match with the assigned
driver. Reads of another driver's trips require a school admin of the same
school or a super admin. A denial always surfaces as
``InsufficientPermissionsError``.
"""

from typing import List, Optional
from fastapi import Depends
from schoolbus.app.core.dependencies import get_current_user
from schoolbus.app.core.exceptions import InsufficientPermissionsError
from schoolbus.app.models.enums import UserRole
from schoolbus.app.models.user import User
from schoolbus.app.schemas.auth import CallerIdentity


def authorize(
    caller: CallerIdentity,
    required_roles: Optional[List[UserRole]] = None,
    required_identity: Optional[str] = None,
) -> bool:
    """
    Decide whether the caller satisfies a role set or an identity match.

    Exactly one of ``required_roles`` / ``required_identity`` is expected.
    """
    if required_identity is not None:
        return caller.user_id == required_identity
    if required_roles is not None:
        return caller.role in required_roles
    return False


def enforce_identity_match(caller: CallerIdentity, owner_id: Optional[str], message: str) -> None:
    """Raise unless the caller is exactly ``owner_id``."""
    if owner_id is None or not authorize(caller, required_identity=owner_id):
        raise InsufficientPermissionsError(message)


def can_view_driver_records(caller: CallerIdentity, driver_id: str, driver: Optional[User]) -> bool:
    """
    Self, a super admin, or a school admin of the driver's school.

    ``driver`` may be None when the driver record is unknown; only self and
    super admins pass in that case.
    """
    if authorize(caller, required_identity=driver_id):
        return True
    if caller.is_super_admin:
        return True
    if authorize(caller, required_roles=[UserRole.SCHOOL_ADMIN]):
        return (
            driver is not None
            and caller.school_id is not None
            and driver.school_id == caller.school_id
        )
    return False


def can_manage_school(caller: CallerIdentity, school_id: Optional[str]) -> bool:
    """Super admins manage every school; school admins only their own."""
    if caller.is_super_admin:
        return True
    return (
        caller.role == UserRole.SCHOOL_ADMIN
        and school_id is not None
        and caller.school_id == school_id
    )


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/admin/ops/reconcile-buses")
        async def reconcile(caller: CallerIdentity = Depends(require_role([UserRole.SUPER_ADMIN]))):
            ...
    """
    async def role_checker(current_user: CallerIdentity = Depends(get_current_user)) -> CallerIdentity:
        if not authorize(current_user, required_roles=allowed_roles):
            raise InsufficientPermissionsError(
                f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )
        return current_user

    return role_checker
