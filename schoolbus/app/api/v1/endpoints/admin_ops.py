"""
Admin Operations API Endpoints.

Maintenance of the live bus projection.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query

from schoolbus.app.core.exceptions import InsufficientPermissionsError
from schoolbus.app.core.guards import require_role, can_manage_school
from schoolbus.app.db.document_store import DocumentStore
from schoolbus.app.domain.trips.reconciliation import reconcile_bus_projections
from schoolbus.app.models.enums import UserRole
from schoolbus.app.schemas.auth import CallerIdentity
from schoolbus.app.api.v1.endpoints.trips import get_document_store

router = APIRouter(prefix="/admin/ops", tags=["Admin - Ops"])


@router.post("/reconcile-buses")
async def reconcile_buses(
    school_id: Optional[str] = Query(None, description="Limit to one school"),
    current_user: CallerIdentity = Depends(require_role([UserRole.SCHOOL_ADMIN, UserRole.SUPER_ADMIN])),
    store: DocumentStore = Depends(get_document_store)
):
    """
    Rewrite bus status/current trip from the trips table.

    School admins are always scoped to their own school.
    """
    if not current_user.is_super_admin:
        school_id = school_id or current_user.school_id
        if not can_manage_school(current_user, school_id):
            raise InsufficientPermissionsError("School admins can only reconcile their own school")

    repaired = await reconcile_bus_projections(store, school_id=school_id)
    return {"message": "Reconciliation completed", "repaired_bus_ids": repaired}
