"""
Notification API Endpoints.

Recipients read their inbox; admins send school emergency broadcasts.
"""

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from schoolbus.app.db.session import get_db
from schoolbus.app.models.enums import UserRole
from schoolbus.app.core.dependencies import get_current_user
from schoolbus.app.core.exceptions import InsufficientPermissionsError, ResourceNotFoundError
from schoolbus.app.core.guards import require_role, can_manage_school
from schoolbus.app.domain.notifications.events import EmergencyAlert
from schoolbus.app.schemas.auth import CallerIdentity
from schoolbus.app.schemas.notification import NotificationResponse, EmergencyBroadcastRequest
from schoolbus.app.services.notification_service import NotificationService
from schoolbus.app.services.push_delivery import PushDispatcher, PushReport, get_push_dispatcher

router = APIRouter(prefix="/notifications", tags=["Notifications"])
admin_router = APIRouter(prefix="/admin/notifications", tags=["Admin - Notifications"])


@router.get("", response_model=List[NotificationResponse])
async def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    current_user: CallerIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """List current user's notifications."""
    return await NotificationService.list_for_user(
        db, current_user.user_id, unread_only=unread_only, limit=limit
    )


@router.patch("/read-all")
async def mark_all_notifications_read(
    current_user: CallerIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Mark all notifications as read."""
    count = await NotificationService.mark_all_read(db, current_user.user_id)
    await db.commit()
    return {"status": "success", "count": count}


@router.patch("/{notification_id}/read")
async def mark_notification_read(
    notification_id: str = Path(...),
    current_user: CallerIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Mark a specific notification as read."""
    success = await NotificationService.mark_read(db, notification_id, current_user.user_id)
    if not success:
        raise ResourceNotFoundError("Notification", notification_id)

    await db.commit()
    return {"status": "success"}


# --- Admin Emergency Broadcast ---

@admin_router.post("/emergency", response_model=PushReport)
async def send_emergency_notification(
    req: EmergencyBroadcastRequest,
    current_user: CallerIdentity = Depends(require_role([UserRole.SCHOOL_ADMIN, UserRole.SUPER_ADMIN])),
    dispatcher: PushDispatcher = Depends(get_push_dispatcher)
):
    """Broadcast an emergency alert to a school's emergency topic."""
    if not can_manage_school(current_user, req.school_id):
        raise InsufficientPermissionsError("School admins can only alert their own school")

    alert = EmergencyAlert(
        school_id=req.school_id,
        message=req.message,
        severity=req.severity,
        additional_data=req.additional_data,
    )
    return await dispatcher.broadcast(alert)
