"""
Notification Schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, Dict, Any
from schoolbus.app.models.notification import NotificationType, PushStatus


class NotificationResponse(BaseModel):
    id: str
    type: NotificationType
    title: str
    body: str
    data: Dict[str, Any]
    is_read: bool
    push_status: PushStatus
    created_at: datetime
    read_at: Optional[datetime]

    class Config:
        from_attributes = True


class EmergencyBroadcastRequest(BaseModel):
    school_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    severity: str = Field("high", pattern="^(low|medium|high|critical)$")
    additional_data: Dict[str, str] = Field(default_factory=dict)
