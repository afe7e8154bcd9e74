"""
Notification Database Model.

Records are written durably before any push delivery is attempted; the push
fields track the second phase.
"""

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, JSON, Enum
from schoolbus.app.db.session import Base, new_document_id
from schoolbus.app.models.enums import enum_values
import enum


class NotificationType(str, enum.Enum):
    TRIP_STARTED = "trip_started"
    CHILD_PICKED_UP = "child_picked_up"
    CHILD_DROPPED_OFF = "child_dropped_off"
    CHILD_MISSED = "child_missed"
    EMERGENCY_ALERT = "emergency_alert"


class PushStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"  # Recipient has no push token


class Notification(Base):
    """
    In-App Notification.
    Stores messages for users.
    """
    __tablename__ = "notifications"

    id = Column(String(64), primary_key=True, default=new_document_id)

    # Recipient
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)

    # Content
    type = Column(Enum(NotificationType, values_callable=enum_values, native_enum=False), nullable=False)
    title = Column(String(255), nullable=False)
    body = Column(Text, nullable=False)
    data = Column(JSON, nullable=False, default=dict)

    # One record per (event, recipient)
    dedup_key = Column(String(255), unique=True, nullable=True)

    # State
    is_read = Column(Boolean, default=False, nullable=False, index=True)
    read_at = Column(DateTime(timezone=True), nullable=True)

    # Push delivery
    push_status = Column(
        Enum(PushStatus, values_callable=enum_values, native_enum=False),
        default=PushStatus.PENDING,
        nullable=False,
        index=True
    )
    push_attempts = Column(Integer, default=0, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<Notification(id={self.id}, user={self.user_id}, type='{self.type.value}')>"
