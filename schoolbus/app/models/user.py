"""
User database model.

Users are provisioned by the identity provider; the trip engine only reads
them to resolve callers, recipients and push tokens.
"""

from sqlalchemy import Column, String, Boolean, DateTime, Enum
from sqlalchemy.sql import func
from schoolbus.app.db.session import Base
from schoolbus.app.models.enums import UserRole, enum_values


class User(Base):
    """User model for callers and notification recipients."""
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=True)
    role = Column(Enum(UserRole, values_callable=enum_values, native_enum=False), nullable=False)

    # Tenant scope for school admins, drivers and parents
    school_id = Column(String(64), index=True, nullable=True)

    # Device push token (Firebase Cloud Messaging)
    fcm_token = Column(String(512), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<User(id={self.id}, name='{self.name}', role='{self.role.value}')>"
