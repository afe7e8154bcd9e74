"""
Child database model (read-only for the trip engine).

A trip snapshots the active children of its route when it starts.
"""

from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey
from sqlalchemy.sql import func
from schoolbus.app.db.session import Base


class Child(Base):
    __tablename__ = "children"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    parent_id = Column(String(64), ForeignKey("users.id"), nullable=True, index=True)
    route_id = Column(String(64), ForeignKey("routes.id"), nullable=True, index=True)
    school_id = Column(String(64), index=True, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Child(id={self.id}, name='{self.name}', route_id={self.route_id})>"
