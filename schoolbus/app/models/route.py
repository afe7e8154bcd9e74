"""
Route database model (read-only for the trip engine).
"""

from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.sql import func
from schoolbus.app.db.session import Base


class Route(Base):
    __tablename__ = "routes"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    school_id = Column(String(64), index=True, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Route(id={self.id}, name='{self.name}')>"
