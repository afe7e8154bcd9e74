"""
Dead Letter Queue (DLQ) Model.

Push deliveries and topic broadcasts that failed for good. The
notification record itself stays untouched; this row is what an operator
replays from.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Enum
from schoolbus.app.db.session import Base, new_document_id, utcnow
from schoolbus.app.models.enums import enum_values
import enum


class DLQStatus(str, enum.Enum):
    FAILED = "failed"
    REPLAYED = "replayed"


class DeadLetterQueue(Base):
    __tablename__ = "dead_letter_queue"

    id = Column(String(64), primary_key=True, default=new_document_id)

    task_name = Column(String(100), nullable=False, index=True)  # push_delivery | topic_broadcast
    target = Column(String(255), nullable=False, index=True)  # notification id or topic
    error_message = Column(Text, nullable=False)
    payload = Column(JSON, nullable=True)

    status = Column(
        Enum(DLQStatus, values_callable=enum_values, native_enum=False),
        default=DLQStatus.FAILED,
        nullable=False,
        index=True
    )
    attempts = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<DLQ(id={self.id}, task='{self.task_name}', target='{self.target}')>"
