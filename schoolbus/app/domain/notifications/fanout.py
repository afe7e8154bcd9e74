"""
Notification Fan-out.

Expands domain events into per-recipient notification records and writes
them as one atomic batch in the caller's unit of work. Push delivery is a
separate, later phase (see ``services.push_delivery``).
"""

import logging
from typing import Dict, List, Sequence
from pydantic import BaseModel, Field

from schoolbus.app.db.document_store import BatchOperation, DocumentStore
from schoolbus.app.db.session import new_document_id, utcnow
from schoolbus.app.domain.notifications.events import (
    ChildCheckedIn,
    ChildMissed,
    TripStarted,
    data_map,
    render_title_body,
)
from schoolbus.app.models.notification import Notification, PushStatus

logger = logging.getLogger("schoolbus.notifications")

CHILD_SCOPED_EVENTS = (TripStarted, ChildCheckedIn, ChildMissed)


class DeliveryReport(BaseModel):
    """Outcome of the persistence phase of a fan-out."""
    event_types: List[str] = Field(default_factory=list)
    recipients: List[str] = Field(default_factory=list)
    persisted: int = 0
    duplicates_skipped: int = 0
    unresolved_children: List[str] = Field(default_factory=list)
    notification_ids: List[str] = Field(default_factory=list)


class NotificationFanout:
    """Resolves recipients and writes notification records through the store."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def notify(self, events: Sequence) -> DeliveryReport:
        """
        Persist one notification per (event, recipient).

        Child-scoped events go to the child's parent. Children without a
        record or a parent are skipped and listed in the report. Records
        whose dedup key already exists are not written again.
        """
        report = DeliveryReport(event_types=sorted({event.kind for event in events}))

        child_events = [event for event in events if isinstance(event, CHILD_SCOPED_EVENTS)]
        if not child_events:
            return report

        children = await self.store.children_by_id([event.child_id for event in child_events])

        drafts: Dict[str, dict] = {}
        for event in child_events:
            child = children.get(event.child_id)
            if child is None or not child.parent_id:
                logger.warning(
                    "No recipient for notification",
                    extra={"event": event.kind, "child_id": event.child_id},
                )
                report.unresolved_children.append(event.child_id)
                continue

            key = event.dedup_key
            if key in drafts:
                report.duplicates_skipped += 1
                continue

            title, body = render_title_body(event, child.name)
            drafts[key] = {
                "id": new_document_id(),
                "user_id": child.parent_id,
                "type": event.notification_type,
                "title": title,
                "body": body,
                "data": data_map(event, child.name),
                "dedup_key": key,
                "is_read": False,
                "push_status": PushStatus.PENDING,
                "push_attempts": 0,
                "created_at": utcnow(),
            }

        existing = await self.store.existing_dedup_keys(list(drafts))
        for key in existing:
            drafts.pop(key)
        report.duplicates_skipped += len(existing)

        if drafts:
            report.notification_ids = await self.store.batch_write([
                BatchOperation("create", Notification, draft["id"], draft)
                for draft in drafts.values()
            ])

        report.persisted = len(drafts)
        report.recipients = sorted({draft["user_id"] for draft in drafts.values()})

        logger.info(
            "Notifications persisted",
            extra={
                "events": report.event_types,
                "persisted": report.persisted,
                "duplicates_skipped": report.duplicates_skipped,
            },
        )
        return report
