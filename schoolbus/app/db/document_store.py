"""
Document Store Adapter.

Typed read / write / batch-write access to the trip engine's records over an
async SQLAlchemy session. The session is the unit of work: nothing is
durable until ``commit``, so a batch is atomic as a group.

Conditional writes are first-class:

- ``create_unique`` relies on a unique index and turns a lost race into a
  ``ConflictError``.
- ``update`` accepts extra conditions and reports whether a row matched,
  which makes it a compare-and-swap when the conditions pin a version.
"""

import enum
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, NamedTuple, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolbus.app.core.exceptions import ConflictError, InternalError, ResourceNotFoundError
from schoolbus.app.db.session import new_document_id, utcnow
from schoolbus.app.models.child import Child
from schoolbus.app.models.notification import Notification
from schoolbus.app.models.trip import Trip
from schoolbus.app.models.trip_enums import TripStatus

logger = logging.getLogger("schoolbus.store")


class BatchOperation(NamedTuple):
    """One entry of an atomic batch write."""
    op: str  # "create" or "update"
    model: Any
    doc_id: Optional[str]
    data: Dict[str, Any]


class AppendResult(str, enum.Enum):
    APPENDED = "appended"
    ALREADY_PRESENT = "already_present"
    NOT_ACTIVE = "not_active"
    CONTENDED = "contended"


class DocumentStore:
    """Store handle passed explicitly into every trip operation."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @asynccontextmanager
    async def _guard(self, operation: str, model: Any = None):
        try:
            yield
        except SQLAlchemyError as exc:
            logger.error(
                "Document store failure",
                extra={
                    "operation": operation,
                    "collection": getattr(model, "__tablename__", None),
                    "exception_type": type(exc).__name__,
                },
                exc_info=True,
            )
            raise InternalError() from exc

    # Reads

    async def get(self, model, doc_id: str):
        async with self._guard("get", model):
            result = await self.db.execute(
                select(model)
                .where(model.id == doc_id)
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()

    async def require(self, model, doc_id: str, resource: str):
        """Get a document or raise ``ResourceNotFoundError``."""
        document = await self.get(model, doc_id)
        if document is None:
            raise ResourceNotFoundError(resource, doc_id)
        return document

    async def query(self, model, *criteria, order_by: Sequence = (), limit: Optional[int] = None) -> List:
        async with self._guard("query", model):
            stmt = select(model).where(*criteria).execution_options(populate_existing=True)
            if order_by:
                stmt = stmt.order_by(*order_by)
            if limit is not None:
                stmt = stmt.limit(limit)
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

    # Writes

    async def create(self, document) -> str:
        async with self._guard("create", type(document)):
            self.db.add(document)
            await self.db.flush()
            return document.id

    async def create_unique(self, document, conflict_message: str) -> str:
        """
        Conditional create backed by a unique index.

        A violation rolls back the unit of work, so callers must make this
        the first write of the operation.
        """
        async with self._guard("create_unique", type(document)):
            self.db.add(document)
            try:
                await self.db.flush()
            except IntegrityError:
                await self.db.rollback()
                raise ConflictError(conflict_message)
            return document.id

    async def update(self, model, doc_id: str, values: Dict[str, Any], *conditions) -> bool:
        """Update one document if it exists and every condition holds."""
        async with self._guard("update", model):
            result = await self.db.execute(
                update(model)
                .where(model.id == doc_id, *conditions)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0

    async def batch_write(self, operations: Sequence[BatchOperation]) -> List[str]:
        """Apply every operation in the current unit of work, in order."""
        ids: List[str] = []
        async with self._guard("batch_write"):
            for operation in operations:
                if operation.op == "create":
                    data = dict(operation.data)
                    data.setdefault("id", operation.doc_id or new_document_id())
                    self.db.add(operation.model(**data))
                    ids.append(data["id"])
                elif operation.op == "update":
                    await self.db.execute(
                        update(operation.model)
                        .where(operation.model.id == operation.doc_id)
                        .values(**operation.data)
                        .execution_options(synchronize_session=False)
                    )
                    ids.append(operation.doc_id)
                else:
                    raise ValueError(f"Unsupported batch operation: {operation.op}")
            await self.db.flush()
        return ids

    async def commit(self) -> None:
        async with self._guard("commit"):
            await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()

    # Typed helpers

    async def active_trip_for_bus(self, bus_id: str) -> Optional[Trip]:
        trips = await self.query(
            Trip, Trip.bus_id == bus_id, Trip.status == TripStatus.ACTIVE, limit=1
        )
        return trips[0] if trips else None

    async def active_route_children(self, route_id: str) -> List[Child]:
        return await self.query(
            Child,
            Child.route_id == route_id,
            Child.is_active.is_(True),
            order_by=(Child.id,),
        )

    async def children_by_id(self, child_ids: Sequence[str]) -> Dict[str, Child]:
        if not child_ids:
            return {}
        children = await self.query(Child, Child.id.in_(list(child_ids)))
        return {child.id: child for child in children}

    async def existing_dedup_keys(self, keys: Sequence[str]) -> set:
        if not keys:
            return set()
        async with self._guard("query", Notification):
            result = await self.db.execute(
                select(Notification.dedup_key).where(Notification.dedup_key.in_(list(keys)))
            )
            return set(result.scalars().all())

    async def append_checked_in_child(self, trip_id: str, child_id: str, max_attempts: int) -> AppendResult:
        """
        Append-if-absent on ``trip.checked_in_children``.

        Each attempt re-reads the trip and swaps in the extended list only if
        ``version`` is unchanged. A lost swap means another writer got there
        first, so the next attempt sees its result.
        """
        for _ in range(max_attempts):
            trip = await self.get(Trip, trip_id)
            if trip is None or trip.status != TripStatus.ACTIVE:
                return AppendResult.NOT_ACTIVE
            current = list(trip.checked_in_children or [])
            if child_id in current:
                return AppendResult.ALREADY_PRESENT

            swapped = await self.update(
                Trip,
                trip_id,
                {
                    "checked_in_children": current + [child_id],
                    "version": trip.version + 1,
                    "updated_at": utcnow(),
                },
                Trip.version == trip.version,
                Trip.status == TripStatus.ACTIVE,
            )
            if swapped:
                return AppendResult.APPENDED

            logger.info(
                "Check-in append lost compare-and-swap, retrying",
                extra={"trip_id": trip_id, "child_id": child_id},
            )
        return AppendResult.CONTENDED
