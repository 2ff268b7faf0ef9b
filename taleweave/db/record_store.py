"""Persistent record store with live subscriptions.

Documents are JSON objects addressed by ``(collection, doc_id)``.
Readers get them back with two extra keys: ``id`` and ``_version``.
``_version`` is a store-wide monotonic write token, so two snapshots of
the same document can always be ordered.

Contract relied on by the sync layer:
    - subscribe() yields full snapshots of the matching documents, the
      first one immediately, then one after every write to the collection
      (at-least-once; repeats are harmless).
    - set_merge() only touches the fields it is given and creates the
      document if it does not exist.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from ..errors import WriteConflictError
from .models import RecordRow, WriteSequence
from .session import get_session, init_db

logger = logging.getLogger(__name__)

Document = dict[str, Any]
Snapshot = list[Document]

VERSION_KEY = "_version"


@dataclass(frozen=True)
class Where:
    """Single field filter: ``==`` or ``array-contains``."""
    field: str
    op: str
    value: Any

    def matches(self, doc: Mapping[str, Any]) -> bool:
        actual = doc.get(self.field)
        if self.op == "==":
            return actual == self.value
        if self.op == "array-contains":
            return isinstance(actual, list) and self.value in actual
        raise ValueError(f"Unsupported filter operator: {self.op}")


def matches_all(doc: Mapping[str, Any], where: list[Where] | None) -> bool:
    return all(w.matches(doc) for w in (where or []))


class Subscription:
    """Async iterator over snapshots of one filtered collection."""

    def __init__(self, store: "RecordStore", collection: str, where: list[Where] | None):
        self.store = store
        self.collection = collection
        self.where = where
        self._queue: asyncio.Queue[Snapshot | None] = asyncio.Queue()
        self.closed = False

    def push(self, snapshot: Snapshot) -> None:
        if not self.closed:
            self._queue.put_nowait(snapshot)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.store._unsubscribe(self)
        self._queue.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self) -> Snapshot:
        snapshot = await self._queue.get()
        if snapshot is None:
            raise StopAsyncIteration
        return snapshot


class RecordStore(ABC):
    """Abstract persistent record store."""

    def __init__(self):
        self._subscriptions: list[Subscription] = []

    # ── Reads ──

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Document | None:
        pass

    @abstractmethod
    async def query(self, collection: str, where: list[Where] | None = None) -> Snapshot:
        pass

    # ── Writes ──

    @abstractmethod
    async def _write_merge(
        self,
        collection: str,
        doc_id: str,
        fields: Mapping[str, Any],
        expect: Mapping[str, Any] | None,
    ) -> int:
        pass

    @abstractmethod
    async def _write_delete(self, collection: str, doc_id: str) -> bool:
        pass

    async def set_merge(
        self,
        collection: str,
        doc_id: str,
        fields: Mapping[str, Any],
        expect: Mapping[str, Any] | None = None,
    ) -> int:
        """Merge top-level fields into a document. Returns the new version.

        Args:
            expect: Field values that must still hold in the stored document,
                checked atomically with the write.

        Raises:
            WriteConflictError: If an ``expect`` precondition fails.
        """
        version = await self._write_merge(collection, doc_id, fields, expect)
        await self._publish(collection)
        return version

    async def add(self, collection: str, data: Mapping[str, Any]) -> str:
        """Create a document with a generated id."""
        doc_id = uuid.uuid4().hex
        await self.set_merge(collection, doc_id, data)
        return doc_id

    async def delete(self, collection: str, doc_id: str) -> bool:
        deleted = await self._write_delete(collection, doc_id)
        if deleted:
            await self._publish(collection)
        return deleted

    # ── Live subscriptions ──

    async def subscribe(self, collection: str, where: list[Where] | None = None) -> Subscription:
        """Open a live feed. The current snapshot is queued before returning."""
        subscription = Subscription(self, collection, where)
        self._subscriptions.append(subscription)
        subscription.push(await self.query(collection, where))
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    async def _publish(self, collection: str) -> None:
        for subscription in list(self._subscriptions):
            if subscription.collection == collection:
                subscription.push(await self.query(collection, subscription.where))


class SqlRecordStore(RecordStore):
    """Record store backed by the ``records`` table."""

    def __init__(self, initialize: bool = True):
        super().__init__()
        if initialize:
            init_db()

    @staticmethod
    def _to_document(row: RecordRow) -> Document:
        doc = dict(row.data or {})
        doc["id"] = row.doc_id
        doc[VERSION_KEY] = row.version
        return doc

    @staticmethod
    def _next_version(db) -> int:
        sequence = db.get(WriteSequence, 1)
        if sequence is None:
            sequence = WriteSequence(id=1, value=0)
            db.add(sequence)
        sequence.value += 1
        return sequence.value

    async def get(self, collection: str, doc_id: str) -> Document | None:
        with get_session() as db:
            row = (
                db.query(RecordRow)
                .filter(RecordRow.collection == collection, RecordRow.doc_id == doc_id)
                .first()
            )
            return self._to_document(row) if row else None

    async def query(self, collection: str, where: list[Where] | None = None) -> Snapshot:
        with get_session() as db:
            rows = (
                db.query(RecordRow)
                .filter(RecordRow.collection == collection)
                .order_by(RecordRow.id)
                .all()
            )
            docs = [self._to_document(row) for row in rows]
        return [doc for doc in docs if matches_all(doc, where)]

    async def _write_merge(self, collection, doc_id, fields, expect) -> int:
        with get_session() as db:
            row = (
                db.query(RecordRow)
                .filter(RecordRow.collection == collection, RecordRow.doc_id == doc_id)
                .with_for_update()
                .first()
            )
            current = dict(row.data or {}) if row else {}

            for field, expected in (expect or {}).items():
                actual = current.get(field)
                if actual != expected:
                    raise WriteConflictError(collection, doc_id, field, expected, actual)

            merged = {**current, **{k: v for k, v in fields.items() if k not in ("id", VERSION_KEY)}}
            version = self._next_version(db)
            if row is None:
                row = RecordRow(collection=collection, doc_id=doc_id)
                db.add(row)
            # Reassign so the JSON column registers the change
            row.data = merged
            row.version = version

        logger.debug(f"Merged {sorted(fields)} into {collection}/{doc_id} (v{version})")
        return version

    async def _write_delete(self, collection, doc_id) -> bool:
        with get_session() as db:
            deleted = (
                db.query(RecordRow)
                .filter(RecordRow.collection == collection, RecordRow.doc_id == doc_id)
                .delete()
            )
        return deleted > 0


# Module-level singleton
_record_store: RecordStore | None = None


def get_record_store() -> RecordStore:
    """Get the process-wide record store, creating it on first use."""
    global _record_store
    if _record_store is None:
        _record_store = SqlRecordStore()
    return _record_store


def reset_record_store() -> None:
    global _record_store
    _record_store = None
