# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Priority request queue with a persisted snapshot.

The in-memory list is authoritative for the life of the process. Every
mutation writes a JSON snapshot to the key/value store so that queued work
can be restored after a restart. Store failures only degrade restart
durability and are logged, never raised.
"""

import logging

from pydantic import ValidationError
from pydantic_core import PydanticSerializationError

from ..backends.base import BaseBackend
from ..exceptions import BackendConnectionError, BackendOperationError
from ..types.queue import SNAPSHOT_VERSION, QueueRecord, QueueSnapshot

logger = logging.getLogger(__name__)


class RequestQueue:
    """
    Pending upstream requests in priority order.

    Ordering is descending by priority; equal priorities keep arrival order
    (the record's sequence number, assigned on first enqueue).

    Example:
        >>> queue = RequestQueue(backend, "polygon_api_queue")
        >>> await queue.enqueue(QueueRecord(endpoint_path="/v2/aggs/ticker/AAPL/prev", priority=5))
        >>> record = await queue.dequeue_highest()
    """

    def __init__(
        self,
        backend: BaseBackend,
        key: str,
        snapshot_ttl: int = 3600,
    ) -> None:
        """
        Initialize the queue.

        Args:
            backend: Store holding the snapshot
            key: Store key of the snapshot
            snapshot_ttl: Snapshot expiry in seconds
        """
        self._backend = backend
        self.key = key
        self.snapshot_ttl = snapshot_ttl
        self._records: list[QueueRecord] = []
        self._next_sequence = 0

    def __len__(self) -> int:
        return len(self._records)

    def __bool__(self) -> bool:
        return bool(self._records)

    def records(self) -> list[QueueRecord]:
        """Records in service order (a copy)."""
        return list(self._records)

    def peek(self) -> QueueRecord | None:
        """The record that dequeue_highest() would return, without removing it."""
        return self._records[0] if self._records else None

    def contains(self, request_id: str) -> bool:
        return any(r.request_id == request_id for r in self._records)

    def get(self, request_id: str) -> QueueRecord | None:
        for record in self._records:
            if record.request_id == request_id:
                return record
        return None

    def _sort(self) -> None:
        self._records.sort(key=lambda r: r.sort_key)

    def _assign_sequence(self, record: QueueRecord) -> QueueRecord:
        record = record.model_copy(update={"sequence": self._next_sequence})
        self._next_sequence += 1
        return record

    async def enqueue(self, record: QueueRecord) -> QueueRecord:
        """
        Add a new record, re-sort, and persist.

        The record receives the next arrival sequence number.

        Returns:
            The record as stored in the queue
        """
        record = self._assign_sequence(record)
        self._records.append(record)
        self._sort()
        await self.persist()
        return record

    async def requeue(self, record: QueueRecord) -> QueueRecord:
        """
        Put back a record rejected by the upstream rate limit.

        The record's priority grows by exactly one; its arrival sequence is
        kept so it stays ahead of later arrivals of the same priority.

        Returns:
            The bumped record as stored in the queue
        """
        bumped = record.bumped()
        self._records.append(bumped)
        self._sort()
        await self.persist()
        return bumped

    def reinsert(self, record: QueueRecord) -> None:
        """
        Put back a record whose service was interrupted, unchanged.

        Does not persist; the caller is expected to persist afterwards.
        """
        self._records.append(record)
        self._sort()

    async def dequeue_highest(self) -> QueueRecord | None:
        """Remove and return the front record, or None if the queue is empty."""
        if not self._records:
            return None
        record = self._records.pop(0)
        await self.persist()
        return record

    async def clear(self) -> None:
        """Drop every record and persist the empty queue."""
        self._records.clear()
        await self.persist()

    def _serialize(self) -> str:
        return QueueSnapshot(entries=self._records).model_dump_json()

    async def persist(self) -> bool:
        """
        Write the snapshot to the store.

        Returns:
            True if the snapshot was written, False if the store failed
        """
        try:
            await self._backend.set(self.key, self._serialize(), ttl=self.snapshot_ttl)
            return True
        except PydanticSerializationError as e:
            logger.error(f"Request queue '{self.key}' is not serializable: {e}")
            return False
        except (BackendConnectionError, BackendOperationError) as e:
            logger.warning(f"Failed to persist request queue '{self.key}': {e}")
            return False

    async def restore(self) -> list[QueueRecord]:
        """
        Repopulate the in-memory queue from the stored snapshot.

        A snapshot that cannot be parsed is deleted and the queue starts
        empty. Store failures also leave the queue empty. Never raises.

        Returns:
            The restored records in service order
        """
        try:
            raw = await self._backend.get(self.key)
        except (BackendConnectionError, BackendOperationError) as e:
            logger.error(f"Error loading request queue '{self.key}': {e}")
            self._records = []
            return []

        if not raw:
            self._records = []
            return []

        try:
            snapshot = QueueSnapshot.model_validate_json(raw)
            if snapshot.version != SNAPSHOT_VERSION:
                raise ValueError(f"unsupported snapshot version {snapshot.version}")
        except (ValidationError, ValueError) as e:
            logger.error(f"Error parsing request queue '{self.key}': {e}")
            self._records = []
            await self._discard_snapshot()
            return []

        self._records = list(snapshot.entries)
        self._sort()
        if self._records:
            self._next_sequence = max(r.sequence for r in self._records) + 1
        logger.info(f"Loaded {len(self._records)} requests from queue '{self.key}'")
        return self.records()

    async def _discard_snapshot(self) -> None:
        try:
            await self._backend.delete(self.key)
            logger.info(f"Cleared corrupted queue data at '{self.key}'")
        except (BackendConnectionError, BackendOperationError) as e:
            logger.warning(f"Failed to clear corrupted queue '{self.key}': {e}")


__all__ = ["RequestQueue"]
