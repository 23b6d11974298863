# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Queue types for the market-data gateway.

A pending upstream request is split in two:

* QueueRecord, the durable part (endpoint, options, priority, stable id).
  It is what the queue sorts and what the persisted snapshot contains.
* The continuation (an asyncio.Future) that the waiting caller awaits. It
  lives only in the gateway's in-memory table keyed by request_id and is
  never serialized.
"""

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_core import PydanticSerializationError, to_json

SNAPSHOT_VERSION = 1


def new_request_id() -> str:
    """Generate a stable identifier for a queue record."""
    return uuid.uuid4().hex


class QueueRecord(BaseModel):
    """
    Durable description of one pending upstream request.

    Attributes:
        request_id: Key into the gateway's continuation table
        endpoint_path: Upstream route with query parameters, API key excluded
        request_options: Opaque request configuration (headers, params)
        priority: Higher is serviced first; +1 on every 429 bounce
        sequence: Arrival order for the stable tie-break; kept across requeues
        attempts: Number of 429 bounces so far
        enqueued_at: UTC timestamp of the first enqueue
    """

    request_id: str = Field(default_factory=new_request_id)
    endpoint_path: str
    request_options: dict[str, Any] | None = None
    priority: int = 1
    sequence: int = 0
    attempts: int = 0
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("endpoint_path")
    @classmethod
    def _validate_endpoint_path(cls, value: str) -> str:
        if not value or not value.startswith("/"):
            raise ValueError("endpoint_path must be an absolute path")
        return value

    @field_validator("request_options")
    @classmethod
    def _validate_request_options(
        cls, value: dict[str, Any] | None
    ) -> dict[str, Any] | None:
        # Options are part of the persisted snapshot
        if value is not None:
            try:
                to_json(value)
            except PydanticSerializationError as e:
                raise ValueError(f"request_options must be JSON-serializable: {e}") from e
        return value

    @property
    def sort_key(self) -> tuple[int, int]:
        """Key for ascending sorts that yields highest priority, oldest first."""
        return (-self.priority, self.sequence)

    def bumped(self) -> "QueueRecord":
        """Copy of this record after a rate-limit rejection."""
        return self.model_copy(
            update={"priority": self.priority + 1, "attempts": self.attempts + 1}
        )


class QueueSnapshot(BaseModel):
    """Serialized form of the whole queue as stored in the key/value store."""

    version: int = SNAPSHOT_VERSION
    saved_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    entries: list[QueueRecord] = Field(default_factory=list)


__all__ = [
    "SNAPSHOT_VERSION",
    "QueueRecord",
    "QueueSnapshot",
    "new_request_id",
]
