"""Row types for the inbox and outbox tables and helpers to run queries."""

from __future__ import annotations

import json
import uuid
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Sequence


class NoRowsError(LookupError):
    """Raised when a query expected to return a row returned none."""


class InboxEventStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class OutboxEventStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


def _scan_status(enum_cls, src):
    if src is None:
        return None
    if isinstance(src, enum_cls):
        return src
    if isinstance(src, (bytes, bytearray, memoryview)):
        return enum_cls(bytes(src).decode("utf-8"))
    if isinstance(src, str):
        return enum_cls(src)
    raise TypeError(f"unsupported scan type for {enum_cls.__name__}: {type(src).__name__}")


def scan_inbox_event_status(src) -> InboxEventStatus | None:
    """Convert a database value to an inbox status; NULL gives None."""
    return _scan_status(InboxEventStatus, src)


def scan_outbox_event_status(src) -> OutboxEventStatus | None:
    """Convert a database value to an outbox status; NULL gives None."""
    return _scan_status(OutboxEventStatus, src)


def _to_uuid(value) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        if len(raw) == 16:
            return uuid.UUID(bytes=raw)
        return uuid.UUID(raw.decode("ascii"))
    return uuid.UUID(str(value))


def _to_payload(value) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode("utf-8")
    return json.dumps(value).encode("utf-8")


_COLUMNS = 13


def _unpack(record: Sequence[Any]) -> tuple:
    values = tuple(record)
    if len(values) != _COLUMNS:
        raise ValueError(f"expected {_COLUMNS} columns, got {len(values)}")
    return values


@dataclass(frozen=True)
class InboxEventRow:
    """A row of the inbox_events table."""

    id: uuid.UUID
    seq: int
    topic: str
    key: str
    type: str
    version: int
    producer: str
    payload: bytes
    status: InboxEventStatus
    attempts: int
    created_at: datetime
    next_retry_at: datetime | None
    processed_at: datetime | None

    @classmethod
    def from_record(cls, record: Sequence[Any]) -> "InboxEventRow":
        """Build a row from the table's columns in their selected order."""
        (id_, seq, topic, key, type_, version, producer, payload,
         status, attempts, created_at, next_retry_at, processed_at) = _unpack(record)
        return cls(
            id=_to_uuid(id_),
            seq=int(seq),
            topic=topic,
            key=key,
            type=type_,
            version=int(version),
            producer=producer,
            payload=_to_payload(payload),
            status=scan_inbox_event_status(status),
            attempts=int(attempts),
            created_at=created_at,
            next_retry_at=next_retry_at,
            processed_at=processed_at,
        )


@dataclass(frozen=True)
class OutboxEventRow:
    """A row of the outbox_events table."""

    id: uuid.UUID
    seq: int
    topic: str
    key: str
    type: str
    version: int
    producer: str
    payload: bytes
    status: OutboxEventStatus
    attempts: int
    created_at: datetime
    next_retry_at: datetime | None
    sent_at: datetime | None

    @classmethod
    def from_record(cls, record: Sequence[Any]) -> "OutboxEventRow":
        """Build a row from the table's columns in their selected order."""
        (id_, seq, topic, key, type_, version, producer, payload,
         status, attempts, created_at, next_retry_at, sent_at) = _unpack(record)
        return cls(
            id=_to_uuid(id_),
            seq=int(seq),
            topic=topic,
            key=key,
            type=type_,
            version=int(version),
            producer=producer,
            payload=_to_payload(payload),
            status=scan_outbox_event_status(status),
            attempts=int(attempts),
            created_at=created_at,
            next_retry_at=next_retry_at,
            sent_at=sent_at,
        )


def fetch_one(db, query: str, params: Sequence[Any] = ()) -> tuple:
    """Run ``query`` on a DB-API connection and return its first row.

    Raises NoRowsError when the query returns nothing.
    """
    with closing(db.cursor()) as cursor:
        cursor.execute(query, tuple(params))
        row = cursor.fetchone()
    if row is None:
        raise NoRowsError("no rows in result set")
    return tuple(row)


def fetch_all(db, query: str, params: Sequence[Any] = ()) -> list[tuple]:
    """Run ``query`` on a DB-API connection and return every row."""
    with closing(db.cursor()) as cursor:
        cursor.execute(query, tuple(params))
        return [tuple(row) for row in cursor.fetchall()]