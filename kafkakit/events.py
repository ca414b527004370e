"""Inbox and outbox events and their conversion to and from messages."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from datetime import datetime

from kafkakit.message import (
    CONTENT_TYPE,
    EVENT_ID,
    EVENT_TYPE,
    EVENT_VERSION,
    PRODUCER,
    Header,
    Message,
)
from kafkakit.pgdb.models import InboxEventRow, OutboxEventRow

JSON_CONTENT_TYPE = "application/json"

_NIL_UUID = uuid.UUID(int=0)
_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1
_DECIMAL = re.compile(r"[+-]?[0-9]+")


class EventHeaderError(ValueError):
    """Raised when a message lacks an event header or carries a malformed one."""


@dataclass(frozen=True)
class EventHeaders:
    """The event metadata carried in a message's headers."""

    event_id: uuid.UUID
    event_type: str
    event_version: int
    producer: str


def _text(value: bytes) -> str:
    return bytes(value).decode("utf-8", errors="replace")


def _require(headers: dict[str, bytes], name: str) -> bytes:
    try:
        return headers[name]
    except KeyError:
        raise EventHeaderError(f"missing {name} header") from None


def _parse_event_id(raw: bytes) -> uuid.UUID:
    try:
        return uuid.UUID(bytes(raw).decode("ascii"))
    except (ValueError, UnicodeDecodeError):
        raise EventHeaderError(f"invalid {EVENT_ID} header") from None


def _parse_version(raw: bytes) -> int:
    text = _text(raw)
    if not _DECIMAL.fullmatch(text):
        raise EventHeaderError(f"invalid {EVENT_VERSION} header")
    version = int(text)
    if not _INT32_MIN <= version <= _INT32_MAX:
        raise EventHeaderError(f"invalid {EVENT_VERSION} header")
    return version


def parse_event_headers(message: Message) -> EventHeaders:
    """Read the event id, type, version and producer from a message's headers."""
    headers = message.headers_map()
    event_id = _parse_event_id(_require(headers, EVENT_ID))
    event_type = _text(_require(headers, EVENT_TYPE))
    event_version = _parse_version(_require(headers, EVENT_VERSION))
    producer = _text(_require(headers, PRODUCER))
    return EventHeaders(
        event_id=event_id,
        event_type=event_type,
        event_version=event_version,
        producer=producer,
    )


def _build_message(
    topic: str, key: str, payload: bytes, event_id: uuid.UUID, type_: str, version: int, producer: str
) -> Message:
    return Message(
        topic=topic,
        key=key.encode("utf-8"),
        value=bytes(payload),
        headers=[
            Header(EVENT_ID, str(event_id).encode("ascii")),
            Header(EVENT_TYPE, type_.encode("utf-8")),
            Header(EVENT_VERSION, str(version).encode("ascii")),
            Header(PRODUCER, producer.encode("utf-8")),
            Header(CONTENT_TYPE, JSON_CONTENT_TYPE.encode("ascii")),
        ],
    )


@dataclass
class InboxEvent:
    """An event received from a topic and stored for processing."""

    id: uuid.UUID = _NIL_UUID
    seq: int = 0
    topic: str = ""
    key: str = ""
    type: str = ""
    version: int = 0
    producer: str = ""
    payload: bytes = b""
    status: str = ""
    attempts: int = 0
    created_at: datetime | None = None
    next_retry_at: datetime | None = None
    processed_at: datetime | None = None

    def to_message(self) -> Message:
        """Build the message that carries this event."""
        return _build_message(
            self.topic, self.key, self.payload, self.id, self.type, self.version, self.producer
        )

    def is_nil(self) -> bool:
        """True when the event has the all-zero id."""
        return self.id == _NIL_UUID


@dataclass
class OutboxEvent:
    """An event stored for sending to a topic."""

    id: uuid.UUID = _NIL_UUID
    seq: int = 0
    topic: str = ""
    key: str = ""
    type: str = ""
    version: int = 0
    producer: str = ""
    payload: bytes = b""
    status: str = ""
    attempts: int = 0
    created_at: datetime | None = None
    next_retry_at: datetime | None = None
    sent_at: datetime | None = None

    def to_message(self) -> Message:
        """Build the message that carries this event."""
        return _build_message(
            self.topic, self.key, self.payload, self.id, self.type, self.version, self.producer
        )

    def is_nil(self) -> bool:
        """True when the event has the all-zero id."""
        return self.id == _NIL_UUID


def _status_text(status) -> str:
    return "" if status is None else status.value


def inbox_event_from_row(row: InboxEventRow) -> InboxEvent:
    """Convert an inbox table row to an event."""
    return InboxEvent(
        id=row.id,
        seq=row.seq,
        topic=row.topic,
        key=row.key,
        type=row.type,
        version=row.version,
        producer=row.producer,
        payload=row.payload,
        status=_status_text(row.status),
        attempts=row.attempts,
        created_at=row.created_at,
        next_retry_at=row.next_retry_at,
        processed_at=row.processed_at,
    )


def outbox_event_from_row(row: OutboxEventRow) -> OutboxEvent:
    """Convert an outbox table row to an event."""
    return OutboxEvent(
        id=row.id,
        seq=row.seq,
        topic=row.topic,
        key=row.key,
        type=row.type,
        version=row.version,
        producer=row.producer,
        payload=row.payload,
        status=_status_text(row.status),
        attempts=row.attempts,
        created_at=row.created_at,
        next_retry_at=row.next_retry_at,
        sent_at=row.sent_at,
    )