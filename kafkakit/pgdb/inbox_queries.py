"""Queries on the inbox_events table."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Iterable

from kafkakit.pgdb.models import (
    InboxEventRow,
    InboxEventStatus,
    fetch_all,
    fetch_one,
)

_COLUMNS = (
    "id, seq, topic, key, type, version, producer, payload, status, "
    "attempts, created_at, next_retry_at, processed_at"
)

CREATE_INBOX_EVENT = f"""
INSERT INTO inbox_events (
    id, topic, key, type, version, producer,
    payload, status, attempts, next_retry_at, processed_at
) VALUES (
    %s, %s, %s, %s, %s, %s,
    %s, %s, %s, %s, %s
)
ON CONFLICT (id) DO NOTHING
RETURNING {_COLUMNS}
"""

GET_INBOX_EVENT_BY_ID = f"""
SELECT {_COLUMNS}
FROM inbox_events
WHERE id = %s
"""

GET_PENDING_INBOX_EVENTS = f"""
WITH picked AS (
    SELECT id
    FROM inbox_events
    WHERE status = 'pending'
      AND (next_retry_at IS NULL OR next_retry_at <= now() AT TIME ZONE 'UTC')
    ORDER BY seq ASC
    LIMIT %s
    FOR UPDATE SKIP LOCKED
),
updated AS (
    UPDATE inbox_events i
    SET status = 'processing'
    FROM picked p
    WHERE i.id = p.id
    RETURNING i.id, i.seq, i.topic, i.key, i.type, i.version, i.producer,
              i.payload, i.status, i.attempts, i.created_at, i.next_retry_at,
              i.processed_at
)
SELECT {_COLUMNS}
FROM updated
ORDER BY seq ASC
"""

MARK_INBOX_EVENTS_AS_PENDING = f"""
UPDATE inbox_events
SET
    status = 'pending',
    attempts = attempts + 1,
    next_retry_at = %s::timestamptz
WHERE id = ANY(%s::uuid[])
RETURNING {_COLUMNS}
"""

MARK_INBOX_EVENTS_AS_FAILED = f"""
UPDATE inbox_events
SET
    status = 'failed',
    next_retry_at = NULL
WHERE id = ANY(%s::uuid[])
RETURNING {_COLUMNS}
"""

MARK_INBOX_EVENTS_AS_PROCESSED = f"""
UPDATE inbox_events
SET
    status = 'processed',
    processed_at = now() AT TIME ZONE 'UTC'
WHERE id = ANY(%s::uuid[])
RETURNING {_COLUMNS}
"""

UPDATE_INBOX_EVENT_STATUS = f"""
UPDATE inbox_events
SET status = %s::inbox_event_status
WHERE id = %s::uuid
RETURNING {_COLUMNS}
"""


def _uuid_param(value: Any) -> str:
    if isinstance(value, uuid.UUID):
        return str(value)
    return str(uuid.UUID(str(value)))


def _ids_param(ids: Iterable[Any]) -> list[str]:
    return [_uuid_param(i) for i in ids]


def _payload_param(payload: Any) -> str:
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return bytes(payload).decode("utf-8")
    return str(payload)


class InboxQueries:
    """Runs the inbox statements on a DB-API connection or transaction."""

    def __init__(self, db) -> None:
        self._db = db

    def with_tx(self, tx) -> "InboxQueries":
        """Return queries bound to ``tx`` instead of the current connection."""
        return InboxQueries(tx)

    def _one(self, query: str, params: tuple) -> InboxEventRow:
        return InboxEventRow.from_record(fetch_one(self._db, query, params))

    def _many(self, query: str, params: tuple) -> list[InboxEventRow]:
        return [InboxEventRow.from_record(r) for r in fetch_all(self._db, query, params)]

    def create_inbox_event(
        self,
        event_id,
        topic: str,
        key: str,
        type_: str,
        version: int,
        producer: str,
        payload,
        status,
        attempts: int = 0,
        next_retry_at: datetime | None = None,
        processed_at: datetime | None = None,
    ) -> InboxEventRow:
        """Insert an event; raises NoRowsError if one with that id exists."""
        params = (
            _uuid_param(event_id),
            topic,
            key,
            type_,
            int(version),
            producer,
            _payload_param(payload),
            InboxEventStatus(status).value,
            int(attempts),
            next_retry_at,
            processed_at,
        )
        return self._one(CREATE_INBOX_EVENT, params)

    def get_inbox_event_by_id(self, event_id) -> InboxEventRow:
        """Return the event with ``event_id``; raises NoRowsError if absent."""
        return self._one(GET_INBOX_EVENT_BY_ID, (_uuid_param(event_id),))

    def get_pending_inbox_events(self, limit: int) -> list[InboxEventRow]:
        """Claim up to ``limit`` due pending events, marking them processing."""
        return self._many(GET_PENDING_INBOX_EVENTS, (int(limit),))

    def mark_inbox_events_as_pending(self, ids, next_retry_at: datetime) -> list[InboxEventRow]:
        """Return events to pending, count an attempt and set the next retry time."""
        return self._many(MARK_INBOX_EVENTS_AS_PENDING, (next_retry_at, _ids_param(ids)))

    def mark_inbox_events_as_failed(self, ids) -> list[InboxEventRow]:
        """Mark events as failed and clear their retry time."""
        return self._many(MARK_INBOX_EVENTS_AS_FAILED, (_ids_param(ids),))

    def mark_inbox_events_as_processed(self, ids) -> list[InboxEventRow]:
        """Mark events as processed, stamping the processing time."""
        return self._many(MARK_INBOX_EVENTS_AS_PROCESSED, (_ids_param(ids),))

    def update_inbox_event_status(self, event_id, status) -> InboxEventRow:
        """Set the status of one event; raises NoRowsError if absent."""
        params = (InboxEventStatus(status).value, _uuid_param(event_id))
        return self._one(UPDATE_INBOX_EVENT_STATUS, params)