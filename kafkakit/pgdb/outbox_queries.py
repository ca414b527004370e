"""Queries on the outbox_events table."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Iterable

from kafkakit.pgdb.models import (
    OutboxEventRow,
    OutboxEventStatus,
    fetch_all,
    fetch_one,
)

_COLUMNS = (
    "id, seq, topic, key, type, version, producer, payload, status, "
    "attempts, created_at, next_retry_at, sent_at"
)

CREATE_OUTBOX_EVENT = f"""
INSERT INTO outbox_events (
    id, topic, type, version, key, producer,
    payload, status, attempts, next_retry_at, sent_at
) VALUES (
    %s, %s, %s, %s, %s, %s,
    %s, %s, %s, %s, %s
)
ON CONFLICT (id) DO NOTHING
RETURNING {_COLUMNS}
"""

GET_OUTBOX_EVENT_BY_ID = f"""
SELECT {_COLUMNS}
FROM outbox_events
WHERE id = %s
"""

GET_PENDING_OUTBOX_EVENTS = f"""
WITH picked AS (
    SELECT id
    FROM outbox_events
    WHERE status = 'pending'
      AND (next_retry_at IS NULL OR next_retry_at <= now() AT TIME ZONE 'UTC')
    ORDER BY seq ASC
    LIMIT %s
    FOR UPDATE SKIP LOCKED
),
updated AS (
    UPDATE outbox_events o
    SET status = 'processing'
    FROM picked p
    WHERE o.id = p.id
    RETURNING o.id, o.seq, o.topic, o.key, o.type, o.version, o.producer,
              o.payload, o.status, o.attempts, o.created_at, o.next_retry_at,
              o.sent_at
)
SELECT {_COLUMNS}
FROM updated
ORDER BY seq ASC
"""

MARK_OUTBOX_EVENTS_AS_FAILED = f"""
UPDATE outbox_events
SET
    status = 'failed',
    next_retry_at = NULL
WHERE id = ANY(%s::uuid[])
RETURNING {_COLUMNS}
"""

MARK_OUTBOX_EVENTS_AS_PENDING = f"""
UPDATE outbox_events
SET
    status = 'pending',
    attempts = attempts + 1,
    next_retry_at = %s::timestamptz
WHERE id = ANY(%s::uuid[])
RETURNING {_COLUMNS}
"""

MARK_OUTBOX_EVENTS_AS_SENT = f"""
UPDATE outbox_events
SET
    status = 'sent',
    sent_at = now() AT TIME ZONE 'UTC'
WHERE id = ANY(%s::uuid[])
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


class OutboxQueries:
    """Runs the outbox statements on a DB-API connection or transaction."""

    def __init__(self, db) -> None:
        self._db = db

    def with_tx(self, tx) -> "OutboxQueries":
        """Return queries bound to ``tx`` instead of the current connection."""
        return OutboxQueries(tx)

    def _one(self, query: str, params: tuple) -> OutboxEventRow:
        return OutboxEventRow.from_record(fetch_one(self._db, query, params))

    def _many(self, query: str, params: tuple) -> list[OutboxEventRow]:
        return [OutboxEventRow.from_record(r) for r in fetch_all(self._db, query, params)]

    def create_outbox_event(
        self,
        event_id,
        topic: str,
        type_: str,
        version: int,
        key: str,
        producer: str,
        payload,
        status,
        attempts: int = 0,
        next_retry_at: datetime | None = None,
        sent_at: datetime | None = None,
    ) -> OutboxEventRow:
        """Insert an event; raises NoRowsError if one with that id exists."""
        params = (
            _uuid_param(event_id),
            topic,
            type_,
            int(version),
            key,
            producer,
            _payload_param(payload),
            OutboxEventStatus(status).value,
            int(attempts),
            next_retry_at,
            sent_at,
        )
        return self._one(CREATE_OUTBOX_EVENT, params)

    def get_outbox_event_by_id(self, event_id) -> OutboxEventRow:
        """Return the event with ``event_id``; raises NoRowsError if absent."""
        return self._one(GET_OUTBOX_EVENT_BY_ID, (_uuid_param(event_id),))

    def get_pending_outbox_events(self, limit: int) -> list[OutboxEventRow]:
        """Claim up to ``limit`` due pending events, marking them processing."""
        return self._many(GET_PENDING_OUTBOX_EVENTS, (int(limit),))

    def mark_outbox_events_as_failed(self, ids) -> list[OutboxEventRow]:
        """Mark events as failed and clear their retry time."""
        return self._many(MARK_OUTBOX_EVENTS_AS_FAILED, (_ids_param(ids),))

    def mark_outbox_events_as_pending(self, ids, next_retry_at: datetime) -> list[OutboxEventRow]:
        """Return events to pending, count an attempt and set the next retry time."""
        return self._many(MARK_OUTBOX_EVENTS_AS_PENDING, (next_retry_at, _ids_param(ids)))

    def mark_outbox_events_as_sent(self, ids) -> list[OutboxEventRow]:
        """Mark events as sent, stamping the send time."""
        return self._many(MARK_OUTBOX_EVENTS_AS_SENT, (_ids_param(ids),))