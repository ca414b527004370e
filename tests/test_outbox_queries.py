import uuid
from datetime import datetime, timezone

import pytest

from kafkakit.pgdb.models import NoRowsError, OutboxEventStatus
from kafkakit.pgdb.outbox_queries import OutboxQueries

CREATED = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn

    def execute(self, query, params):
        self.conn.calls.append((query, params))

    def fetchone(self):
        return self.conn.rows[0] if self.conn.rows else None

    def fetchall(self):
        return list(self.conn.rows)

    def close(self):
        self.conn.closed += 1


class FakeConnection:
    def __init__(self, rows=()):
        self.rows = list(rows)
        self.calls = []
        self.closed = 0

    def cursor(self):
        return FakeCursor(self)


def record(event_id, seq=1, status="pending", attempts=0, next_retry_at=None, sent_at=None):
    return (
        event_id, seq, "orders", "order-1", "order.created", 2, "billing",
        b'{"b": 2}', status, attempts, CREATED, next_retry_at, sent_at,
    )


def test_create_outbox_event_uses_its_column_order():
    event_id = uuid.uuid4()
    retry = datetime(2024, 5, 1, tzinfo=timezone.utc)
    conn = FakeConnection([record(event_id, next_retry_at=retry)])
    row = OutboxQueries(conn).create_outbox_event(
        event_id, "orders", "order.created", 2, "order-1", "billing",
        b'{"b": 2}', OutboxEventStatus.PENDING, 0, retry, None,
    )
    query, params = conn.calls[0]
    assert "ON CONFLICT (id) DO NOTHING" in query
    assert params == (
        str(event_id), "orders", "order.created", 2, "order-1", "billing",
        '{"b": 2}', "pending", 0, retry, None,
    )
    assert row.id == event_id
    assert row.key == "order-1"
    assert row.type == "order.created"
    assert row.status is OutboxEventStatus.PENDING
    assert conn.closed == 1


def test_create_outbox_event_conflict_raises_no_rows():
    with pytest.raises(NoRowsError):
        OutboxQueries(FakeConnection()).create_outbox_event(
            uuid.uuid4(), "t", "x", 1, "k", "p", b"{}", "pending",
        )


def test_create_outbox_event_rejects_inbox_only_status():
    conn = FakeConnection()
    with pytest.raises(ValueError):
        OutboxQueries(conn).create_outbox_event(
            uuid.uuid4(), "t", "x", 1, "k", "p", b"{}", "processed",
        )
    assert conn.calls == []


def test_get_outbox_event_by_id():
    event_id = uuid.uuid4()
    conn = FakeConnection([record(str(event_id), status="sent")])
    row = OutboxQueries(conn).get_outbox_event_by_id(str(event_id))
    assert conn.calls[0][1] == (str(event_id),)
    assert row.id == event_id
    assert row.status is OutboxEventStatus.SENT


def test_get_outbox_event_by_id_missing():
    with pytest.raises(NoRowsError):
        OutboxQueries(FakeConnection()).get_outbox_event_by_id(uuid.uuid4())


def test_get_outbox_event_by_id_rejects_bad_id():
    with pytest.raises(ValueError):
        OutboxQueries(FakeConnection()).get_outbox_event_by_id("not-a-uuid")


def test_get_pending_outbox_events():
    ids = [uuid.uuid4() for _ in range(2)]
    conn = FakeConnection([record(i, seq=n, status="processing") for n, i in enumerate(ids, 1)])
    rows = OutboxQueries(conn).get_pending_outbox_events(50)
    query, params = conn.calls[0]
    assert params == (50,)
    assert "FOR UPDATE SKIP LOCKED" in query
    assert [r.id for r in rows] == ids
    assert all(r.status is OutboxEventStatus.PROCESSING for r in rows)


def test_get_pending_outbox_events_empty():
    assert OutboxQueries(FakeConnection()).get_pending_outbox_events(1) == []


def test_mark_outbox_events_as_failed():
    event_id = uuid.uuid4()
    conn = FakeConnection([record(event_id, status="failed")])
    rows = OutboxQueries(conn).mark_outbox_events_as_failed([event_id])
    query, params = conn.calls[0]
    assert "status = 'failed'" in query
    assert params == ([str(event_id)],)
    assert rows[0].status is OutboxEventStatus.FAILED


def test_mark_outbox_events_as_pending():
    ids = [uuid.uuid4()]
    retry = datetime(2024, 6, 1, tzinfo=timezone.utc)
    conn = FakeConnection([record(ids[0], attempts=3, next_retry_at=retry)])
    rows = OutboxQueries(conn).mark_outbox_events_as_pending(ids, retry)
    query, params = conn.calls[0]
    assert "attempts = attempts + 1" in query
    assert params == (retry, [str(ids[0])])
    assert rows[0].next_retry_at == retry
    assert rows[0].attempts == 3


def test_mark_outbox_events_as_sent():
    event_id = uuid.uuid4()
    sent = datetime(2024, 7, 1, tzinfo=timezone.utc)
    conn = FakeConnection([record(event_id, status="sent", sent_at=sent)])
    rows = OutboxQueries(conn).mark_outbox_events_as_sent([event_id])
    assert "status = 'sent'" in conn.calls[0][0]
    assert rows[0].sent_at == sent
    assert rows[0].status is OutboxEventStatus.SENT


def test_with_tx_uses_transaction():
    event_id = uuid.uuid4()
    conn = FakeConnection()
    tx = FakeConnection([record(event_id, status="sent")])
    rows = OutboxQueries(conn).with_tx(tx).mark_outbox_events_as_sent([event_id])
    assert [r.id for r in rows] == [event_id]
    assert conn.calls == []
    assert len(tx.calls) == 1