import uuid
from datetime import datetime, timezone

import pytest

from kafkakit.pgdb.inbox_queries import InboxQueries
from kafkakit.pgdb.models import InboxEventStatus, NoRowsError

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


def record(event_id, seq=1, status="pending", attempts=0, next_retry_at=None, processed_at=None):
    return (
        event_id, seq, "orders", "order-1", "order.created", 1, "billing",
        b'{"a": 1}', status, attempts, CREATED, next_retry_at, processed_at,
    )


def test_create_inbox_event_passes_params_in_order_and_returns_row():
    event_id = uuid.uuid4()
    retry = datetime(2024, 5, 1, tzinfo=timezone.utc)
    conn = FakeConnection([record(str(event_id), next_retry_at=retry)])
    row = InboxQueries(conn).create_inbox_event(
        event_id, "orders", "order-1", "order.created", 1, "billing",
        b'{"a": 1}', InboxEventStatus.PENDING, 0, retry, None,
    )
    query, params = conn.calls[0]
    assert "ON CONFLICT (id) DO NOTHING" in query
    assert params == (
        str(event_id), "orders", "order-1", "order.created", 1, "billing",
        '{"a": 1}', "pending", 0, retry, None,
    )
    assert row.id == event_id
    assert row.status is InboxEventStatus.PENDING
    assert row.next_retry_at == retry
    assert row.payload == b'{"a": 1}'
    assert conn.closed == 1


def test_create_inbox_event_conflict_raises_no_rows():
    conn = FakeConnection([])
    with pytest.raises(NoRowsError):
        InboxQueries(conn).create_inbox_event(
            uuid.uuid4(), "t", "k", "x", 1, "p", b"{}", "pending",
        )


def test_create_rejects_unknown_status():
    conn = FakeConnection([])
    with pytest.raises(ValueError):
        InboxQueries(conn).create_inbox_event(
            uuid.uuid4(), "t", "k", "x", 1, "p", b"{}", "bogus",
        )
    assert conn.calls == []


def test_get_inbox_event_by_id():
    event_id = uuid.uuid4()
    conn = FakeConnection([record(event_id, status="processed")])
    row = InboxQueries(conn).get_inbox_event_by_id(event_id)
    assert conn.calls[0][1] == (str(event_id),)
    assert row.id == event_id
    assert row.status is InboxEventStatus.PROCESSED


def test_get_inbox_event_by_id_missing():
    with pytest.raises(NoRowsError):
        InboxQueries(FakeConnection()).get_inbox_event_by_id(uuid.uuid4())


def test_get_pending_inbox_events_keeps_order_and_limit():
    ids = [uuid.uuid4() for _ in range(3)]
    conn = FakeConnection([record(i, seq=n, status="processing") for n, i in enumerate(ids, 1)])
    rows = InboxQueries(conn).get_pending_inbox_events(10)
    query, params = conn.calls[0]
    assert params == (10,)
    assert "FOR UPDATE SKIP LOCKED" in query
    assert [r.id for r in rows] == ids
    assert [r.seq for r in rows] == [1, 2, 3]
    assert all(r.status is InboxEventStatus.PROCESSING for r in rows)


def test_get_pending_inbox_events_empty():
    assert InboxQueries(FakeConnection()).get_pending_inbox_events(5) == []


def test_mark_inbox_events_as_pending_params():
    ids = [uuid.uuid4(), uuid.uuid4()]
    retry = datetime(2024, 6, 1, tzinfo=timezone.utc)
    conn = FakeConnection([record(i, attempts=1, next_retry_at=retry) for i in ids])
    rows = InboxQueries(conn).mark_inbox_events_as_pending(ids, retry)
    query, params = conn.calls[0]
    assert "attempts = attempts + 1" in query
    assert params == (retry, [str(i) for i in ids])
    assert [r.attempts for r in rows] == [1, 1]


def test_mark_inbox_events_as_failed():
    event_id = uuid.uuid4()
    conn = FakeConnection([record(event_id, status="failed")])
    rows = InboxQueries(conn).mark_inbox_events_as_failed([event_id])
    query, params = conn.calls[0]
    assert "status = 'failed'" in query
    assert params == ([str(event_id)],)
    assert rows[0].status is InboxEventStatus.FAILED


def test_mark_inbox_events_as_processed():
    event_id = uuid.uuid4()
    done = datetime(2024, 7, 1, tzinfo=timezone.utc)
    conn = FakeConnection([record(event_id, status="processed", processed_at=done)])
    rows = InboxQueries(conn).mark_inbox_events_as_processed([event_id])
    assert "status = 'processed'" in conn.calls[0][0]
    assert rows[0].processed_at == done


def test_update_inbox_event_status():
    event_id = uuid.uuid4()
    conn = FakeConnection([record(event_id, status="processed")])
    row = InboxQueries(conn).update_inbox_event_status(event_id, "processed")
    assert conn.calls[0][1] == ("processed", str(event_id))
    assert row.status is InboxEventStatus.PROCESSED


def test_update_inbox_event_status_rejects_unknown():
    with pytest.raises(ValueError):
        InboxQueries(FakeConnection()).update_inbox_event_status(uuid.uuid4(), "sent")


def test_with_tx_uses_transaction():
    event_id = uuid.uuid4()
    conn = FakeConnection()
    tx = FakeConnection([record(event_id)])
    row = InboxQueries(conn).with_tx(tx).get_inbox_event_by_id(event_id)
    assert row.id == event_id
    assert conn.calls == []
    assert len(tx.calls) == 1