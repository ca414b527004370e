"""Transactional inbox and outbox storage for events on a DB-API connection."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Iterator, TypeVar

from kafkakit.events import (
    InboxEvent,
    OutboxEvent,
    inbox_event_from_row,
    outbox_event_from_row,
    parse_event_headers,
)
from kafkakit.message import Message
from kafkakit.pgdb.inbox_queries import InboxQueries
from kafkakit.pgdb.models import InboxEventStatus, NoRowsError, OutboxEventStatus
from kafkakit.pgdb.outbox_queries import OutboxQueries

_T = TypeVar("_T")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_timedelta(delay) -> timedelta:
    if isinstance(delay, timedelta):
        return delay
    return timedelta(seconds=delay)


class Box:
    """Stores inbox and outbox events.

    The connection must not be in autocommit mode. Outside ``transaction()``
    each operation is committed on its own; inside, they commit together.
    A Box is not safe to share between threads.
    """

    def __init__(self, db) -> None:
        self._db = db
        self._depth = 0

    @contextmanager
    def transaction(self) -> Iterator["Box"]:
        """Run the enclosed operations in one transaction.

        Commits on normal exit and rolls back if an exception escapes.
        A nested block joins the outer transaction.
        """
        if self._depth:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        self._depth = 1
        try:
            yield self
        except BaseException:
            self._db.rollback()
            raise
        else:
            self._db.commit()
        finally:
            self._depth = 0

    def _run(self, op: Callable[[], _T]) -> _T:
        try:
            result = op()
        except BaseException:
            if not self._depth:
                self._db.rollback()
            raise
        if not self._depth:
            self._db.commit()
        return result

    @property
    def _inbox(self) -> InboxQueries:
        return InboxQueries(self._db)

    @property
    def _outbox(self) -> OutboxQueries:
        return OutboxQueries(self._db)

    # inbox

    def create_inbox_event(self, message: Message) -> InboxEvent:
        """Store a received message as a pending inbox event.

        Raises EventHeaderError for missing or bad headers and NoRowsError
        if an event with the same id is already stored.
        """
        headers = parse_event_headers(message)
        row = self._run(lambda: self._inbox.create_inbox_event(
            headers.event_id,
            message.topic,
            bytes(message.key).decode("utf-8", errors="replace"),
            headers.event_type,
            headers.event_version,
            headers.producer,
            message.value,
            InboxEventStatus.PENDING,
            0,
            _now(),
            None,
        ))
        return inbox_event_from_row(row)

    def get_inbox_event_by_id(self, event_id) -> InboxEvent | None:
        """Return the inbox event with ``event_id``, or None if there is none."""
        def op():
            try:
                return self._inbox.get_inbox_event_by_id(event_id)
            except NoRowsError:
                return None

        row = self._run(op)
        return None if row is None else inbox_event_from_row(row)

    def get_pending_inbox_events(self, limit: int) -> list[InboxEvent]:
        """Claim up to ``limit`` due pending inbox events, oldest first."""
        rows = self._run(lambda: self._inbox.get_pending_inbox_events(limit))
        return [inbox_event_from_row(r) for r in rows]

    def mark_inbox_events_as_processed(self, ids: Iterable) -> list[InboxEvent]:
        """Mark inbox events as processed."""
        ids = list(ids)
        rows = self._run(lambda: self._inbox.mark_inbox_events_as_processed(ids))
        return [inbox_event_from_row(r) for r in rows]

    def mark_inbox_events_as_failed(self, ids: Iterable) -> list[InboxEvent]:
        """Mark inbox events as failed."""
        ids = list(ids)
        rows = self._run(lambda: self._inbox.mark_inbox_events_as_failed(ids))
        return [inbox_event_from_row(r) for r in rows]

    def mark_inbox_events_as_pending(self, ids: Iterable, delay) -> list[InboxEvent]:
        """Return inbox events to pending, retrying after ``delay`` (timedelta or seconds)."""
        ids = list(ids)
        next_retry_at = _now() + _as_timedelta(delay)
        rows = self._run(lambda: self._inbox.mark_inbox_events_as_pending(ids, next_retry_at))
        return [inbox_event_from_row(r) for r in rows]

    def update_inbox_event_status(self, event_id, status) -> InboxEvent:
        """Set the status of one inbox event; raises NoRowsError if absent."""
        row = self._run(lambda: self._inbox.update_inbox_event_status(event_id, status))
        return inbox_event_from_row(row)

    # outbox

    def create_outbox_event(self, message: Message) -> OutboxEvent:
        """Store a message to be sent as a pending outbox event.

        Raises EventHeaderError for missing or bad headers and NoRowsError
        if an event with the same id is already stored.
        """
        headers = parse_event_headers(message)
        row = self._run(lambda: self._outbox.create_outbox_event(
            headers.event_id,
            message.topic,
            headers.event_type,
            headers.event_version,
            bytes(message.key).decode("utf-8", errors="replace"),
            headers.producer,
            message.value,
            OutboxEventStatus.PENDING,
            0,
            _now(),
            None,
        ))
        return outbox_event_from_row(row)

    def get_outbox_event_by_id(self, event_id) -> OutboxEvent:
        """Return the outbox event with ``event_id``; raises NoRowsError if absent."""
        row = self._run(lambda: self._outbox.get_outbox_event_by_id(event_id))
        return outbox_event_from_row(row)

    def get_pending_outbox_events(self, limit: int) -> list[OutboxEvent]:
        """Claim up to ``limit`` due pending outbox events, oldest first."""
        rows = self._run(lambda: self._outbox.get_pending_outbox_events(limit))
        return [outbox_event_from_row(r) for r in rows]

    def mark_outbox_events_sent(self, ids: Iterable) -> list[OutboxEvent]:
        """Mark outbox events as sent."""
        ids = list(ids)
        rows = self._run(lambda: self._outbox.mark_outbox_events_as_sent(ids))
        return [outbox_event_from_row(r) for r in rows]

    def mark_outbox_events_as_failed(self, ids: Iterable) -> list[OutboxEvent]:
        """Mark outbox events as failed."""
        ids = list(ids)
        rows = self._run(lambda: self._outbox.mark_outbox_events_as_failed(ids))
        return [outbox_event_from_row(r) for r in rows]

    def mark_outbox_events_as_pending(self, ids: Iterable, delay) -> list[OutboxEvent]:
        """Return outbox events to pending, retrying after ``delay`` (timedelta or seconds)."""
        ids = list(ids)
        next_retry_at = _now() + _as_timedelta(delay)
        rows = self._run(lambda: self._outbox.mark_outbox_events_as_pending(ids, next_retry_at))
        return [outbox_event_from_row(r) for r in rows]