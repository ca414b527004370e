"""A consumer loop that routes each message to a handler and commits it."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from kafkakit.message import Message

_log = logging.getLogger(__name__)

FIRST_OFFSET = -2
LAST_OFFSET = -1

Handler = Callable[[Message], None]
Router = Callable[[Message], Optional[Handler]]


class Reader(Protocol):
    """What the subscriber needs from a topic reader."""

    def fetch_message(self, stop: threading.Event) -> Message:
        """Block until a message arrives; raise if fetching fails or ``stop`` is set."""

    def commit_messages(self, *messages: Message) -> None:
        """Commit the offsets of the given messages."""

    def close(self) -> None:
        """Release the reader's resources."""


@dataclass(frozen=True)
class ReaderConfig:
    """Settings for a topic reader."""

    brokers: tuple[str, ...]
    topic: str
    group_id: str
    min_bytes: int = 1_000
    max_bytes: int = 10_000_000
    max_wait: float = 0.5
    read_lag_interval: float = -1
    start_offset: int | None = None


def reader_config(brokers, topic: str, group_id: str) -> ReaderConfig:
    """Build the reader settings; without a group the reader starts at the first offset."""
    return ReaderConfig(
        brokers=tuple(brokers),
        topic=topic,
        group_id=group_id,
        start_offset=FIRST_OFFSET if group_id == "" else None,
    )


class Subscriber:
    """Reads messages, hands each to a routed handler and commits what was handled."""

    def __init__(self, reader: Reader) -> None:
        self._reader = reader

    def close(self) -> None:
        """Close the reader, logging rather than raising on failure."""
        try:
            self._reader.close()
        except Exception as exc:
            _log.error("failed to close reader: %s", exc)

    def _commit(self, message: Message, context: str) -> None:
        try:
            self._reader.commit_messages(message)
        except Exception as exc:
            _log.error("%s: %s", context, exc)

    def consume(self, router: Router, stop: threading.Event) -> None:
        """Process messages until ``stop`` is set, then close the reader.

        Messages with no handler are committed and skipped. A handler that
        raises leaves its message uncommitted.
        """
        try:
            while not stop.is_set():
                try:
                    message = self._reader.fetch_message(stop)
                except Exception as exc:
                    if stop.is_set():
                        return
                    _log.error("fetch error: %s", exc)
                    continue

                handler = router(message)
                if handler is None:
                    self._commit(message, "commit skipped message error")
                    continue

                try:
                    handler(message)
                except Exception as exc:
                    _log.error("handler error: %s", exc)
                    continue

                self._commit(message, "commit error")
        finally:
            self.close()