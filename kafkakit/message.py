"""Message and header types shared by producers, consumers and the event boxes."""

from __future__ import annotations

from dataclasses import dataclass, field

EVENT_ID = "event_id"
EVENT_TYPE = "event_type"
EVENT_VERSION = "event_version"
PRODUCER = "producer"
CONTENT_TYPE = "content_type"


@dataclass(frozen=True)
class Header:
    """A single message header: a text key and a raw byte value."""

    key: str
    value: bytes


@dataclass
class Message:
    """A message as read from or written to a topic."""

    topic: str = ""
    key: bytes = b""
    value: bytes = b""
    headers: list[Header] = field(default_factory=list)

    def headers_map(self) -> dict[str, bytes]:
        """Return the headers as a mapping; a repeated key keeps its last value."""
        return {h.key: h.value for h in self.headers}


def header_value(message: Message, key: str) -> str | None:
    """Return the text of the first header named ``key``, or None if absent."""
    return next(
        (h.value.decode("utf-8", errors="replace") for h in message.headers if h.key == key),
        None,
    )