# kafkakit

Building blocks for event messaging over Kafka-style brokers:

- **Inbox and outbox storage** on PostgreSQL (`kafkakit.box.Box`). Received messages are stored as inbox events, and events to publish are stored as outbox events. Each event is keyed by its `event_id`, and storing the same id a second time raises `NoRowsError`.
- **A consumer loop** (`kafkakit.subscriber.Subscriber`). It passes each fetched message to the handler that a router picks for it. A message is committed once its handler returns. A message that no route handles is also committed.
- **Standard event headers**: `event_id`, `event_type`, `event_version`, `producer` and `content_type`. The constants for these are in `kafkakit.message`.

The package has no required dependencies.

## Messages

```python
from kafkakit.message import Header, Message, header_value

msg = Message(
    topic="orders",
    key=b"order-1",
    value=b'{"total": 10}',
    headers=[
        Header("event_id", b"3f0c8a52-1b7e-4a53-9a0e-2f1d2c3b4a5d"),
        Header("event_type", b"order.created"),
        Header("event_version", b"1"),
        Header("producer", b"orders-service"),
    ],
)
header_value(msg, "event_type")   # "order.created"
header_value(msg, "missing")      # None
msg.headers_map()                 # dict; a repeated key keeps its last value
```

The functions in `kafkakit.events` convert between messages and events:

- `parse_event_headers(message)` reads the event headers and returns an `EventHeaders`. It raises `EventHeaderError` (a `ValueError`) in these cases:
  - a header is missing;
  - `event_id` is not a UUID;
  - `event_version` is not a decimal 32-bit integer.
- `InboxEvent.to_message()` and `OutboxEvent.to_message()` build the message for an event. It carries all five headers, and `content_type` is `application/json`.
- `is_nil()` is true when an event has the all-zero id.

## Inbox and outbox

`Box` works on a DB-API connection to PostgreSQL. The connection must not be in autocommit mode, and its driver must use the `%s` parameter style, as psycopg does. A `Box` is not safe to share between threads.

```python
from datetime import timedelta
from kafkakit.box import Box

box = Box(connection)

with box.transaction():
    event = box.create_outbox_event(msg)

pending = box.get_pending_outbox_events(100)    # claimed as "processing", oldest first
box.mark_outbox_events_sent([e.id for e in pending])
box.mark_outbox_events_as_pending([event.id], timedelta(seconds=30))
```

### Transactions

- Outside `transaction()`, each call commits on its own, or rolls back if it raises.
- Inside `transaction()`, the calls commit together when the block exits normally.
- If an exception escapes the block, the whole transaction is rolled back.
- A nested `transaction()` block joins the outer one.

### Inbox methods

- `create_inbox_event(message)`
- `get_inbox_event_by_id(event_id)`: returns `None` when no event has that id.
- `get_pending_inbox_events(limit)`
- `mark_inbox_events_as_processed(ids)`
- `mark_inbox_events_as_failed(ids)`
- `mark_inbox_events_as_pending(ids, delay)`
- `update_inbox_event_status(event_id, status)`: raises `NoRowsError` when no event has that id. It raises `ValueError` when the status is not an `InboxEventStatus` value.

### Outbox methods

- `create_outbox_event(message)`
- `get_outbox_event_by_id(event_id)`: raises `NoRowsError` when no event has that id.
- `get_pending_outbox_events(limit)`
- `mark_outbox_events_sent(ids)`
- `mark_outbox_events_as_failed(ids)`
- `mark_outbox_events_as_pending(ids, delay)`

### Status and retries

New events are stored with:

- status `pending`;
- zero attempts;
- a retry time of the moment they are created.

`get_pending_*` claims up to `limit` pending events whose retry time has passed. It uses `FOR UPDATE SKIP LOCKED` for this and sets each claimed event to `processing`.

`mark_*_as_pending` does three things:

- sets the status back to `pending`;
- adds one to `attempts`;
- sets the next retry time to now plus `delay`, which may be a `timedelta` or a number of seconds.

`mark_*_as_failed` clears the retry time.

The status values are listed in `InboxEventStatus` and `OutboxEventStatus` in `kafkakit.pgdb.models`.

The lower-level query classes are `kafkakit.pgdb.inbox_queries.InboxQueries` and `kafkakit.pgdb.outbox_queries.OutboxQueries`. They run the same statements and return `InboxEventRow` and `OutboxEventRow` objects.

## Consuming

```python
import threading
from kafkakit.subscriber import Subscriber

def handle(message):
    ...

def router(message):
    return handle if message.topic == "orders" else None

stop = threading.Event()
Subscriber(reader).consume(router, stop)
```

How `consume` treats each message:

- A message for which the router returns `None` is committed and skipped.
- A message whose handler raises is logged and left uncommitted.
- A failed fetch is logged, and the loop goes on.
- A failed commit is logged, and the loop goes on.

The loop returns once `stop` is set. It closes the reader when it returns.

`reader_config(brokers, topic, group_id)` builds a `ReaderConfig` with these settings:

| Setting | Value |
| --- | --- |
| minimum fetch | 1 kB |
| maximum fetch | 10 MB |
| maximum wait | 0.5 s |
| start offset | first offset, only when `group_id` is empty |

## What the package does not do

- **No broker client.** `Subscriber` needs a reader object that you supply. It must have `fetch_message(stop)`, `commit_messages(*messages)` and `close()`, as described by the `Reader` protocol. `ReaderConfig` only holds settings for such a reader.
- **No publishing.** The package does not send outbox events to a broker. Use `OutboxEvent.to_message()` with a producer of your choice.
- **No schema.** The package does not create the `inbox_events` and `outbox_events` tables or their status types. These must already exist in the database.