"""
Broadcast channel for trade session events.

Fire-and-forget: the trade core publishes lifecycle events to a topic per
session code, and point events to a topic per user. Delivery to clients
(websockets, push) is a transport concern outside this package; a
transport subscribes to topics and drains its queue.

Publishing never raises into the caller. A failed delivery is logged and
dropped.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Protocol

from tradebinder.models.trade import TradeEvent

logger = logging.getLogger(__name__)

# Queue bound per subscriber; a slow subscriber loses events instead of
# blocking trade requests
SUBSCRIBER_QUEUE_SIZE = 100


def session_topic(session_code: str) -> str:
    return f"trade:{session_code.upper()}"


def user_topic(user_id: str) -> str:
    return f"user:{user_id}"


@dataclass(frozen=True, slots=True)
class BroadcastMessage:
    """One published event."""

    topic: str
    event: str
    payload: dict[str, Any] = field(default_factory=dict)


class Broadcaster(Protocol):
    """What the trade core needs from a broadcast channel."""

    def publish_to_session(
        self, session_code: str, event: TradeEvent, payload: dict[str, Any]
    ) -> None: ...

    def publish_to_user(self, user_id: str, event: TradeEvent, payload: dict[str, Any]) -> None: ...


class InProcessBroadcaster:
    """
    Broadcaster that fans events out to in-process subscriber queues.

    Subscribers call `subscribe(topic)` and read from the returned queue.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[asyncio.Queue[BroadcastMessage]]] = defaultdict(list)

    def subscribe(self, topic: str) -> asyncio.Queue[BroadcastMessage]:
        queue: asyncio.Queue[BroadcastMessage] = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        self._subscribers[topic].append(queue)
        return queue

    def unsubscribe(self, topic: str, queue: asyncio.Queue[BroadcastMessage]) -> None:
        queues = self._subscribers.get(topic)
        if queues and queue in queues:
            queues.remove(queue)
            if not queues:
                del self._subscribers[topic]

    def publish_to_session(
        self, session_code: str, event: TradeEvent, payload: dict[str, Any]
    ) -> None:
        self._publish(session_topic(session_code), event, payload)

    def publish_to_user(self, user_id: str, event: TradeEvent, payload: dict[str, Any]) -> None:
        self._publish(user_topic(user_id), event, payload)

    def _publish(self, topic: str, event: TradeEvent, payload: dict[str, Any]) -> None:
        message = BroadcastMessage(topic=topic, event=event.value, payload=payload)
        queues = list(self._subscribers.get(topic, ()))
        logger.debug("broadcast %s on %s to %d subscribers", event.value, topic, len(queues))
        for queue in queues:
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.warning("Dropping %s for slow subscriber on %s", event.value, topic)
            except Exception:
                logger.exception("Broadcast delivery failed for %s on %s", event.value, topic)


_broadcaster = InProcessBroadcaster()


def get_broadcaster() -> Broadcaster:
    """Dependency that provides the process-wide broadcaster."""
    return _broadcaster


class DeferredBroadcaster:
    """
    Broadcaster that holds events until the producing transaction commits.

    Request handlers publish through this, commit, then call `flush()`.
    If the commit fails the buffered events are never delivered.
    """

    def __init__(self, target: Broadcaster) -> None:
        self._target = target
        self._pending: list[tuple[bool, str, TradeEvent, dict[str, Any]]] = []

    def publish_to_session(
        self, session_code: str, event: TradeEvent, payload: dict[str, Any]
    ) -> None:
        self._pending.append((True, session_code, event, payload))

    def publish_to_user(self, user_id: str, event: TradeEvent, payload: dict[str, Any]) -> None:
        self._pending.append((False, user_id, event, payload))

    def flush(self) -> int:
        """Deliver buffered events in publish order. Returns how many were sent."""
        pending, self._pending = self._pending, []
        for to_session, key, event, payload in pending:
            if to_session:
                self._target.publish_to_session(key, event, payload)
            else:
                self._target.publish_to_user(key, event, payload)
        return len(pending)

    def discard(self) -> None:
        if self._pending:
            logger.debug("Discarding %d undelivered events", len(self._pending))
        self._pending = []

