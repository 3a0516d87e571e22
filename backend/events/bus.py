"""Async notification bus between the orchestration core and its consumers.

This module provides an EventBus class that enables asynchronous
publish/subscribe delivery of Notifications from the run controller to
presentation-layer consumers (via WebSocket).

The event bus is thread-safe and supports:
- Multiple subscribers per session
- Async delivery via asyncio.Queue
- Buffering until the first subscriber connects, and replay history
- Session lifecycle management (close session terminates all subscribers)
"""

import asyncio
import threading
from collections import defaultdict, deque

import structlog

from events.types import Notification, NotificationType

logger = structlog.get_logger()


class EventBus:
    """Async pub/sub bus for orchestration notifications.

    The EventBus manages subscriptions per session, allowing multiple
    WebSocket connections to follow the same orchestration context.

    Notification Buffering:
        Notifications published before any subscriber connects are buffered,
        up to max_history_per_session (oldest dropped first). When the first
        subscriber connects, all buffered notifications are delivered
        immediately, so a dashboard that connects right after triggering a
        run still sees the run's first transitions. Consumers that replay
        history use subscribe_with_replay instead, which hands back the
        history and discards the buffer so nothing is delivered twice.

    Thread Safety:
        The subscription registry is guarded by a threading.Lock.

    Usage:
        >>> bus = EventBus()
        >>> queue = bus.subscribe("sess_123")
        >>> await bus.publish(Notification(
        ...     type=NotificationType.RUN_STATE_CHANGED,
        ...     session_id="sess_123",
        ...     run_id="run_1",
        ...     data={"state": "Planning"},
        ... ))
        >>> notification = await queue.get()
        >>> bus.unsubscribe("sess_123", queue)
        >>> await bus.close_session("sess_123")
    """

    def __init__(self, max_history_per_session: int = 5000) -> None:
        """Initialize an empty event bus.

        Args:
            max_history_per_session: Notifications retained per session for
                replay on reconnect.
        """
        self.max_history_per_session = max_history_per_session
        self._subscribers: dict[str, list[asyncio.Queue[Notification]]] = defaultdict(list)
        self._buffer: dict[str, deque[Notification]] = defaultdict(
            lambda: deque(maxlen=max_history_per_session)
        )
        self._history: dict[str, list[Notification]] = defaultdict(list)
        self._lock = threading.Lock()
        logger.info("event_bus_initialized")

    def subscribe(self, session_id: str) -> asyncio.Queue[Notification]:
        """Subscribe to notifications for a session.

        Buffered notifications (published before any subscriber connected)
        are delivered to the new subscriber immediately.

        Args:
            session_id: The session to subscribe to

        Returns:
            An asyncio.Queue that will receive Notification objects
        """
        queue: asyncio.Queue[Notification] = asyncio.Queue()
        buffered: list[Notification] = []

        with self._lock:
            self._subscribers[session_id].append(queue)
            subscriber_count = len(self._subscribers[session_id])
            if session_id in self._buffer:
                buffered = list(self._buffer.pop(session_id))

        for notification in buffered:
            queue.put_nowait(notification)

        logger.info(
            "subscriber_added",
            session_id=session_id,
            subscriber_count=subscriber_count,
            buffered_delivered=len(buffered),
        )
        return queue

    def subscribe_with_replay(
        self, session_id: str
    ) -> tuple[list[Notification], asyncio.Queue[Notification]]:
        """Subscribe and snapshot the session history in one step.

        The history snapshot and the queue never overlap: everything
        published before the call is in the snapshot, everything after it
        arrives on the queue. Pending buffered notifications are discarded
        because the history already holds them.

        Returns:
            (history in publish order, queue for later notifications)
        """
        queue: asyncio.Queue[Notification] = asyncio.Queue()

        with self._lock:
            self._subscribers[session_id].append(queue)
            subscriber_count = len(self._subscribers[session_id])
            history = list(self._history.get(session_id, []))
            dropped = len(self._buffer.pop(session_id, ()))

        logger.info(
            "subscriber_added",
            session_id=session_id,
            subscriber_count=subscriber_count,
            history_replayed=len(history),
            buffered_dropped=dropped,
        )
        return history, queue

    def unsubscribe(self, session_id: str, queue: asyncio.Queue[Notification]) -> None:
        """Remove a subscriber queue. Unknown queues are ignored."""
        with self._lock:
            queues = self._subscribers.get(session_id)
            if queues is None:
                return
            try:
                queues.remove(queue)
            except ValueError:
                logger.warning("unsubscribe_queue_not_found", session_id=session_id)
                return
            if not queues:
                del self._subscribers[session_id]
            logger.info(
                "subscriber_removed",
                session_id=session_id,
                subscriber_count=len(queues),
            )

    async def publish(self, notification: Notification) -> None:
        """Publish a notification to all subscribers of its session.

        Every notification except the SESSION_CLOSED sentinel is recorded in
        the session history. With no subscribers it is buffered instead of
        delivered.

        Args:
            notification: The Notification to publish
        """
        with self._lock:
            if notification.type != NotificationType.SESSION_CLOSED:
                history = self._history[notification.session_id]
                history.append(notification)
                if len(history) > self.max_history_per_session:
                    self._history[notification.session_id] = history[
                        -self.max_history_per_session :
                    ]

            subscribers = list(self._subscribers.get(notification.session_id, []))
            if not subscribers:
                self._buffer[notification.session_id].append(notification)
                return

        # Bounded wait so a stalled consumer cannot block the run controller.
        for queue in subscribers:
            try:
                await asyncio.wait_for(queue.put(notification), timeout=5.0)
            except TimeoutError:
                logger.warning(
                    "notification_delivery_timeout",
                    session_id=notification.session_id,
                    notification_type=notification.type.value,
                )

    def get_history(self, session_id: str) -> list[Notification]:
        """Return the retained notifications for a session in publish order."""
        with self._lock:
            return list(self._history.get(session_id, []))

    async def close_session(self, session_id: str, reason: str = "session_closed") -> None:
        """Signal subscribers that the session is over and drop its state.

        Each subscriber receives a SESSION_CLOSED sentinel so its read loop can
        exit. History is kept for replay.
        """
        with self._lock:
            queues = self._subscribers.pop(session_id, [])
            buffered = len(self._buffer.pop(session_id, []))

        for queue in queues:
            await queue.put(
                Notification(
                    type=NotificationType.SESSION_CLOSED,
                    session_id=session_id,
                    data={"reason": reason},
                )
            )

        logger.info(
            "session_closed",
            session_id=session_id,
            subscribers_removed=len(queues),
            buffered_dropped=buffered,
        )

    def get_subscriber_count(self, session_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(session_id, []))

    def clear_history(self, session_id: str) -> None:
        with self._lock:
            self._history.pop(session_id, None)


# Process-wide instance used by the HTTP layer
_event_bus: EventBus | None = None
_bus_lock = threading.Lock()


def get_event_bus() -> EventBus:
    """Get the process-wide EventBus, creating it on first use.

    The orchestration core never calls this; it receives its bus explicitly
    through the OrchestrationContext.
    """
    global _event_bus
    if _event_bus is None:
        with _bus_lock:
            if _event_bus is None:
                from config import settings

                _event_bus = EventBus(max_history_per_session=settings.max_notification_history)
    return _event_bus


def reset_event_bus() -> None:
    """Drop the process-wide EventBus (used by tests)."""
    global _event_bus
    with _bus_lock:
        _event_bus = None
    logger.info("event_bus_reset")
