"""Event system for the orchestration core.

This package provides the execution log and the notification bus that connect
the run controller to the presentation layer.

Key Components:
    - ExecutionEvent: One entry of a run's append-only execution log
    - ExecutionLog: The per-run log with its streaming rules
    - NotificationType / Notification: Mutation notices for the UI
    - EventBus: Async pub/sub delivery of notifications per session

Usage:
    >>> from events import EventBus, Notification, NotificationType
    >>>
    >>> bus = EventBus()
    >>> queue = bus.subscribe("sess_123")
    >>> await bus.publish(Notification(
    ...     type=NotificationType.LOG_APPENDED,
    ...     session_id="sess_123",
    ...     run_id="run_1",
    ...     data={"event": {...}},
    ... ))
    >>> notification = await queue.get()

Flow:
    1. Orchestration graph stages mutate the log and agent state
    2. Each mutation is published as a Notification on the EventBus
    3. The WebSocket handler forwards notifications to the dashboard
"""

from events.bus import (
    EventBus,
    get_event_bus,
    reset_event_bus,
)
from events.log import EventFinalizedError, ExecutionLog
from events.types import (
    ExecutionEvent,
    Notification,
    NotificationType,
)

__all__ = [
    # Types
    "ExecutionEvent",
    "Notification",
    "NotificationType",
    # Log
    "ExecutionLog",
    "EventFinalizedError",
    # Bus
    "EventBus",
    "get_event_bus",
    "reset_event_bus",
]
