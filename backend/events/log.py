"""Append-only execution log for a single run.

The log is the primary human-observable trace of a run. Its order is the
order in which the stages appended entries, and nothing ever removes or
reorders an entry. The only in-place edits are the streaming ones on an entry
that is still open (``is_streaming=True``).
"""

import itertools
import time
from collections.abc import Iterator
from typing import assert_never

import structlog

from events.types import ExecutionEvent
from models.domain import EventKind

logger = structlog.get_logger()


class EventFinalizedError(RuntimeError):
    """Raised when content is appended to an entry that is no longer streaming."""

    def __init__(self, event_id: str) -> None:
        super().__init__(f"Execution event '{event_id}' is finalized")
        self.event_id = event_id


class ExecutionLog:
    """Ordered, append-only collection of ExecutionEvents.

    Every accessor hands out copies; entries change only through the
    methods below.

    Usage:
        >>> log = ExecutionLog("run_1")
        >>> event = log.append(
        ...     from_agent_id="w1", from_agent_name="Worker",
        ...     kind=EventKind.THOUGHT, is_streaming=True,
        ... )
        >>> log.append_content(event.id, "Scanning logs... ")
        >>> log.finalize(event.id)
        True
    """

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        self._events: list[ExecutionEvent] = []
        self._by_id: dict[str, ExecutionEvent] = {}
        self._sequence = itertools.count()

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[ExecutionEvent]:
        return iter(self.events())

    def events(self) -> list[ExecutionEvent]:
        """Return copies of all entries in log order."""
        return [event.model_copy() for event in self._events]

    def get(self, event_id: str) -> ExecutionEvent | None:
        event = self._by_id.get(event_id)
        return event.model_copy() if event else None

    def append(
        self,
        *,
        from_agent_id: str,
        from_agent_name: str,
        kind: EventKind,
        content: str = "",
        to_agent_id: str | None = None,
        is_streaming: bool = False,
    ) -> ExecutionEvent:
        """Append a new entry and return a copy of it.

        Args:
            from_agent_id: Producer of the entry
            from_agent_name: Display name of the producer
            kind: Entry kind
            content: Initial content (empty for streams that fill in later)
            to_agent_id: Optional recipient
            is_streaming: Open the entry for streaming appends

        Returns:
            A copy of the appended ExecutionEvent
        """
        sequence = next(self._sequence)
        event = ExecutionEvent(
            id=f"{self.run_id}-evt-{sequence:04d}",
            sequence=sequence,
            timestamp=time.time(),
            from_agent_id=from_agent_id,
            from_agent_name=from_agent_name,
            to_agent_id=to_agent_id,
            content=content,
            kind=kind,
            is_streaming=is_streaming,
        )
        self._events.append(event)
        self._by_id[event.id] = event
        return event.model_copy()

    def append_content(self, event_id: str, chunk: str) -> ExecutionEvent:
        """Append a streamed chunk to an open entry.

        Raises:
            KeyError: If the entry does not exist
            EventFinalizedError: If the entry is no longer streaming
        """
        event = self._by_id[event_id]
        if not event.is_streaming:
            raise EventFinalizedError(event_id)
        event.content += chunk
        return event.model_copy()

    def finalize(self, event_id: str, content: str | None = None) -> bool:
        """Close a streaming entry, optionally replacing its content.

        Finalization is idempotent: closing an entry that is already final is
        a no-op and leaves its content untouched.

        Args:
            event_id: The entry to close
            content: Final content (e.g., with a findings marker stripped)

        Returns:
            True if the entry was open and is now final, False otherwise.
        """
        event = self._by_id[event_id]
        if not event.is_streaming:
            return False
        if content is not None:
            event.content = content
        event.is_streaming = False
        return True

    def finalize_streaming(self) -> list[ExecutionEvent]:
        """Close every still-open entry as-is (possibly truncated).

        Returns:
            Copies of the entries that were closed by this call.
        """
        closed = [event for event in self._events if event.is_streaming]
        for event in closed:
            event.is_streaming = False
        if closed:
            logger.info(
                "execution_log_streams_truncated",
                run_id=self.run_id,
                event_ids=[event.id for event in closed],
            )
        return [event.model_copy() for event in closed]

    def render_transcript(self) -> str:
        """Render the log as a plain-text transcript for reports."""
        lines: list[str] = []
        for event in self._events:
            lines.append(f"{_kind_marker(event.kind)} {_route(event)}")
            lines.extend(f"    {line}" for line in event.content.splitlines() or [""])
        return "\n".join(lines)


def _route(event: ExecutionEvent) -> str:
    if event.to_agent_id:
        return f"{event.from_agent_name} -> {event.to_agent_id}"
    return event.from_agent_name


def _kind_marker(kind: EventKind) -> str:
    match kind:
        case EventKind.INSTRUCTION:
            return "[INSTRUCTION]"
        case EventKind.THOUGHT:
            return "[THOUGHT]"
        case EventKind.REPORT:
            return "[REPORT]"
        case EventKind.SYSTEM:
            return "[SYSTEM]"
        case EventKind.DISCOVERY:
            return "[DISCOVERY]"
        case EventKind.ERROR:
            return "[ERROR]"
        case _:
            assert_never(kind)
