"""Event type definitions for the EntropyOps event system.

Two kinds of records live here:

- ExecutionEvent: one entry of a run's append-only execution log, the
  human-readable trace of instructions, thoughts and reports.
- Notification: a mutation notice pushed to the presentation layer. These are
  the only way the orchestration core tells the outside world that something
  changed.
"""

import time
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from models.domain import EventKind


class NotificationType(StrEnum):
    """All notification types emitted by the orchestration core.

    - Run lifecycle: state machine transitions of a run
    - Agent state: status and findings changes per agent
    - Execution log: new entries and in-place streaming updates
    - Transport: sentinel used to end subscriber loops
    """

    # Run lifecycle
    RUN_STATE_CHANGED = "run_state_changed"

    # Agent state
    AGENT_STATUS_CHANGED = "agent_status_changed"
    AGENT_FINDINGS_CHANGED = "agent_findings_changed"

    # Execution log
    LOG_APPENDED = "log_appended"
    LOG_UPDATED = "log_updated"

    # Transport
    SESSION_CLOSED = "session_closed"


class ExecutionEvent(BaseModel):
    """One entry in a run's execution log.

    Entries are immutable once appended, with two exceptions that only apply
    while ``is_streaming`` is True: appending content, and finalizing (which
    clears ``is_streaming`` and may replace the content with its stripped
    final form). After that the entry never changes again.

    Attributes:
        id: Unique event identifier
        sequence: Position in the log, strictly increasing from 0
        timestamp: Unix timestamp at append time
        from_agent_id: Agent that produced the entry ("sys" for the system)
        from_agent_name: Display name of the producer
        to_agent_id: Recipient for instructions and reports
        content: Text of the entry
        kind: Entry kind (instruction, thought, report, ...)
        is_streaming: True while a worker stream is still appending
    """

    id: str
    sequence: int
    timestamp: float = Field(default_factory=time.time)
    from_agent_id: str
    from_agent_name: str
    to_agent_id: str | None = None
    content: str = ""
    kind: EventKind
    is_streaming: bool = False


class Notification(BaseModel):
    """A mutation notice delivered to subscribers of a session.

    Payload schemas by notification type:

    RUN_STATE_CHANGED:
        - run_id: str
        - state: str - New RunState
        - previous_state: str
        - directive: str
        - error_message: Optional[str]

    AGENT_STATUS_CHANGED:
        - team_id: Optional[str] - None for the Global Supervisor
        - agent_id: str
        - status: str - New AgentStatus

    AGENT_FINDINGS_CHANGED:
        - team_id: Optional[str]
        - agent_id: str
        - findings: dict - {"warnings": int, "critical": int}

    LOG_APPENDED:
        - event: dict - The full ExecutionEvent

    LOG_UPDATED:
        - event_id: str
        - delta: str - Appended chunk (while streaming)
        - content: Optional[str] - Final content (on finalization)
        - is_streaming: bool

    SESSION_CLOSED:
        - reason: str
    """

    type: NotificationType
    timestamp: float = Field(default_factory=time.time)
    session_id: str
    run_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "type": "agent_status_changed",
                    "timestamp": 1699876543.123,
                    "session_id": "sess_abc123",
                    "run_id": "run_abc123def456",
                    "data": {
                        "team_id": "team-order-db",
                        "agent_id": "team-order-db-w1",
                        "status": "Working",
                    },
                }
            ]
        }
    }
