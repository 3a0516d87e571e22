"""Shared test fixtures for backend tests.

Provides a fresh EventBus, a small topology, a scripted reasoning provider
and helpers to drain notifications, so tests never touch an LLM API.
"""

import asyncio
import sys
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

# Ensure the backend package root is on sys.path so that absolute imports
# like ``from agents.registry import ...`` resolve correctly when running
# pytest from the repository root.
_backend_root = str(
    __import__("pathlib").Path(__file__).resolve().parent.parent
)
if _backend_root not in sys.path:
    sys.path.insert(0, _backend_root)

from agents.context import OrchestrationContext  # noqa: E402
from agents.provider import HeuristicReasoningProvider, ReasoningProvider  # noqa: E402
from events.bus import EventBus, reset_event_bus  # noqa: E402
from events.types import Notification, NotificationType  # noqa: E402
from models.domain import (  # noqa: E402
    Agent,
    Assignment,
    MissionReport,
    PlanItem,
    ResourceKind,
    ResourceNode,
    Team,
    TeamReport,
)

SESSION_ID = "sess_test"

NOMINAL_OUTPUT = ["Nominal. ", 'SUMMARY: {"warnings": 0, "critical": 0}']

# ---------------------------------------------------------------------------
# Event Bus
# ---------------------------------------------------------------------------


@pytest.fixture()
def event_bus() -> EventBus:
    """Return a fresh EventBus instance for each test."""
    reset_event_bus()
    bus = EventBus()
    return bus


# ---------------------------------------------------------------------------
# Topology
# ---------------------------------------------------------------------------


@pytest.fixture()
def nodes() -> list[ResourceNode]:
    """Database, gateway and cache nodes, in topology order."""
    return [
        ResourceNode(id="order-db", label="Order DB", kind=ResourceKind.DATABASE),
        ResourceNode(id="api-gw", label="API Gateway", kind=ResourceKind.GATEWAY),
        ResourceNode(id="session-cache", label="Session Cache", kind=ResourceKind.CACHE),
    ]


# ---------------------------------------------------------------------------
# ScriptedReasoningProvider
# ---------------------------------------------------------------------------


class ScriptedReasoningProvider(HeuristicReasoningProvider):
    """Heuristic provider with scriptable plans, worker output and failures.

    Args:
        plan: Plan to return instead of the heuristic one.
        worker_outputs: agent_id -> chunks. An Exception entry is raised when
            reached. Workers without a script emit ``NOMINAL_OUTPUT``.
        failures: Method name ("plan", "delegate", "summarize_team",
            "summarize_mission") -> exception to raise.
        gate: If set, every chunk after the first waits for this event.
    """

    name = "scripted"

    def __init__(
        self,
        *,
        plan: list[PlanItem] | None = None,
        worker_outputs: dict[str, list[Any]] | None = None,
        failures: dict[str, Exception] | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.plan_items = plan
        self.worker_outputs = worker_outputs or {}
        self.failures = failures or {}
        self.gate = gate
        self.calls: list[tuple[str, str]] = []

    def _maybe_fail(self, method: str) -> None:
        if method in self.failures:
            raise self.failures[method]

    async def plan(self, directive: str, teams: list[Team]) -> list[PlanItem]:
        self.calls.append(("plan", directive))
        self._maybe_fail("plan")
        if self.plan_items is not None:
            return list(self.plan_items)
        return await super().plan(directive, teams)

    async def delegate(self, team: Team, instruction: str) -> list[Assignment]:
        self.calls.append(("delegate", team.id))
        self._maybe_fail("delegate")
        return await super().delegate(team, instruction)

    async def stream_worker_output(
        self, agent: Agent, task: str, context: str
    ) -> AsyncIterator[str]:
        self.calls.append(("stream", agent.id))
        for index, chunk in enumerate(self.worker_outputs.get(agent.id, NOMINAL_OUTPUT)):
            if self.gate is not None and index > 0:
                await self.gate.wait()
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk

    async def summarize_team(
        self, team: Team, instruction: str, report: TeamReport
    ) -> str:
        self.calls.append(("summarize_team", team.id))
        self._maybe_fail("summarize_team")
        return await super().summarize_team(team, instruction, report)

    async def summarize_mission(
        self, directive: str, reports: list[TeamReport], mission: MissionReport
    ) -> str:
        self.calls.append(("summarize_mission", directive))
        self._maybe_fail("summarize_mission")
        return await super().summarize_mission(directive, reports, mission)


# ---------------------------------------------------------------------------
# Context factory
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_context(
    event_bus: EventBus, nodes: list[ResourceNode]
) -> Callable[..., OrchestrationContext]:
    """Build an OrchestrationContext over ``nodes`` with the given provider."""

    def _make(provider: ReasoningProvider | None = None) -> OrchestrationContext:
        context = OrchestrationContext(
            session_id=SESSION_ID,
            provider=provider or ScriptedReasoningProvider(),
            event_bus=event_bus,
        )
        context.registry.ensure_teams(nodes)
        return context

    return _make


# ---------------------------------------------------------------------------
# Notification helpers
# ---------------------------------------------------------------------------


def drain(queue: asyncio.Queue[Notification]) -> list[Notification]:
    """Take everything currently in a subscriber queue."""
    notifications: list[Notification] = []
    while not queue.empty():
        notifications.append(queue.get_nowait())
    return notifications


def of_type(
    notifications: list[Notification], notification_type: NotificationType
) -> list[Notification]:
    return [n for n in notifications if n.type == notification_type]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds, failing the test after ``timeout``."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.01)
