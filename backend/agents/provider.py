"""Reasoning provider interface and the deterministic heuristic provider.

The orchestration stages never produce content themselves: plans, delegation
texts, worker output and narrative summaries all come from a
``ReasoningProvider``. Providers may be heuristic, scripted (tests) or backed
by a language model; the stages treat them uniformly and always await them.
"""

import json
import zlib
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from enum import StrEnum

import structlog

from models.domain import (
    Agent,
    Assignment,
    Findings,
    MissionReport,
    PlanItem,
    ResourceKind,
    Team,
    TeamReport,
)

logger = structlog.get_logger()


class Stage(StrEnum):
    """Orchestration stage that called the provider."""

    PLANNING = "planning"
    DELEGATION = "delegation"
    EXECUTION = "execution"
    AGGREGATION = "aggregation"


class ProviderFailure(Exception):
    """A provider call threw or returned data the stage cannot use.

    Fatal for the run: the run controller turns it into ``Errored`` with a
    single error event naming ``stage`` and the team or worker involved.
    """

    def __init__(
        self,
        stage: Stage,
        message: str,
        *,
        team_id: str | None = None,
        agent_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.stage = stage
        self.message = message
        self.team_id = team_id
        self.agent_id = agent_id

    def describe(self) -> str:
        """Human-readable one-liner for the execution log."""
        target = ""
        if self.agent_id:
            target = f" (worker {self.agent_id})"
        elif self.team_id:
            target = f" (team {self.team_id})"
        return f"{self.stage.value.capitalize()} failed{target}: {self.message}"


class ReasoningProvider(ABC):
    """Source of plans, delegations, worker output and summaries."""

    name: str = "provider"

    @abstractmethod
    async def plan(self, directive: str, teams: list[Team]) -> list[PlanItem]:
        """Choose the teams (in order) that act on ``directive``."""

    @abstractmethod
    async def delegate(self, team: Team, instruction: str) -> list[Assignment]:
        """Split a team instruction into one task per worker."""

    @abstractmethod
    def stream_worker_output(
        self, agent: Agent, task: str, context: str
    ) -> AsyncIterator[str]:
        """Yield the worker's output incrementally.

        The sequence is lazy, finite and not restartable. It may end with a
        findings marker (see ``agents.findings``).
        """

    @abstractmethod
    async def summarize_team(
        self, team: Team, instruction: str, report: TeamReport
    ) -> str:
        """Narrative appended to the team report headline."""

    @abstractmethod
    async def summarize_mission(
        self, directive: str, reports: list[TeamReport], mission: MissionReport
    ) -> str:
        """Narrative appended to the mission summary headline."""


_DATABASE_KEYWORDS = ("database", "consistency", "query", "replication")

_WORKER_STEPS = ("Analyzing local context...", "Scanning logs...", "Correlation complete.")


def _specialty_keywords(team: Team) -> set[str]:
    # Leading word only: "Consistency Check" -> "consistency".
    words: set[str] = set()
    for member in team.members:
        parts = (member.specialty or "").lower().split()
        if parts and len(parts[0]) > 3:
            words.add(parts[0])
    return words


def heuristic_findings(agent_id: str, task: str) -> Findings:
    """Deterministic stand-in for a worker's diagnosis.

    Roughly 30% of (agent, task) pairs report a warning and 10% a critical
    issue, keyed on a CRC32 of the pair.
    """
    bucket = zlib.crc32(f"{agent_id}|{task}".encode()) % 100
    return Findings(warnings=1 if bucket < 30 else 0, critical=1 if bucket < 10 else 0)


class HeuristicReasoningProvider(ReasoningProvider):
    """Keyword-matching provider with no external calls.

    Planning selects teams whose name's first word appears in the directive,
    database teams for database/consistency directives, and teams whose
    worker specialties are mentioned. With no match it picks the first team.
    Same inputs always give the same outputs.
    """

    name = "heuristic"

    def matches(self, directive: str, team: Team) -> bool:
        request = directive.lower()
        first_word = team.name.lower().split(" ")[0]
        if first_word and first_word in request:
            return True
        is_database = team.kind == ResourceKind.DATABASE or "DB" in team.name
        if is_database and any(keyword in request for keyword in _DATABASE_KEYWORDS):
            return True
        return any(word in request for word in _specialty_keywords(team))

    async def plan(self, directive: str, teams: list[Team]) -> list[PlanItem]:
        if not teams:
            return []
        selected = [team for team in teams if self.matches(directive, team)] or [teams[0]]
        return [
            PlanItem(team_id=team.id, instruction=f'Analyze: "{directive}" for {team.name}.')
            for team in selected
        ]

    async def delegate(self, team: Team, instruction: str) -> list[Assignment]:
        return [
            Assignment(
                agent_id=member.id,
                task=f"Execute {member.specialty or 'General Check'}. Context: {instruction}",
            )
            for member in team.members
        ]

    async def stream_worker_output(
        self, agent: Agent, task: str, context: str
    ) -> AsyncIterator[str]:
        yield f"[Task Initiated] Agent: {agent.name}\nContext: {context[:50]}...\n\n"
        for step in _WORKER_STEPS:
            for word in step.split(" "):
                yield word + " "
            yield "\n"
        findings = heuristic_findings(agent.id, task)
        yield f"\nSUMMARY: {json.dumps(findings.model_dump())}"

    async def summarize_team(
        self, team: Team, instruction: str, report: TeamReport
    ) -> str:
        return f"Reporting for {team.name}. Directive executed. Aggregated Status: {report.level}."

    async def summarize_mission(
        self, directive: str, reports: list[TeamReport], mission: MissionReport
    ) -> str:
        return f'Directive "{directive}" handled by {len(reports)} team(s).'
