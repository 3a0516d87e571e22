"""Domain model for the orchestration core.

Agents, teams, plans and runs as they flow through the planning, delegation,
execution and aggregation stages. Enums are closed: every consumer matches
them exhaustively so a new variant fails loudly instead of falling through.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from events.log import ExecutionLog


class ResourceKind(StrEnum):
    """Kind of infrastructure entity a team is bound to."""

    SERVICE = "Service"
    GATEWAY = "Gateway"
    DATABASE = "Database"
    CACHE = "Cache"
    INFRASTRUCTURE = "Infrastructure"


class AgentRole(StrEnum):
    """Position of an agent in the delegation hierarchy."""

    GLOBAL_SUPERVISOR = "GlobalSupervisor"
    TEAM_SUPERVISOR = "TeamSupervisor"
    WORKER = "Worker"


class AgentStatus(StrEnum):
    """Agent lifecycle status."""

    IDLE = "Idle"
    THINKING = "Thinking"
    WAITING = "Waiting"  # Waiting for its workers
    WORKING = "Working"
    COMPLETED = "Completed"
    ERROR = "Error"


# Statuses an agent may not be left in once a run settles.
IN_FLIGHT_STATUSES = frozenset(
    {AgentStatus.THINKING, AgentStatus.WAITING, AgentStatus.WORKING}
)


class EventKind(StrEnum):
    """Kind of an execution log entry."""

    INSTRUCTION = "instruction"
    THOUGHT = "thought"
    REPORT = "report"
    SYSTEM = "system"
    DISCOVERY = "discovery"
    ERROR = "error"


class HealthLevel(StrEnum):
    """Classification of aggregated findings."""

    CRITICAL = "Critical"
    ADVISORY = "Advisory"
    NOMINAL = "Nominal"


class RunState(StrEnum):
    """Run lifecycle state."""

    IDLE = "Idle"
    PLANNING = "Planning"
    NO_APPLICABLE_TEAMS = "NoApplicableTeams"
    DELEGATING = "Delegating"
    EXECUTING = "Executing"
    AGGREGATING = "Aggregating"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    ERRORED = "Errored"


TERMINAL_RUN_STATES = frozenset(
    {RunState.COMPLETED, RunState.CANCELLED, RunState.ERRORED}
)

_RUN_TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.IDLE: frozenset({RunState.PLANNING}),
    RunState.PLANNING: frozenset({RunState.NO_APPLICABLE_TEAMS, RunState.DELEGATING}),
    RunState.NO_APPLICABLE_TEAMS: frozenset({RunState.COMPLETED}),
    RunState.DELEGATING: frozenset({RunState.EXECUTING}),
    RunState.EXECUTING: frozenset({RunState.AGGREGATING}),
    # Aggregating loops back to Delegating for the next team in the plan.
    RunState.AGGREGATING: frozenset({RunState.DELEGATING, RunState.COMPLETED}),
    RunState.COMPLETED: frozenset(),
    RunState.CANCELLED: frozenset(),
    RunState.ERRORED: frozenset(),
}


class InvalidRunTransitionError(RuntimeError):
    """Raised when a run is asked to move along an edge the state machine lacks."""

    def __init__(self, run_id: str, current: RunState, target: RunState) -> None:
        super().__init__(f"Run '{run_id}' cannot move from {current} to {target}")
        self.run_id = run_id
        self.current = current
        self.target = target


def can_transition(current: RunState, target: RunState) -> bool:
    """Return True when ``current -> target`` is a legal run transition."""
    if current in TERMINAL_RUN_STATES:
        return False
    if target in (RunState.CANCELLED, RunState.ERRORED):
        return True
    return target in _RUN_TRANSITIONS[current]


class ResourceNode(BaseModel):
    """An infrastructure entity discovered in the topology."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    label: str
    kind: ResourceKind


class Findings(BaseModel):
    """Warning/critical counters attached to an agent."""

    model_config = ConfigDict(frozen=True)

    warnings: int = Field(default=0, ge=0)
    critical: int = Field(default=0, ge=0)

    @property
    def is_zero(self) -> bool:
        return self.warnings == 0 and self.critical == 0


class Agent(BaseModel):
    """One agent in the hierarchy.

    ``findings`` counts only what this agent's own output reported; team and
    mission totals are computed by aggregation, never stored on supervisors.
    """

    id: str
    name: str
    role: AgentRole
    specialty: str | None = None
    status: AgentStatus = AgentStatus.IDLE
    findings: Findings = Field(default_factory=Findings)
    current_task: str | None = None


class Team(BaseModel):
    """The supervisor and workers bound to one resource."""

    id: str
    resource_id: str
    name: str
    kind: ResourceKind
    supervisor: Agent
    members: list[Agent] = Field(min_length=1)

    def member(self, agent_id: str) -> Agent | None:
        return next((m for m in self.members if m.id == agent_id), None)

    def agents(self) -> list[Agent]:
        """Supervisor first, then workers in roster order."""
        return [self.supervisor, *self.members]


class PlanItem(BaseModel):
    """One (team, instruction) pair chosen by the planning stage."""

    team_id: str
    instruction: str
    priority: int | None = None


class Assignment(BaseModel):
    """One (worker, task) pair produced by a team's delegation."""

    agent_id: str
    task: str


@dataclass
class Run:
    """Runtime record of one directive's trip through the stages.

    Attributes:
        run_id: Unique identifier (e.g., "run_1a2b3c4d5e6f")
        directive: The user's free-text directive
        scope: Resource ids the run is restricted to, or None for all teams
        log: The run's own append-only execution log
        state: Current state in the run state machine
        started_at: Unix timestamp of the trigger
        completed_at: Unix timestamp of the terminal transition
        error_message: Failure or cancellation reason for non-completed runs
        plan: The plan produced by the planning stage
        team_reports: Team reports in plan order
        mission_level: Classification of the final mission summary
    """

    run_id: str
    directive: str
    scope: frozenset[str] | None
    log: ExecutionLog
    state: RunState = RunState.IDLE
    started_at: float = field(default_factory=time.time)
    completed_at: float | None = None
    error_message: str | None = None
    plan: list[PlanItem] = field(default_factory=list)
    team_reports: list[TeamReport] = field(default_factory=list)
    mission_level: HealthLevel | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_RUN_STATES

    def transition_to(self, target: RunState) -> RunState:
        """Move the run to ``target`` and return the previous state.

        Raises:
            InvalidRunTransitionError: If the state machine has no such edge.
        """
        if not can_transition(self.state, target):
            raise InvalidRunTransitionError(self.run_id, self.state, target)
        previous = self.state
        self.state = target
        if target in TERMINAL_RUN_STATES:
            self.completed_at = time.time()
        return previous


class WorkerResult(BaseModel):
    """Outcome of one worker's execution within a team."""

    agent_id: str
    agent_name: str
    status: AgentStatus
    findings: Findings
    event_id: str


class TeamReport(BaseModel):
    """Aggregated outcome of one team, reported to the Global Supervisor."""

    team_id: str
    team_name: str
    level: HealthLevel
    warnings: int
    critical: int
    worker_statuses: dict[str, AgentStatus]
    content: str = ""


class MissionReport(BaseModel):
    """Aggregated outcome of the whole run."""

    level: HealthLevel
    warnings: int
    critical: int
    team_levels: dict[str, HealthLevel]
    content: str = ""
