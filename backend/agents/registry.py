"""Topology/team registry.

Maps infrastructure nodes to agent teams. A team is created the first time its
resource appears in the topology and then kept for the whole session, so
refreshing the topology never resets a roster.
"""

from collections.abc import Iterable
from typing import assert_never

import structlog

from models.domain import (
    Agent,
    AgentRole,
    AgentStatus,
    Findings,
    ResourceKind,
    ResourceNode,
    Team,
)

logger = structlog.get_logger()

GLOBAL_SUPERVISOR_ID = "global-sup"
GLOBAL_SUPERVISOR_NAME = "Global Orchestrator"

# (name, specialty) per worker, in roster order.
_Roster = tuple[tuple[str, str], ...]

_DATABASE_ROSTER: _Roster = (
    ("DB Perf Monitor", "Query Optimization"),
    ("Data Integrity Bot", "Consistency Check"),
)
_SERVICE_ROSTER: _Roster = (
    ("Log Analyzer", "Error Tracking"),
    ("Traffic Inspector", "Load Analysis"),
)
_INFRASTRUCTURE_ROSTER: _Roster = (
    ("Node Scaler", "Resource Provisioning"),
    ("Cluster Health", "Node Health"),
)
_DEFAULT_ROSTER: _Roster = (("Health Check", "Uptime"),)


def roster_for_kind(kind: ResourceKind) -> _Roster:
    """Return the worker roster template for a resource kind."""
    match kind:
        case ResourceKind.DATABASE:
            return _DATABASE_ROSTER
        case ResourceKind.SERVICE | ResourceKind.GATEWAY:
            return _SERVICE_ROSTER
        case ResourceKind.INFRASTRUCTURE:
            return _INFRASTRUCTURE_ROSTER
        case ResourceKind.CACHE:
            return _DEFAULT_ROSTER
        case _:
            assert_never(kind)


def build_team_for_node(node: ResourceNode) -> Team:
    """Synthesize the team for a node.

    Pure function of ``(node.id, node.label, node.kind)``: the same node
    always yields an identical team.
    """
    team_id = f"team-{node.id}"
    members = [
        Agent(
            id=f"{team_id}-w{index}",
            name=name,
            role=AgentRole.WORKER,
            specialty=specialty,
        )
        for index, (name, specialty) in enumerate(roster_for_kind(node.kind), start=1)
    ]
    return Team(
        id=team_id,
        resource_id=node.id,
        name=f"{node.label} Team",
        kind=node.kind,
        supervisor=Agent(
            id=f"{team_id}-sup",
            name=f"{node.label} Lead",
            role=AgentRole.TEAM_SUPERVISOR,
            specialty=f"{node.kind.value} Coordination",
        ),
        members=members,
    )


def build_global_supervisor() -> Agent:
    """Create the Global Supervisor agent for a new orchestration context."""
    return Agent(
        id=GLOBAL_SUPERVISOR_ID,
        name=GLOBAL_SUPERVISOR_NAME,
        role=AgentRole.GLOBAL_SUPERVISOR,
    )


def reset_agent(agent: Agent) -> bool:
    """Zero one agent's findings, clear its task and set it Idle.

    Returns:
        True if anything changed
    """
    if agent.status == AgentStatus.IDLE and agent.findings.is_zero and agent.current_task is None:
        return False
    agent.status = AgentStatus.IDLE
    agent.findings = Findings()
    agent.current_task = None
    return True


class TeamRegistry:
    """Session-lifetime store of teams keyed by resource id.

    Usage:
        >>> registry = TeamRegistry()
        >>> teams = registry.ensure_teams(nodes)
        >>> scoped = registry.filter_by_scope(teams, {"order-db"})
    """

    def __init__(self) -> None:
        self._teams: dict[str, Team] = {}
        self._active_resource_ids: list[str] = []

    def ensure_teams(self, nodes: Iterable[ResourceNode]) -> list[Team]:
        """Return one team per node, creating missing teams.

        Existing teams are looked up by ``resource_id`` and returned as-is;
        their rosters are never touched. The given nodes become the active
        topology, in the given order.
        """
        teams: list[Team] = []
        active: list[str] = []
        created = 0
        for node in nodes:
            if node.id in active:
                continue
            team = self._teams.get(node.id)
            if team is None:
                team = build_team_for_node(node)
                self._teams[node.id] = team
                created += 1
            active.append(node.id)
            teams.append(team)

        self._active_resource_ids = active
        logger.info(
            "teams_ensured",
            active_teams=len(teams),
            created_teams=created,
            known_teams=len(self._teams),
        )
        return teams

    def active_teams(self) -> list[Team]:
        """Teams of the most recently ensured topology, in node order."""
        return [self._teams[resource_id] for resource_id in self._active_resource_ids]

    def all_teams(self) -> list[Team]:
        return list(self._teams.values())

    def get_team(self, team_id: str) -> Team | None:
        return next((t for t in self._teams.values() if t.id == team_id), None)

    def get_team_by_resource(self, resource_id: str) -> Team | None:
        return self._teams.get(resource_id)

    def find_agent(self, agent_id: str) -> tuple[Team, Agent] | None:
        """Locate a supervisor or worker by id, with its team."""
        for team in self._teams.values():
            for agent in team.agents():
                if agent.id == agent_id:
                    return team, agent
        return None

    @staticmethod
    def filter_by_scope(
        teams: Iterable[Team], resource_ids: Iterable[str] | None
    ) -> list[Team]:
        """Return the teams whose resource is in scope, or all teams if no scope.

        An empty scope is a real scope and yields no teams.
        """
        if resource_ids is None:
            return list(teams)
        wanted = set(resource_ids)
        return [team for team in teams if team.resource_id in wanted]

    @staticmethod
    def reset_findings(teams: Iterable[Team]) -> list[tuple[Team, Agent]]:
        """Zero every agent's findings and set it Idle.

        Returns:
            The (team, agent) pairs whose status or findings actually changed.
        """
        return [
            (team, agent) for team in teams for agent in team.agents() if reset_agent(agent)
        ]

    def update_members(self, team_id: str, members: list[Agent]) -> Team:
        """Replace a team's worker roster (explicit edit).

        Raises:
            KeyError: If the team does not exist
            ValueError: If the roster is empty, has duplicate ids, contains
                non-worker agents, or reuses an id held by another agent
        """
        team = self.get_team(team_id)
        if team is None:
            raise KeyError(f"Team '{team_id}' not found")
        if not members:
            raise ValueError("A team needs at least one worker")
        ids = [member.id for member in members]
        if len(set(ids)) != len(ids):
            raise ValueError("Worker ids must be unique within a team")
        if any(member.role != AgentRole.WORKER for member in members):
            raise ValueError("Team members must be workers")
        # The team's own current workers may be kept; any other agent id is taken.
        taken = {GLOBAL_SUPERVISOR_ID, team.supervisor.id}
        for other in self._teams.values():
            if other is not team:
                taken.update(agent.id for agent in other.agents())
        clashes = sorted(set(ids) & taken)
        if clashes:
            raise ValueError(f"Agent ids already in use: {', '.join(clashes)}")

        team.members = list(members)
        logger.info("team_roster_updated", team_id=team_id, member_count=len(members))
        return team
