"""Tests for agents/registry.py -- node-to-team synthesis and the registry."""

import pytest

from agents.registry import (
    GLOBAL_SUPERVISOR_ID,
    TeamRegistry,
    build_global_supervisor,
    build_team_for_node,
    roster_for_kind,
)
from models.domain import (
    Agent,
    AgentRole,
    AgentStatus,
    Findings,
    ResourceKind,
    ResourceNode,
)


class TestBuildTeam:
    def test_database_team_shape(self) -> None:
        team = build_team_for_node(
            ResourceNode(id="order-db", label="Order DB", kind=ResourceKind.DATABASE)
        )
        assert team.id == "team-order-db"
        assert team.resource_id == "order-db"
        assert team.name == "Order DB Team"
        assert team.supervisor.id == "team-order-db-sup"
        assert team.supervisor.name == "Order DB Lead"
        assert team.supervisor.role == AgentRole.TEAM_SUPERVISOR
        assert team.supervisor.specialty == "Database Coordination"
        assert [m.id for m in team.members] == ["team-order-db-w1", "team-order-db-w2"]
        assert [m.specialty for m in team.members] == [
            "Query Optimization",
            "Consistency Check",
        ]
        assert all(m.role == AgentRole.WORKER for m in team.members)

    def test_gateway_uses_service_roster(self) -> None:
        assert roster_for_kind(ResourceKind.GATEWAY) == roster_for_kind(ResourceKind.SERVICE)

    def test_cache_gets_default_roster(self) -> None:
        team = build_team_for_node(
            ResourceNode(id="c1", label="Cache", kind=ResourceKind.CACHE)
        )
        assert [(m.name, m.specialty) for m in team.members] == [("Health Check", "Uptime")]

    def test_every_kind_has_workers(self) -> None:
        for kind in ResourceKind:
            assert roster_for_kind(kind)

    def test_synthesis_is_deterministic(self) -> None:
        node = ResourceNode(id="n1", label="Node", kind=ResourceKind.INFRASTRUCTURE)
        assert build_team_for_node(node) == build_team_for_node(node)

    def test_global_supervisor(self) -> None:
        supervisor = build_global_supervisor()
        assert supervisor.id == GLOBAL_SUPERVISOR_ID
        assert supervisor.role == AgentRole.GLOBAL_SUPERVISOR
        assert supervisor.status == AgentStatus.IDLE


class TestTeamRegistry:
    def test_one_team_per_node_in_order(self, nodes: list[ResourceNode]) -> None:
        registry = TeamRegistry()
        teams = registry.ensure_teams(nodes)
        assert [t.resource_id for t in teams] == ["order-db", "api-gw", "session-cache"]
        assert registry.active_teams() == teams

    def test_duplicate_nodes_collapse(self, nodes: list[ResourceNode]) -> None:
        registry = TeamRegistry()
        teams = registry.ensure_teams([nodes[0], nodes[0], nodes[1]])
        assert [t.resource_id for t in teams] == ["order-db", "api-gw"]

    def test_existing_teams_are_reused(self, nodes: list[ResourceNode]) -> None:
        registry = TeamRegistry()
        first = registry.ensure_teams(nodes)
        first[0].members[0].findings = Findings(warnings=3)

        second = registry.ensure_teams(nodes)
        assert second[0] is first[0]
        assert second[0].members[0].findings.warnings == 3

    def test_removed_nodes_leave_active_set_but_are_kept(
        self, nodes: list[ResourceNode]
    ) -> None:
        registry = TeamRegistry()
        registry.ensure_teams(nodes)
        registry.ensure_teams(nodes[:1])
        assert [t.resource_id for t in registry.active_teams()] == ["order-db"]
        assert len(registry.all_teams()) == 3
        assert registry.get_team_by_resource("api-gw") is not None

    def test_lookups(self, nodes: list[ResourceNode]) -> None:
        registry = TeamRegistry()
        registry.ensure_teams(nodes)
        assert registry.get_team("team-api-gw").name == "API Gateway Team"
        assert registry.get_team("team-missing") is None

        found = registry.find_agent("team-order-db-w2")
        assert found is not None
        team, agent = found
        assert team.id == "team-order-db"
        assert agent.name == "Data Integrity Bot"
        assert registry.find_agent("nobody") is None

    def test_filter_by_scope(self, nodes: list[ResourceNode]) -> None:
        teams = TeamRegistry().ensure_teams(nodes)
        assert TeamRegistry.filter_by_scope(teams, None) == teams
        assert [t.resource_id for t in TeamRegistry.filter_by_scope(teams, {"api-gw"})] == [
            "api-gw"
        ]
        assert TeamRegistry.filter_by_scope(teams, set()) == []
        assert TeamRegistry.filter_by_scope(teams, {"unknown"}) == []

    def test_reset_findings_reports_only_changes(self, nodes: list[ResourceNode]) -> None:
        teams = TeamRegistry().ensure_teams(nodes)
        worker = teams[0].members[0]
        worker.findings = Findings(warnings=1, critical=1)
        worker.status = AgentStatus.COMPLETED

        changed = TeamRegistry.reset_findings(teams)
        assert [(team.id, agent.id) for team, agent in changed] == [
            ("team-order-db", worker.id)
        ]
        assert worker.findings.is_zero
        assert worker.status == AgentStatus.IDLE


class TestUpdateMembers:
    def _worker(self, agent_id: str) -> Agent:
        return Agent(id=agent_id, name=agent_id, role=AgentRole.WORKER, specialty="Audit")

    def test_replaces_roster(self, nodes: list[ResourceNode]) -> None:
        registry = TeamRegistry()
        registry.ensure_teams(nodes)
        team = registry.update_members("team-order-db", [self._worker("x1")])
        assert [m.id for m in team.members] == ["x1"]
        # Re-ingesting the topology keeps the edited roster.
        registry.ensure_teams(nodes)
        assert [m.id for m in registry.get_team("team-order-db").members] == ["x1"]

    def test_unknown_team(self) -> None:
        with pytest.raises(KeyError):
            TeamRegistry().update_members("team-missing", [self._worker("x1")])

    def test_rejects_invalid_rosters(self, nodes: list[ResourceNode]) -> None:
        registry = TeamRegistry()
        registry.ensure_teams(nodes)
        with pytest.raises(ValueError):
            registry.update_members("team-order-db", [])
        with pytest.raises(ValueError):
            registry.update_members(
                "team-order-db", [self._worker("x1"), self._worker("x1")]
            )
        supervisor = Agent(id="s", name="s", role=AgentRole.TEAM_SUPERVISOR)
        with pytest.raises(ValueError):
            registry.update_members("team-order-db", [supervisor])

    def test_rejects_ids_held_by_other_agents(self, nodes: list[ResourceNode]) -> None:
        registry = TeamRegistry()
        registry.ensure_teams(nodes)
        for taken in ("team-order-db-sup", "team-api-gw-w1", GLOBAL_SUPERVISOR_ID):
            with pytest.raises(ValueError, match="already in use"):
                registry.update_members("team-order-db", [self._worker(taken)])
        assert [m.id for m in registry.get_team("team-order-db").members] == [
            "team-order-db-w1",
            "team-order-db-w2",
        ]

    def test_keeps_own_worker_ids(self, nodes: list[ResourceNode]) -> None:
        registry = TeamRegistry()
        registry.ensure_teams(nodes)
        team = registry.update_members(
            "team-order-db", [self._worker("team-order-db-w2"), self._worker("x1")]
        )
        assert [m.id for m in team.members] == ["team-order-db-w2", "x1"]
        found = registry.find_agent("team-order-db-w2")
        assert found is not None and found[0] is team
