"""Tests for agents/provider.py -- the deterministic heuristic provider."""

from agents.findings import parse_findings_marker
from agents.provider import (
    HeuristicReasoningProvider,
    ProviderFailure,
    Stage,
    heuristic_findings,
)
from agents.registry import TeamRegistry
from models.domain import ResourceNode


def _teams(nodes: list[ResourceNode]):
    return TeamRegistry().ensure_teams(nodes)


class TestPlan:
    async def test_matches_team_name(self, nodes: list[ResourceNode]) -> None:
        plan = await HeuristicReasoningProvider().plan("Inspect API latency", _teams(nodes))
        assert [item.team_id for item in plan] == ["team-api-gw"]
        assert plan[0].instruction == 'Analyze: "Inspect API latency" for API Gateway Team.'

    async def test_database_keywords(self, nodes: list[ResourceNode]) -> None:
        plan = await HeuristicReasoningProvider().plan(
            "verify replication lag", _teams(nodes)
        )
        assert [item.team_id for item in plan] == ["team-order-db"]

    async def test_specialty_keywords(self, nodes: list[ResourceNode]) -> None:
        plan = await HeuristicReasoningProvider().plan("report uptime", _teams(nodes))
        assert [item.team_id for item in plan] == ["team-session-cache"]

    async def test_multiple_matches_keep_topology_order(
        self, nodes: list[ResourceNode]
    ) -> None:
        plan = await HeuristicReasoningProvider().plan(
            "session cache and order database", _teams(nodes)
        )
        assert [item.team_id for item in plan] == ["team-order-db", "team-session-cache"]

    async def test_no_match_falls_back_to_first_team(self, nodes: list[ResourceNode]) -> None:
        plan = await HeuristicReasoningProvider().plan("hello world", _teams(nodes))
        assert [item.team_id for item in plan] == ["team-order-db"]

    async def test_empty_teams(self) -> None:
        assert await HeuristicReasoningProvider().plan("anything", []) == []


class TestDelegate:
    async def test_one_task_per_member(self, nodes: list[ResourceNode]) -> None:
        team = _teams(nodes)[0]
        assignments = await HeuristicReasoningProvider().delegate(team, "Check it")
        assert [a.agent_id for a in assignments] == [m.id for m in team.members]
        assert assignments[0].task == "Execute Query Optimization. Context: Check it"


class TestStreamWorkerOutput:
    async def test_output_ends_with_parseable_marker(self, nodes: list[ResourceNode]) -> None:
        worker = _teams(nodes)[0].members[0]
        provider = HeuristicReasoningProvider()
        chunks = [c async for c in provider.stream_worker_output(worker, "task", "context")]

        assert len(chunks) > 3
        assert chunks[0].startswith("[Task Initiated] Agent: DB Perf Monitor")
        parsed = parse_findings_marker("".join(chunks))
        assert parsed.ok
        assert parsed.findings == heuristic_findings(worker.id, "task")
        assert "Correlation complete." in parsed.display_text

    async def test_output_is_deterministic(self, nodes: list[ResourceNode]) -> None:
        worker = _teams(nodes)[0].members[1]
        provider = HeuristicReasoningProvider()
        first = [c async for c in provider.stream_worker_output(worker, "t", "c")]
        second = [c async for c in provider.stream_worker_output(worker, "t", "c")]
        assert first == second


class TestHeuristicFindings:
    def test_critical_implies_warning(self) -> None:
        for index in range(200):
            findings = heuristic_findings(f"w{index}", "task")
            assert findings.warnings in (0, 1)
            if findings.critical:
                assert findings.warnings == 1

    def test_distribution_is_mixed(self) -> None:
        samples = [heuristic_findings(f"w{index}", "task") for index in range(200)]
        assert any(s.is_zero for s in samples)
        assert any(s.warnings for s in samples)


class TestProviderFailure:
    def test_describe_names_worker_over_team(self) -> None:
        failure = ProviderFailure(Stage.EXECUTION, "boom", team_id="t1", agent_id="w1")
        assert failure.describe() == "Execution failed (worker w1): boom"

    def test_describe_team(self) -> None:
        failure = ProviderFailure(Stage.DELEGATION, "boom", team_id="t1")
        assert failure.describe() == "Delegation failed (team t1): boom"

    def test_describe_plain(self) -> None:
        assert ProviderFailure(Stage.PLANNING, "boom").describe() == "Planning failed: boom"
