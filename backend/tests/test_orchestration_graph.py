"""Tests for agents/orchestration_graph.py -- the per-run LangGraph flow.

The graph is driven directly here, so runs stop in Aggregating (or
NoApplicableTeams): terminal transitions belong to the run manager.
"""

from collections.abc import Callable

import pytest

from agents.context import OrchestrationContext
from agents.orchestration_graph import (
    create_orchestration_graph,
    create_orchestration_initial_state,
    describe_scope,
    recursion_limit_for,
)
from agents.provider import ProviderFailure, Stage
from events.bus import EventBus
from events.log import ExecutionLog
from events.types import NotificationType
from models.domain import (
    AgentStatus,
    EventKind,
    HealthLevel,
    PlanItem,
    Run,
    RunState,
)
from tests.conftest import SESSION_ID, ScriptedReasoningProvider, drain, of_type

DB_DIRECTIVE = "Check consistency of the order database"


def _make_run(directive: str = DB_DIRECTIVE, scope: set[str] | None = None) -> Run:
    return Run(
        run_id="run_graph",
        directive=directive,
        scope=frozenset(scope) if scope is not None else None,
        log=ExecutionLog("run_graph"),
    )


async def _execute(ctx: OrchestrationContext, run: Run):
    teams = ctx.registry.filter_by_scope(ctx.registry.active_teams(), run.scope)
    graph = create_orchestration_graph(ctx, run)
    return await graph.run(create_orchestration_initial_state(run, teams))


# =========================================================================
# Happy path
# =========================================================================


class TestOrchestrationFlow:
    async def test_log_order_for_single_team(
        self,
        make_context: Callable[..., OrchestrationContext],
        event_bus: EventBus,
    ) -> None:
        provider = ScriptedReasoningProvider(
            worker_outputs={
                "team-order-db-w1": ["Checking ", "indexes.\n", 'SUMMARY: {"warnings": 2, "critical": 0}'],
                "team-order-db-w2": ['SUMMARY: {"warnings": 0, "critical": 1}'],
            }
        )
        ctx = make_context(provider)
        run = _make_run()
        queue = event_bus.subscribe(SESSION_ID)

        final_state = await _execute(ctx, run)

        events = run.log.events()
        assert [(e.kind, e.from_agent_id, e.to_agent_id) for e in events] == [
            (EventKind.INSTRUCTION, "sys", None),
            (EventKind.THOUGHT, "global-sup", None),
            (EventKind.INSTRUCTION, "global-sup", "team-order-db-sup"),
            (EventKind.INSTRUCTION, "team-order-db-sup", "team-order-db-w1"),
            (EventKind.THOUGHT, "team-order-db-w1", None),
            (EventKind.INSTRUCTION, "team-order-db-sup", "team-order-db-w2"),
            (EventKind.THOUGHT, "team-order-db-w2", None),
            (EventKind.REPORT, "team-order-db-sup", "global-sup"),
            (EventKind.SYSTEM, "sys", None),
        ]
        assert [e.sequence for e in events] == list(range(len(events)))
        assert not any(e.is_streaming for e in events)

        assert events[0].content == f'DIRECTIVE: "{DB_DIRECTIVE}" [Scope: GLOBAL]'
        assert events[1].content == "Parsing request against available 3 functional teams..."
        assert events[4].content == "Checking indexes."
        assert events[6].content == ""
        assert events[7].content.startswith(
            "[CRITICAL] Order DB Team: 2 warning(s), 1 critical.\n"
            "Workers: DB Perf Monitor=Completed, Data Integrity Bot=Completed"
        )
        assert events[7].content.endswith("Aggregated Status: Critical.")
        assert events[8].content.startswith("[CRITICAL] Mission sequence complete.")

        assert final_state["status"] == "complete"
        assert final_state["mission_report"].level == HealthLevel.CRITICAL
        assert run.mission_level == HealthLevel.CRITICAL
        assert [r.team_id for r in run.team_reports] == ["team-order-db"]
        assert run.state == RunState.AGGREGATING

        states = [
            n.data["state"]
            for n in of_type(drain(queue), NotificationType.RUN_STATE_CHANGED)
        ]
        assert states == ["Planning", "Delegating", "Executing", "Aggregating"]

    async def test_agents_settle_completed(
        self, make_context: Callable[..., OrchestrationContext]
    ) -> None:
        ctx = make_context()
        run = _make_run()
        await _execute(ctx, run)

        team = ctx.registry.get_team("team-order-db")
        assert ctx.global_supervisor.status == AgentStatus.COMPLETED
        assert [a.status for a in team.agents()] == [AgentStatus.COMPLETED] * 3
        # Teams outside the plan are untouched.
        other = ctx.registry.get_team("team-api-gw")
        assert all(a.status == AgentStatus.IDLE for a in other.agents())

    async def test_teams_follow_plan_order(
        self, make_context: Callable[..., OrchestrationContext]
    ) -> None:
        provider = ScriptedReasoningProvider(
            plan=[
                PlanItem(team_id="team-session-cache", instruction="cache first"),
                PlanItem(team_id="team-order-db", instruction="db second"),
            ]
        )
        ctx = make_context(provider)
        run = _make_run()
        await _execute(ctx, run)

        reports = [e for e in run.log.events() if e.kind == EventKind.REPORT]
        assert [e.from_agent_id for e in reports] == [
            "team-session-cache-sup",
            "team-order-db-sup",
        ]
        dispatches = [
            e.content for e in run.log.events() if e.from_agent_id == "global-sup"
            and e.kind == EventKind.INSTRUCTION
        ]
        assert dispatches == ["cache first", "db second"]
        streams = [call for call in provider.calls if call[0] == "stream"]
        assert [agent_id for _, agent_id in streams] == [
            "team-session-cache-w1",
            "team-order-db-w1",
            "team-order-db-w2",
        ]

    async def test_scope_limits_teams(
        self, make_context: Callable[..., OrchestrationContext]
    ) -> None:
        ctx = make_context()
        run = _make_run(directive="hello world", scope={"api-gw"})
        await _execute(ctx, run)

        assert run.log.events()[0].content == 'DIRECTIVE: "hello world" [Scope: api-gw]'
        assert [r.team_id for r in run.team_reports] == ["team-api-gw"]

    async def test_malformed_marker_does_not_fail_run(
        self, make_context: Callable[..., OrchestrationContext]
    ) -> None:
        raw = 'Looks odd SUMMARY: {"warnings": "x"}'
        provider = ScriptedReasoningProvider(worker_outputs={"team-order-db-w1": [raw]})
        ctx = make_context(provider)
        run = _make_run()
        await _execute(ctx, run)

        thought = run.log.events()[4]
        assert thought.content == raw
        assert run.team_reports[0].level == HealthLevel.NOMINAL


# =========================================================================
# No applicable teams
# =========================================================================


class TestNoApplicableTeams:
    async def test_empty_scope(
        self,
        make_context: Callable[..., OrchestrationContext],
        event_bus: EventBus,
    ) -> None:
        provider = ScriptedReasoningProvider()
        ctx = make_context(provider)
        run = _make_run(scope=set())
        queue = event_bus.subscribe(SESSION_ID)

        final_state = await _execute(ctx, run)

        assert final_state["status"] == "no_applicable_teams"
        assert run.state == RunState.NO_APPLICABLE_TEAMS
        events = run.log.events()
        assert [e.kind for e in events] == [
            EventKind.INSTRUCTION,
            EventKind.THOUGHT,
            EventKind.REPORT,
        ]
        assert events[0].content.endswith("[Scope: EMPTY]")
        assert events[2].content.startswith("No applicable teams")
        assert provider.calls == []
        assert ctx.global_supervisor.status == AgentStatus.COMPLETED

        states = [
            n.data["state"]
            for n in of_type(drain(queue), NotificationType.RUN_STATE_CHANGED)
        ]
        assert states == ["Planning", "NoApplicableTeams"]


# =========================================================================
# Failures
# =========================================================================


class TestFailures:
    async def test_planning_failure_propagates(
        self, make_context: Callable[..., OrchestrationContext]
    ) -> None:
        ctx = make_context(ScriptedReasoningProvider(failures={"plan": RuntimeError("x")}))
        with pytest.raises(ProviderFailure) as exc_info:
            await _execute(ctx, _make_run())
        assert exc_info.value.stage == Stage.PLANNING

    async def test_summary_failure_is_aggregation_failure(
        self, make_context: Callable[..., OrchestrationContext]
    ) -> None:
        ctx = make_context(
            ScriptedReasoningProvider(failures={"summarize_team": RuntimeError("x")})
        )
        with pytest.raises(ProviderFailure) as exc_info:
            await _execute(ctx, _make_run())
        assert exc_info.value.stage == Stage.AGGREGATION
        assert exc_info.value.team_id == "team-order-db"


# =========================================================================
# Helpers
# =========================================================================


class TestHelpers:
    def test_describe_scope(self) -> None:
        assert describe_scope(_make_run()) == "GLOBAL"
        assert describe_scope(_make_run(scope={"b", "a"})) == "a, b"
        assert describe_scope(_make_run(scope=set())) == "EMPTY"

    def test_recursion_limit_covers_all_visits(
        self, make_context: Callable[..., OrchestrationContext]
    ) -> None:
        teams = make_context().registry.active_teams()
        # 3 teams with 2, 2 and 1 workers: plan + summarize + (workers + 2) each.
        assert recursion_limit_for(teams) == 10 + 2 + (4 + 4 + 3)
        assert recursion_limit_for([]) == 12
