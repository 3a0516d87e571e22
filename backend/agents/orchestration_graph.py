"""Hierarchical orchestration LangGraph implementation.

The Global Supervisor plans a directive into team instructions, each Team
Supervisor delegates to its workers, worker output is streamed into the run's
execution log, and findings roll up into team reports and a mission summary.

Graph structure:
    START -> plan -> dispatch_team -> execute_worker(×workers) -> report_team
               |          ^                                          |
               |          |__________________________________________|
               |              (loop per plan item, then summarize_mission -> END)
               |
               +-> no_applicable_teams -> END   (empty scope)

Teams run strictly in plan order and workers strictly in roster order, so the
log order is always: directive, supervisor thought, then per team the
instruction to its supervisor, per worker the delegation and the worker's
stream, the team report, and finally the mission summary.

Non-terminal run transitions happen here. Terminal ones (Completed, Cancelled,
Errored) are owned by the run manager.
"""

from collections.abc import Awaitable
from typing import Literal, TypedDict

import structlog
from langgraph.graph import END, START, StateGraph
from langgraph.graph.state import CompiledStateGraph

from agents.aggregation import aggregate_mission, aggregate_team, with_narrative
from agents.context import OrchestrationContext
from agents.provider import ProviderFailure, Stage
from agents.stages import delegate_stage, execute_stage, plan_stage
from models.domain import (
    AgentStatus,
    Assignment,
    EventKind,
    MissionReport,
    PlanItem,
    Run,
    RunState,
    Team,
    TeamReport,
    WorkerResult,
)

logger = structlog.get_logger()

# Extra graph steps on top of one per node visit.
RECURSION_HEADROOM = 10


# -----------------------------------------------------------------------------
# State Schema Definitions
# -----------------------------------------------------------------------------


class OrchestrationState(TypedDict):
    """State for the orchestration graph.

    Attributes:
        run_id: Run being executed
        directive: The user's directive
        scope_team_ids: Teams eligible for planning, in topology order
        plan: Plan produced by the planning node
        team_index: Index of the plan item being processed
        assignments: Assignments of the current team, in roster order
        worker_index: Index of the next assignment to execute
        worker_results: Results of the current team's workers so far
        team_reports: Reports of all finished teams, in plan order
        status: Current graph status
        mission_report: Final mission report once summarized
    """

    run_id: str
    directive: str
    scope_team_ids: list[str]
    plan: list[PlanItem]
    team_index: int
    assignments: list[Assignment]
    worker_index: int
    worker_results: list[WorkerResult]
    team_reports: list[TeamReport]
    status: Literal["planning", "executing", "no_applicable_teams", "complete"]
    mission_report: MissionReport | None


def create_orchestration_initial_state(
    run: Run, scope_teams: list[Team]
) -> OrchestrationState:
    return OrchestrationState(
        run_id=run.run_id,
        directive=run.directive,
        scope_team_ids=[team.id for team in scope_teams],
        plan=[],
        team_index=0,
        assignments=[],
        worker_index=0,
        worker_results=[],
        team_reports=[],
        status="planning",
        mission_report=None,
    )


def recursion_limit_for(scope_teams: list[Team]) -> int:
    """Upper bound on node visits for a run over ``scope_teams``."""
    return RECURSION_HEADROOM + 2 + sum(len(team.members) + 2 for team in scope_teams)


def describe_scope(run: Run) -> str:
    if run.scope is None:
        return "GLOBAL"
    return ", ".join(sorted(run.scope)) or "EMPTY"


# -----------------------------------------------------------------------------
# OrchestrationGraph Class
# -----------------------------------------------------------------------------


class OrchestrationGraph:
    """The orchestration graph for one run.

    A fresh graph is built per run; it holds the run record and drives it
    through planning, delegation, execution and aggregation.

    Usage:
        >>> graph = OrchestrationGraph(context, run)
        >>> final_state = await graph.run(create_orchestration_initial_state(run, teams))
    """

    def __init__(self, context: OrchestrationContext, run: Run) -> None:
        self.context = context
        self.run_record = run
        self._compiled_graph = self._build_graph()

    def _build_graph(self) -> CompiledStateGraph:
        graph = StateGraph(OrchestrationState)

        graph.add_node("plan", self._plan)
        graph.add_node("no_applicable_teams", self._no_applicable_teams)
        graph.add_node("dispatch_team", self._dispatch_team)
        graph.add_node("execute_worker", self._execute_worker)
        graph.add_node("report_team", self._report_team)
        graph.add_node("summarize_mission", self._summarize_mission)

        graph.add_edge(START, "plan")
        graph.add_conditional_edges(
            "plan",
            self._route_after_plan,
            {
                "dispatch": "dispatch_team",
                "no_teams": "no_applicable_teams",
            },
        )
        graph.add_edge("no_applicable_teams", END)
        graph.add_edge("dispatch_team", "execute_worker")
        graph.add_conditional_edges(
            "execute_worker",
            self._route_after_worker,
            {
                "next_worker": "execute_worker",
                "report": "report_team",
            },
        )
        graph.add_conditional_edges(
            "report_team",
            self._route_after_team,
            {
                "next_team": "dispatch_team",
                "summarize": "summarize_mission",
            },
        )
        graph.add_edge("summarize_mission", END)

        return graph.compile()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _team(self, team_id: str) -> Team:
        team = self.context.registry.get_team(team_id)
        if team is None:
            raise ProviderFailure(
                Stage.DELEGATION, f"team '{team_id}' is not registered", team_id=team_id
            )
        return team

    async def _summarize(
        self, call: Awaitable[str], *, team_id: str | None = None
    ) -> str:
        try:
            narrative = await call
        except ProviderFailure:
            raise
        except Exception as e:
            raise ProviderFailure(
                Stage.AGGREGATION, f"{type(e).__name__}: {e}", team_id=team_id
            ) from e
        if not isinstance(narrative, str):
            raise ProviderFailure(
                Stage.AGGREGATION, "provider returned a non-text summary", team_id=team_id
            )
        return narrative

    # -------------------------------------------------------------------------
    # Nodes
    # -------------------------------------------------------------------------

    async def _plan(self, state: OrchestrationState) -> dict:
        ctx, run = self.context, self.run_record
        supervisor = ctx.global_supervisor

        await ctx.transition(run, RunState.PLANNING)
        await ctx.log_event(
            run,
            kind=EventKind.INSTRUCTION,
            content=f'DIRECTIVE: "{run.directive}" [Scope: {describe_scope(run)}]',
        )

        teams = [self._team(team_id) for team_id in state["scope_team_ids"]]
        await ctx.set_status(
            supervisor, AgentStatus.THINKING, team=None, run_id=run.run_id, task=run.directive
        )
        await ctx.log_event(
            run,
            kind=EventKind.THOUGHT,
            from_agent=supervisor,
            content=f"Parsing request against available {len(teams)} functional teams...",
        )

        plan = await plan_stage(ctx.provider, run.directive, teams)
        run.plan = list(plan)
        if not plan:
            return {"plan": [], "status": "no_applicable_teams"}

        await ctx.set_status(supervisor, AgentStatus.WAITING, team=None, run_id=run.run_id)
        return {"plan": plan, "team_index": 0, "status": "executing"}

    async def _no_applicable_teams(self, state: OrchestrationState) -> dict:
        ctx, run = self.context, self.run_record
        supervisor = ctx.global_supervisor

        await ctx.transition(run, RunState.NO_APPLICABLE_TEAMS)
        await ctx.log_event(
            run,
            kind=EventKind.REPORT,
            from_agent=supervisor,
            content=(
                "No applicable teams: the run scope contains no teams. "
                "Nothing was delegated."
            ),
        )
        await ctx.set_status(supervisor, AgentStatus.COMPLETED, team=None, run_id=run.run_id)
        logger.info("run_no_applicable_teams", run_id=run.run_id)
        return {"status": "no_applicable_teams"}

    async def _dispatch_team(self, state: OrchestrationState) -> dict:
        ctx, run = self.context, self.run_record
        item = state["plan"][state["team_index"]]
        team = self._team(item.team_id)

        await ctx.transition(run, RunState.DELEGATING)
        await ctx.log_event(
            run,
            kind=EventKind.INSTRUCTION,
            from_agent=ctx.global_supervisor,
            to_agent=team.supervisor,
            content=item.instruction,
        )
        await ctx.set_status(
            team.supervisor,
            AgentStatus.THINKING,
            team=team,
            run_id=run.run_id,
            task=item.instruction,
        )

        assignments = await delegate_stage(ctx.provider, team, item.instruction)

        await ctx.set_status(team.supervisor, AgentStatus.WAITING, team=team, run_id=run.run_id)
        await ctx.transition(run, RunState.EXECUTING)
        logger.info(
            "team_dispatched",
            run_id=run.run_id,
            team_id=team.id,
            assignments=len(assignments),
        )
        return {"assignments": assignments, "worker_index": 0, "worker_results": []}

    async def _execute_worker(self, state: OrchestrationState) -> dict:
        ctx, run = self.context, self.run_record
        item = state["plan"][state["team_index"]]
        team = self._team(item.team_id)
        assignment = state["assignments"][state["worker_index"]]
        worker = team.member(assignment.agent_id)
        if worker is None:
            raise ProviderFailure(
                Stage.EXECUTION,
                f"'{assignment.agent_id}' is no longer a member of {team.name}",
                team_id=team.id,
                agent_id=assignment.agent_id,
            )

        await ctx.log_event(
            run,
            kind=EventKind.INSTRUCTION,
            from_agent=team.supervisor,
            to_agent=worker,
            content=assignment.task,
        )
        result = await execute_stage(ctx, run, team, worker, assignment, item.instruction)
        return {
            "worker_results": [*state["worker_results"], result],
            "worker_index": state["worker_index"] + 1,
        }

    async def _report_team(self, state: OrchestrationState) -> dict:
        ctx, run = self.context, self.run_record
        item = state["plan"][state["team_index"]]
        team = self._team(item.team_id)

        await ctx.transition(run, RunState.AGGREGATING)
        report = aggregate_team(team, state["worker_results"])
        narrative = await self._summarize(
            ctx.provider.summarize_team(team, item.instruction, report), team_id=team.id
        )
        report = report.model_copy(
            update={"content": with_narrative(report.content, narrative)}
        )

        await ctx.log_event(
            run,
            kind=EventKind.REPORT,
            from_agent=team.supervisor,
            to_agent=ctx.global_supervisor,
            content=report.content,
        )
        await ctx.set_status(team.supervisor, AgentStatus.COMPLETED, team=team, run_id=run.run_id)
        run.team_reports.append(report)

        logger.info(
            "team_reported",
            run_id=run.run_id,
            team_id=team.id,
            level=report.level.value,
            warnings=report.warnings,
            critical=report.critical,
        )
        return {
            "team_reports": [*state["team_reports"], report],
            "team_index": state["team_index"] + 1,
        }

    async def _summarize_mission(self, state: OrchestrationState) -> dict:
        ctx, run = self.context, self.run_record
        reports = state["team_reports"]

        mission = aggregate_mission(reports)
        narrative = await self._summarize(
            ctx.provider.summarize_mission(run.directive, reports, mission)
        )
        mission = mission.model_copy(
            update={"content": with_narrative(mission.content, narrative)}
        )

        await ctx.log_event(run, kind=EventKind.SYSTEM, content=mission.content)
        await ctx.set_status(
            ctx.global_supervisor, AgentStatus.COMPLETED, team=None, run_id=run.run_id
        )
        run.mission_level = mission.level

        logger.info(
            "mission_summarized",
            run_id=run.run_id,
            level=mission.level.value,
            teams=len(reports),
        )
        return {"mission_report": mission, "status": "complete"}

    # -------------------------------------------------------------------------
    # Routing
    # -------------------------------------------------------------------------

    def _route_after_plan(self, state: OrchestrationState) -> str:
        return "dispatch" if state["plan"] else "no_teams"

    def _route_after_worker(self, state: OrchestrationState) -> str:
        if state["worker_index"] < len(state["assignments"]):
            return "next_worker"
        return "report"

    def _route_after_team(self, state: OrchestrationState) -> str:
        if state["team_index"] < len(state["plan"]):
            return "next_team"
        return "summarize"

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    async def run(self, initial_state: OrchestrationState) -> OrchestrationState:
        """Execute the graph from START to END.

        Raises:
            ProviderFailure: If any stage fails
            asyncio.CancelledError: If the surrounding task is cancelled
        """
        scope_size = len(initial_state["scope_team_ids"])
        limit = recursion_limit_for(
            [self._team(team_id) for team_id in initial_state["scope_team_ids"]]
        )
        logger.info(
            "orchestration_graph_started",
            run_id=initial_state["run_id"],
            scope_size=scope_size,
            recursion_limit=limit,
        )
        return await self._compiled_graph.ainvoke(
            initial_state, config={"recursion_limit": limit}
        )


# -----------------------------------------------------------------------------
# Factory Function
# -----------------------------------------------------------------------------


def create_orchestration_graph(
    context: OrchestrationContext, run: Run
) -> OrchestrationGraph:
    """Factory function to create the orchestration graph for one run."""
    return OrchestrationGraph(context=context, run=run)
