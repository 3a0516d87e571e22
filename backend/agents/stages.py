"""Planning, delegation and execution stages.

Each stage wraps one reasoning provider call, validates what comes back, and
turns provider errors into ``ProviderFailure`` tagged with the stage and the
team or worker involved. The run controller decides what a failure means for
the run; stages never touch run state.
"""

from typing import TYPE_CHECKING

import structlog

from agents.findings import parse_findings_marker
from agents.provider import ProviderFailure, ReasoningProvider, Stage
from agents.streaming import WorkerOutputChannel
from models.domain import (
    Agent,
    AgentStatus,
    Assignment,
    EventKind,
    PlanItem,
    Run,
    Team,
    WorkerResult,
)

if TYPE_CHECKING:
    from agents.context import OrchestrationContext

logger = structlog.get_logger()


def default_plan_item(directive: str, team: Team) -> PlanItem:
    return PlanItem(team_id=team.id, instruction=f'Analyze: "{directive}" for {team.name}.')


async def plan_stage(
    provider: ReasoningProvider, directive: str, scope_teams: list[Team]
) -> list[PlanItem]:
    """Ask the provider for a plan over ``scope_teams`` and validate it.

    An empty scope yields an empty plan without calling the provider. An empty
    answer for a non-empty scope falls back to the first team. Duplicate teams
    keep their first entry.

    Raises:
        ProviderFailure: If the provider throws, returns something that is not
            a list of PlanItems, or names a team outside the scope
    """
    if not scope_teams:
        return []

    try:
        items = await provider.plan(directive, scope_teams)
    except ProviderFailure:
        raise
    except Exception as e:
        raise ProviderFailure(Stage.PLANNING, f"{type(e).__name__}: {e}") from e

    if not isinstance(items, list) or not all(isinstance(i, PlanItem) for i in items):
        raise ProviderFailure(Stage.PLANNING, "provider returned a malformed plan")

    known = {team.id for team in scope_teams}
    plan: list[PlanItem] = []
    seen: set[str] = set()
    for item in items:
        if item.team_id not in known:
            raise ProviderFailure(
                Stage.PLANNING,
                f"plan references unknown team '{item.team_id}'",
                team_id=item.team_id,
            )
        if item.team_id in seen:
            logger.warning("plan_duplicate_team_dropped", team_id=item.team_id)
            continue
        seen.add(item.team_id)
        plan.append(item)

    if not plan:
        logger.info("plan_empty_fallback", team_id=scope_teams[0].id)
        plan = [default_plan_item(directive, scope_teams[0])]

    logger.info(
        "plan_created",
        provider=provider.name,
        team_ids=[item.team_id for item in plan],
        scope_size=len(scope_teams),
    )
    return plan


async def delegate_stage(
    provider: ReasoningProvider, team: Team, instruction: str
) -> list[Assignment]:
    """Ask the provider to split ``instruction`` across ``team.members``.

    Returns:
        Exactly one Assignment per member, in roster order

    Raises:
        ProviderFailure: If the provider throws, or the assignments do not
            cover every member exactly once
    """
    try:
        assignments = await provider.delegate(team, instruction)
    except ProviderFailure:
        raise
    except Exception as e:
        raise ProviderFailure(
            Stage.DELEGATION, f"{type(e).__name__}: {e}", team_id=team.id
        ) from e

    if not isinstance(assignments, list) or not all(
        isinstance(a, Assignment) for a in assignments
    ):
        raise ProviderFailure(
            Stage.DELEGATION, "provider returned malformed assignments", team_id=team.id
        )

    by_agent: dict[str, Assignment] = {}
    for assignment in assignments:
        if team.member(assignment.agent_id) is None:
            raise ProviderFailure(
                Stage.DELEGATION,
                f"assignment for '{assignment.agent_id}' who is not a member of {team.name}",
                team_id=team.id,
            )
        if assignment.agent_id in by_agent:
            raise ProviderFailure(
                Stage.DELEGATION,
                f"duplicate assignment for '{assignment.agent_id}'",
                team_id=team.id,
            )
        by_agent[assignment.agent_id] = assignment

    missing = [member.id for member in team.members if member.id not in by_agent]
    if missing:
        raise ProviderFailure(
            Stage.DELEGATION,
            f"no assignment for {', '.join(missing)}",
            team_id=team.id,
        )

    return [by_agent[member.id] for member in team.members]


async def execute_stage(
    ctx: "OrchestrationContext",
    run: Run,
    team: Team,
    worker: Agent,
    assignment: Assignment,
    context: str,
) -> WorkerResult:
    """Stream one worker's output into the log and apply its findings.

    The worker goes Working for the duration and Completed when the stream is
    exhausted. A producer error marks the worker Error, finalizes the entry
    with what arrived so far, and raises ProviderFailure. Cancellation closes
    the channel and propagates; the controller finalizes the entry.
    """
    await ctx.set_status(
        worker, AgentStatus.WORKING, team=team, run_id=run.run_id, task=assignment.task
    )
    event = await ctx.log_event(
        run, kind=EventKind.THOUGHT, from_agent=worker, is_streaming=True
    )

    source = ctx.provider.stream_worker_output(worker, assignment.task, context)
    async with WorkerOutputChannel(source, agent_id=worker.id) as channel:
        try:
            async for chunk in channel:
                if not isinstance(chunk, str):
                    raise ProviderFailure(
                        Stage.EXECUTION,
                        f"stream yielded {type(chunk).__name__} instead of text",
                        team_id=team.id,
                        agent_id=worker.id,
                    )
                await ctx.stream_content(run, event.id, chunk)
        except ProviderFailure:
            await _fail_worker(ctx, run, team, worker, event.id)
            raise
        except Exception as e:
            await _fail_worker(ctx, run, team, worker, event.id)
            raise ProviderFailure(
                Stage.EXECUTION,
                f"{type(e).__name__}: {e}",
                team_id=team.id,
                agent_id=worker.id,
            ) from e

    raw = run.log.get(event.id)
    parsed = parse_findings_marker(raw.content if raw else "")
    await ctx.finalize_event(run, event.id, parsed.display_text)
    await ctx.set_findings(worker, parsed.findings, team=team, run_id=run.run_id)
    await ctx.set_status(worker, AgentStatus.COMPLETED, team=team, run_id=run.run_id)

    logger.info(
        "worker_completed",
        run_id=run.run_id,
        agent_id=worker.id,
        chunks=channel.chunks_received,
        warnings=parsed.findings.warnings,
        critical=parsed.findings.critical,
        marker_error=parsed.error,
    )
    return WorkerResult(
        agent_id=worker.id,
        agent_name=worker.name,
        status=AgentStatus.COMPLETED,
        findings=parsed.findings,
        event_id=event.id,
    )


async def _fail_worker(
    ctx: "OrchestrationContext", run: Run, team: Team, worker: Agent, event_id: str
) -> None:
    await ctx.finalize_event(run, event_id)
    await ctx.set_status(worker, AgentStatus.ERROR, team=team, run_id=run.run_id)
