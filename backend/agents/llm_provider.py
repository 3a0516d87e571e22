"""Language-model backed reasoning provider.

Uses ``LLMClient`` (LiteLLM) for every role. When the model's answer cannot be
used (no JSON, unknown ids, incomplete delegation) the provider falls back to
the heuristic provider for that call, the same way a bad orchestrator answer
falls back to a deterministic plan. Transport errors are not swallowed: they
propagate and the stage reports a ProviderFailure.
"""

from collections.abc import AsyncIterator
from typing import Any

import structlog

from agents.prompts import (
    format_team_catalog,
    get_delegation_prompt,
    get_mission_summary_prompt,
    get_planner_prompt,
    get_team_summary_prompt,
    get_worker_prompt,
)
from agents.provider import HeuristicReasoningProvider, ReasoningProvider
from agents.utils import LLMClient, extract_json_from_response
from config import settings
from models.domain import (
    Agent,
    Assignment,
    MissionReport,
    PlanItem,
    Team,
    TeamReport,
)

logger = structlog.get_logger()


class LLMReasoningProvider(ReasoningProvider):
    """Reasoning provider that asks a language model for every decision.

    Usage:
        >>> provider = LLMReasoningProvider(LLMClient())
        >>> plan = await provider.plan("check replication", teams)
    """

    name = "llm"

    def __init__(
        self,
        llm_client: LLMClient | None = None,
        fallback: ReasoningProvider | None = None,
        planner_model: str | None = None,
        supervisor_model: str | None = None,
        worker_model: str | None = None,
    ) -> None:
        self.llm_client = llm_client or LLMClient()
        self.fallback = fallback or HeuristicReasoningProvider()
        self.planner_model = planner_model or settings.planner_model
        self.supervisor_model = supervisor_model or settings.supervisor_model
        self.worker_model = worker_model or settings.worker_model

    async def plan(self, directive: str, teams: list[Team]) -> list[PlanItem]:
        if not teams:
            return []
        response = await self.llm_client.call(
            messages=[
                {"role": "system", "content": get_planner_prompt(directive)},
                {"role": "user", "content": f"{format_team_catalog(teams)}\n\nDirective: {directive}"},
            ],
            model=self.planner_model,
            temperature=0.2,
        )
        known = {team.id for team in teams}
        items = _parse_plan(extract_json_from_response(response.content), known)
        if not items:
            logger.warning(
                "llm_plan_unusable_fallback",
                model=self.planner_model,
                response_preview=response.content[:200],
            )
            return await self.fallback.plan(directive, teams)
        return items

    async def delegate(self, team: Team, instruction: str) -> list[Assignment]:
        response = await self.llm_client.call(
            messages=[
                {"role": "system", "content": get_delegation_prompt(team)},
                {"role": "user", "content": instruction},
            ],
            model=self.supervisor_model,
            temperature=0.2,
        )
        tasks = _parse_assignments(extract_json_from_response(response.content))
        member_ids = [member.id for member in team.members]
        if set(tasks) != set(member_ids):
            logger.warning(
                "llm_delegation_incomplete_fallback",
                team_id=team.id,
                expected=member_ids,
                received=sorted(tasks),
            )
            return await self.fallback.delegate(team, instruction)
        return [Assignment(agent_id=agent_id, task=tasks[agent_id]) for agent_id in member_ids]

    async def stream_worker_output(
        self, agent: Agent, task: str, context: str
    ) -> AsyncIterator[str]:
        stream = self.llm_client.stream(
            messages=[
                {"role": "system", "content": get_worker_prompt(agent, context)},
                {"role": "user", "content": task},
            ],
            model=self.worker_model,
        )
        try:
            async for chunk in stream:
                yield chunk
        finally:
            await stream.aclose()

    async def summarize_team(
        self, team: Team, instruction: str, report: TeamReport
    ) -> str:
        response = await self.llm_client.call(
            messages=[
                {"role": "system", "content": get_team_summary_prompt(team)},
                {
                    "role": "user",
                    "content": f"Instruction: {instruction}\n\nFindings:\n{report.content}",
                },
            ],
            model=self.supervisor_model,
        )
        return response.content.strip()

    async def summarize_mission(
        self, directive: str, reports: list[TeamReport], mission: MissionReport
    ) -> str:
        team_reports = "\n\n".join(report.content for report in reports)
        response = await self.llm_client.call(
            messages=[
                {"role": "system", "content": get_mission_summary_prompt()},
                {
                    "role": "user",
                    "content": (
                        f"Directive: {directive}\n\nMission status:\n{mission.content}"
                        f"\n\nTeam reports:\n{team_reports}"
                    ),
                },
            ],
            model=self.planner_model,
        )
        return response.content.strip()


def _parse_plan(parsed: dict[str, Any] | None, known_team_ids: set[str]) -> list[PlanItem]:
    """Keep the well-formed plan entries that name a known team."""
    if not parsed or not isinstance(parsed.get("plan"), list):
        return []
    items: list[PlanItem] = []
    for entry in parsed["plan"]:
        if not isinstance(entry, dict):
            continue
        team_id = entry.get("team_id")
        instruction = entry.get("instruction")
        if team_id not in known_team_ids or not isinstance(instruction, str):
            logger.debug("llm_plan_entry_dropped", entry=entry)
            continue
        priority = entry.get("priority")
        items.append(
            PlanItem(
                team_id=team_id,
                instruction=instruction.strip(),
                priority=priority if isinstance(priority, int) else None,
            )
        )
    return items


def _parse_assignments(parsed: dict[str, Any] | None) -> dict[str, str]:
    if not parsed or not isinstance(parsed.get("assignments"), list):
        return {}
    tasks: dict[str, str] = {}
    for entry in parsed["assignments"]:
        if not isinstance(entry, dict):
            continue
        agent_id = entry.get("agent_id")
        task = entry.get("task")
        if isinstance(agent_id, str) and isinstance(task, str) and agent_id not in tasks:
            tasks[agent_id] = task.strip()
    return tasks
