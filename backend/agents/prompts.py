"""System prompts for the agent roles of the orchestration hierarchy.

This module contains the prompt templates used by the LLM reasoning provider:
- PLANNER_PROMPT: Global Supervisor choosing teams for a directive
- DELEGATION_PROMPT: Team Supervisor splitting an instruction across workers
- WORKER_PROMPT: Worker diagnosing its slice of the resource
- TEAM_SUMMARY_PROMPT / MISSION_SUMMARY_PROMPT: Narrative reports
"""

from models.domain import Agent, Team

BASE_OPERATIONS_PROMPT = """\
You are part of EntropyOps, a hierarchical team of infrastructure \
diagnosis agents.

## Hierarchy
- A Global Orchestrator receives the operator's directive and picks which
  resource teams should act on it.
- Each team is bound to one infrastructure resource and led by a Team Lead.
- Team Leads split their instruction across their specialist workers.
- Workers analyze their resource and report warnings and critical issues.

## Ground Rules
- Stay within the resource and specialty you are given.
- Be concise and concrete; operators read your output in a live log.
- Never invent resources or agents that were not listed to you."""


def compose_prompt_sections(*sections: str) -> str:
    """Compose prompt sections into a single deterministic system prompt."""
    cleaned = [section.strip() for section in sections if section and section.strip()]
    return "\n\n".join(cleaned)


def build_role_contract(*, role: str, objective: str) -> str:
    """Build the role block shared by all system prompts."""
    return f"""## Your Role
Role: {role}
Objective: {objective}"""


PLANNER_PROMPT = """\
## Instructions
Given the directive and the list of available teams, choose the teams that
must act on it and write one instruction per chosen team.

Respond with this exact JSON structure:

{
  "plan": [
    {"team_id": "team-order-db", "instruction": "Check replication lag...", "priority": 1}
  ]
}

## Rules
- Use only team ids from the list you were given.
- Choose at least one team; when nothing matches, choose the single most
  relevant team.
- List teams in the order they should run.
- Respond with ONLY the JSON object. No markdown, no explanation."""


DELEGATION_PROMPT = """\
## Instructions
Split your team's instruction into exactly one task per worker listed below.
Every worker must receive a task that fits its specialty.

Respond with this exact JSON structure:

{
  "assignments": [
    {"agent_id": "team-order-db-w1", "task": "Inspect slow query log..."}
  ]
}

## Rules
- One assignment per worker id, no omissions, no extra ids.
- Respond with ONLY the JSON object. No markdown, no explanation."""


WORKER_PROMPT = """\
## Instructions
Carry out your task and narrate what you check and what you find, in a few
short lines.

End your answer with a findings line in exactly this form:

SUMMARY: {"warnings": <int>, "critical": <int>}

Count only issues you actually identified. Use zeros when the resource is
healthy."""


TEAM_SUMMARY_PROMPT = """\
## Instructions
Write a short report (2-4 sentences) for the Global Orchestrator on what your
workers found. The headline classification has already been computed; do not
contradict it and do not restate the counts as a table."""


MISSION_SUMMARY_PROMPT = """\
## Instructions
Write a short mission summary (3-5 sentences) for the operator covering the
directive, the teams involved, and the overall state. The classification has
already been computed; do not contradict it."""


def get_planner_prompt(directive: str) -> str:
    return compose_prompt_sections(
        BASE_OPERATIONS_PROMPT,
        build_role_contract(
            role="Global Orchestrator",
            objective=f"Plan the response to this directive: {directive.strip()}",
        ),
        PLANNER_PROMPT,
    )


def get_delegation_prompt(team: Team) -> str:
    """Get the Team Lead prompt, listing the workers it must cover."""
    workers = "\n".join(
        f"- {member.id}: {member.name} ({member.specialty or 'General'})"
        for member in team.members
    )
    return compose_prompt_sections(
        BASE_OPERATIONS_PROMPT,
        build_role_contract(
            role=team.supervisor.name,
            objective=f"Coordinate {team.name} ({team.kind.value} resource).",
        ),
        DELEGATION_PROMPT,
        f"## Your Workers\n{workers}",
    )


def get_worker_prompt(agent: Agent, context: str) -> str:
    return compose_prompt_sections(
        BASE_OPERATIONS_PROMPT,
        build_role_contract(
            role=f"{agent.name}, specialist in {agent.specialty or 'general checks'}",
            objective="Diagnose your slice of the resource.",
        ),
        WORKER_PROMPT,
        f"## Context From Your Team Lead\n{context}",
    )


def get_team_summary_prompt(team: Team) -> str:
    return compose_prompt_sections(
        BASE_OPERATIONS_PROMPT,
        build_role_contract(role=team.supervisor.name, objective=f"Report for {team.name}."),
        TEAM_SUMMARY_PROMPT,
    )


def get_mission_summary_prompt() -> str:
    return compose_prompt_sections(
        BASE_OPERATIONS_PROMPT,
        build_role_contract(
            role="Global Orchestrator",
            objective="Summarize the mission for the operator.",
        ),
        MISSION_SUMMARY_PROMPT,
    )


def format_team_catalog(teams: list[Team]) -> str:
    """Render the teams in scope as the planner's user message."""
    lines = ["Available teams:"]
    for team in teams:
        specialties = ", ".join(m.specialty or m.name for m in team.members)
        lines.append(f"- {team.id}: {team.name} [{team.kind.value}] ({specialties})")
    return "\n".join(lines)
