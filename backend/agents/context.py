"""Orchestration context: the explicitly constructed home of session state.

One context owns the team registry, the Global Supervisor, the reasoning
provider and the event bus of a session. Agent status and findings, run state
and the execution log are only mutated through the helpers below, and every
mutation is published as exactly one Notification.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import structlog

from agents.provider import ReasoningProvider
from agents.registry import TeamRegistry, build_global_supervisor, reset_agent
from events.bus import EventBus
from events.types import ExecutionEvent, Notification, NotificationType
from models.domain import (
    IN_FLIGHT_STATUSES,
    Agent,
    AgentStatus,
    EventKind,
    Findings,
    Run,
    RunState,
    Team,
)

logger = structlog.get_logger()

SYSTEM_AGENT_ID = "sys"
SYSTEM_AGENT_NAME = "SYSTEM"


@dataclass
class OrchestrationContext:
    """Session-scoped state shared by the run controller and its stages.

    Attributes:
        session_id: Bus key for all notifications of this context
        provider: Reasoning provider used by every stage
        event_bus: Bus notifications are published on
        registry: Teams keyed by resource id
        global_supervisor: The single Global Supervisor of the session
    """

    session_id: str
    provider: ReasoningProvider
    event_bus: EventBus
    registry: TeamRegistry = field(default_factory=TeamRegistry)
    global_supervisor: Agent = field(default_factory=build_global_supervisor)

    async def notify(
        self,
        notification_type: NotificationType,
        run_id: str | None,
        data: dict[str, Any],
    ) -> None:
        await self.event_bus.publish(
            Notification(
                type=notification_type,
                session_id=self.session_id,
                run_id=run_id,
                data=data,
            )
        )

    # -------------------------------------------------------------------------
    # Run state
    # -------------------------------------------------------------------------

    async def transition(self, run: Run, target: RunState) -> None:
        """Move ``run`` along a state machine edge and publish the change."""
        previous = run.transition_to(target)
        logger.info(
            "run_state_changed",
            run_id=run.run_id,
            previous_state=previous.value,
            state=target.value,
        )
        await self.notify(
            NotificationType.RUN_STATE_CHANGED,
            run.run_id,
            {
                "run_id": run.run_id,
                "state": target.value,
                "previous_state": previous.value,
                "directive": run.directive,
                "error_message": run.error_message,
            },
        )

    # -------------------------------------------------------------------------
    # Agent state
    # -------------------------------------------------------------------------

    async def set_status(
        self,
        agent: Agent,
        status: AgentStatus,
        *,
        team: Team | None,
        run_id: str | None,
        task: str | None = None,
    ) -> None:
        """Set an agent's status; publishes only when it actually changes."""
        if task is not None:
            agent.current_task = task
        if agent.status == status:
            return
        agent.status = status
        await self._publish_status(agent, team=team, run_id=run_id)

    async def set_findings(
        self,
        agent: Agent,
        findings: Findings,
        *,
        team: Team | None,
        run_id: str | None,
    ) -> None:
        if agent.findings == findings:
            return
        agent.findings = findings
        await self._publish_findings(agent, team=team, run_id=run_id)

    async def _publish_status(
        self, agent: Agent, *, team: Team | None, run_id: str | None
    ) -> None:
        await self.notify(
            NotificationType.AGENT_STATUS_CHANGED,
            run_id,
            {
                "team_id": team.id if team else None,
                "agent_id": agent.id,
                "status": agent.status.value,
            },
        )

    async def _publish_findings(
        self, agent: Agent, *, team: Team | None, run_id: str | None
    ) -> None:
        await self.notify(
            NotificationType.AGENT_FINDINGS_CHANGED,
            run_id,
            {
                "team_id": team.id if team else None,
                "agent_id": agent.id,
                "findings": agent.findings.model_dump(),
            },
        )

    def agents_with_teams(
        self, teams: Iterable[Team]
    ) -> list[tuple[Team | None, Agent]]:
        """Global Supervisor first, then every agent of ``teams``."""
        pairs: list[tuple[Team | None, Agent]] = [(None, self.global_supervisor)]
        for team in teams:
            pairs.extend((team, agent) for agent in team.agents())
        return pairs

    async def reset_agents(self, teams: Iterable[Team], run_id: str) -> None:
        """Reset the Global Supervisor and ``teams`` for a new run.

        Team agents go through ``TeamRegistry.reset_findings``; a findings
        and/or status notification is published for each value that changed.
        """
        teams = list(teams)
        before = {
            agent.id: (agent.status, agent.findings)
            for _, agent in self.agents_with_teams(teams)
        }
        changed: list[tuple[Team | None, Agent]] = []
        if reset_agent(self.global_supervisor):
            changed.append((None, self.global_supervisor))
        changed.extend(self.registry.reset_findings(teams))

        for team, agent in changed:
            status, findings = before[agent.id]
            if findings != agent.findings:
                await self._publish_findings(agent, team=team, run_id=run_id)
            if status != agent.status:
                await self._publish_status(agent, team=team, run_id=run_id)
        logger.info("agents_reset", run_id=run_id, changed_agents=len(changed))

    async def settle_in_flight(
        self, teams: Iterable[Team], status: AgentStatus, run_id: str
    ) -> int:
        """Move every Thinking/Waiting/Working agent to ``status``.

        Returns:
            Number of agents that were in flight
        """
        settled = 0
        for team, agent in self.agents_with_teams(teams):
            if agent.status in IN_FLIGHT_STATUSES:
                await self.set_status(agent, status, team=team, run_id=run_id)
                settled += 1
        return settled

    # -------------------------------------------------------------------------
    # Execution log
    # -------------------------------------------------------------------------

    async def log_event(
        self,
        run: Run,
        *,
        kind: EventKind,
        content: str = "",
        from_agent: Agent | None = None,
        to_agent: Agent | None = None,
        is_streaming: bool = False,
    ) -> ExecutionEvent:
        """Append an entry to the run's log; ``from_agent=None`` means the system."""
        event = run.log.append(
            from_agent_id=from_agent.id if from_agent else SYSTEM_AGENT_ID,
            from_agent_name=from_agent.name if from_agent else SYSTEM_AGENT_NAME,
            to_agent_id=to_agent.id if to_agent else None,
            kind=kind,
            content=content,
            is_streaming=is_streaming,
        )
        await self.notify(
            NotificationType.LOG_APPENDED,
            run.run_id,
            {"event": event.model_dump(mode="json")},
        )
        return event

    async def stream_content(self, run: Run, event_id: str, chunk: str) -> None:
        run.log.append_content(event_id, chunk)
        await self.notify(
            NotificationType.LOG_UPDATED,
            run.run_id,
            {"event_id": event_id, "delta": chunk, "is_streaming": True},
        )

    async def finalize_event(
        self, run: Run, event_id: str, content: str | None = None
    ) -> bool:
        """Close a streaming entry; no-op (and no notification) if already final."""
        if not run.log.finalize(event_id, content):
            return False
        await self._publish_final(run, event_id)
        return True

    async def finalize_open_events(self, run: Run) -> int:
        """Close every still-streaming entry of ``run`` as-is (truncated)."""
        closed = run.log.finalize_streaming()
        for event in closed:
            await self._publish_final(run, event.id)
        return len(closed)

    async def _publish_final(self, run: Run, event_id: str) -> None:
        event = run.log.get(event_id)
        await self.notify(
            NotificationType.LOG_UPDATED,
            run.run_id,
            {
                "event_id": event_id,
                "content": event.content if event else "",
                "is_streaming": False,
            },
        )
