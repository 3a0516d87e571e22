"""Run manager: the run controller of the orchestration core.

This module provides the RunManager class that manages the lifecycle of runs,
from trigger through the orchestration graph to a terminal state.

The RunManager coordinates between:
- OrchestrationContext: Teams, agents, provider and event bus of the session
- OrchestrationGraph: The LangGraph flow that executes one run
- EventBus: For real-time notifications to the dashboard

It is the only component that moves a run into a terminal state
(Completed, Cancelled, Errored), and it enforces a single-run-at-a-time
policy: triggering while a run is in flight raises RunInProgressError.

Usage:
    >>> context = OrchestrationContext(
    ...     session_id="sess_abc", provider=HeuristicReasoningProvider(), event_bus=bus
    ... )
    >>> manager = RunManager(context)
    >>> manager.ingest_topology(nodes)
    >>>
    >>> run_id = await manager.start_run("check consistency", scope=["order-db"])
    >>> run = await manager.wait_for_run(run_id)
    >>> print(run.state)
    >>>
    >>> await manager.cleanup_all()
"""

import asyncio
import contextlib
import uuid
from collections.abc import Iterable

import structlog

from agents.context import OrchestrationContext
from agents.orchestration_graph import (
    OrchestrationGraph,
    OrchestrationState,
    create_orchestration_graph,
    create_orchestration_initial_state,
)
from agents.provider import ProviderFailure
from config import settings
from events.bus import EventBus
from events.log import ExecutionLog
from models.domain import (
    AgentStatus,
    EventKind,
    ResourceNode,
    Run,
    RunState,
    Team,
)

logger = structlog.get_logger()


class RunInProgressError(RuntimeError):
    """Raised when a run is triggered while another one is still in flight."""

    def __init__(self, active_run_id: str) -> None:
        super().__init__(f"Run '{active_run_id}' is still in progress")
        self.active_run_id = active_run_id


class RunManager:
    """Manages the lifecycle of orchestration runs.

    The RunManager handles:
    - Run creation, ID generation and the single-run policy
    - Resetting agent findings at the start of every run
    - Graph execution in a background task, with an optional timeout
    - Cancellation, and settling agents and the log on every terminal state

    Thread Safety:
        Trigger checks use an asyncio.Lock so two concurrent triggers cannot
        both pass the single-run check.

    Attributes:
        context: The orchestration context of the session
        run_timeout_seconds: Per-run timeout, 0 to disable
    """

    def __init__(
        self,
        context: OrchestrationContext,
        run_timeout_seconds: float | None = None,
    ) -> None:
        self.context = context
        self.run_timeout_seconds = (
            run_timeout_seconds if run_timeout_seconds is not None
            else settings.run_timeout_seconds
        )
        self._runs: dict[str, Run] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._cancel_reasons: dict[str, str] = {}
        self._active_run_id: str | None = None
        self._lock = asyncio.Lock()
        logger.info(
            "run_manager_initialized",
            session_id=context.session_id,
            provider=context.provider.name,
            run_timeout_seconds=self.run_timeout_seconds,
        )

    @property
    def event_bus(self) -> EventBus:
        return self.context.event_bus

    @property
    def session_id(self) -> str:
        return self.context.session_id

    def _generate_run_id(self) -> str:
        """Generate a unique run identifier ("run_{12 hex chars}")."""
        return f"run_{uuid.uuid4().hex[:12]}"

    # -------------------------------------------------------------------------
    # Topology
    # -------------------------------------------------------------------------

    def ingest_topology(self, nodes: Iterable[ResourceNode]) -> list[Team]:
        """Register the current topology; existing teams are reused."""
        return self.context.registry.ensure_teams(nodes)

    # -------------------------------------------------------------------------
    # Run lifecycle
    # -------------------------------------------------------------------------

    async def start_run(
        self, directive: str, scope: Iterable[str] | None = None
    ) -> str:
        """Trigger a new run and return its id.

        The run executes in a background task; use ``wait_for_run`` to await
        its terminal state.

        Args:
            directive: Free-text directive for the Global Supervisor
            scope: Resource ids the run is restricted to, None for all teams.
                An empty scope is valid and ends in NoApplicableTeams.

        Raises:
            ValueError: If the directive is blank
            RunInProgressError: If another run has not reached a terminal state
        """
        directive = directive.strip()
        if not directive:
            raise ValueError("Directive must not be empty")

        async with self._lock:
            active = self.get_active_run()
            if active is not None:
                logger.warning(
                    "run_rejected_in_progress",
                    active_run_id=active.run_id,
                    active_state=active.state.value,
                )
                raise RunInProgressError(active.run_id)

            run_id = self._generate_run_id()
            run = Run(
                run_id=run_id,
                directive=directive,
                scope=frozenset(scope) if scope is not None else None,
                log=ExecutionLog(run_id),
            )
            self._runs[run_id] = run
            self._active_run_id = run_id

        registry = self.context.registry
        await self.context.reset_agents(registry.all_teams(), run_id)
        scope_teams = registry.filter_by_scope(registry.active_teams(), run.scope)

        if run.is_terminal:
            # Cancelled while resetting; nothing left to schedule.
            return run_id

        graph = create_orchestration_graph(self.context, run)
        initial_state = create_orchestration_initial_state(run, scope_teams)
        task = asyncio.create_task(
            self._execute_run(run, graph, initial_state), name=f"run_{run_id}"
        )
        self._tasks[run_id] = task

        def _remove_task(t: asyncio.Task[None], rid: str = run_id) -> None:
            self._tasks.pop(rid, None)

        task.add_done_callback(_remove_task)

        logger.info(
            "run_started",
            run_id=run_id,
            directive_preview=directive[:100],
            scope=sorted(run.scope) if run.scope is not None else None,
            scope_teams=len(scope_teams),
        )
        return run_id

    async def _execute_run(
        self,
        run: Run,
        graph: OrchestrationGraph,
        initial_state: OrchestrationState,
    ) -> None:
        """Run the graph in the background and settle the terminal state."""
        try:
            if self.run_timeout_seconds > 0:
                await asyncio.wait_for(
                    graph.run(initial_state), timeout=self.run_timeout_seconds
                )
            else:
                await graph.run(initial_state)

        except asyncio.CancelledError:
            reason = self._cancel_reasons.get(run.run_id, "user_cancelled")
            logger.info("run_cancelled", run_id=run.run_id, state=run.state.value, reason=reason)
            await self._settle_cancelled(run, reason)
            raise

        except TimeoutError:
            logger.warning(
                "run_timeout",
                run_id=run.run_id,
                state=run.state.value,
                timeout_seconds=self.run_timeout_seconds,
            )
            await self._settle_cancelled(run, "timeout")

        except ProviderFailure as e:
            logger.error(
                "run_provider_failure",
                run_id=run.run_id,
                stage=e.stage.value,
                team_id=e.team_id,
                agent_id=e.agent_id,
                error=e.message,
            )
            await self._settle_errored(run, e.describe())

        except Exception as e:
            logger.error(
                "run_unexpected_error",
                run_id=run.run_id,
                state=run.state.value,
                error_type=type(e).__name__,
                error=str(e),
            )
            await self._settle_errored(
                run, f"Unexpected {type(e).__name__} during {run.state.value}: {e}"
            )

        else:
            await self.context.transition(run, RunState.COMPLETED)
            logger.info(
                "run_complete",
                run_id=run.run_id,
                teams=len(run.team_reports),
                mission_level=run.mission_level.value if run.mission_level else None,
                events=len(run.log),
            )

    async def _settle_cancelled(self, run: Run, reason: str) -> None:
        """Finalize open streams, idle in-flight agents, log once, mark Cancelled."""
        if run.is_terminal:
            return
        ctx = self.context
        truncated = await ctx.finalize_open_events(run)
        settled = await ctx.settle_in_flight(
            ctx.registry.all_teams(), AgentStatus.IDLE, run.run_id
        )
        run.error_message = f"cancelled: {reason}"
        await ctx.log_event(
            run,
            kind=EventKind.SYSTEM,
            content=(
                f"Run cancelled ({reason}) during {run.state.value}. "
                "Partial results remain in the log."
            ),
        )
        await ctx.transition(run, RunState.CANCELLED)
        logger.info(
            "run_settled_cancelled",
            run_id=run.run_id,
            truncated_events=truncated,
            agents_reset=settled,
        )

    async def _settle_errored(self, run: Run, message: str) -> None:
        """Finalize open streams, mark in-flight agents Error, log once, mark Errored."""
        if run.is_terminal:
            return
        ctx = self.context
        await ctx.finalize_open_events(run)
        await ctx.settle_in_flight(ctx.registry.all_teams(), AgentStatus.ERROR, run.run_id)
        run.error_message = message
        await ctx.log_event(run, kind=EventKind.ERROR, content=message)
        await ctx.transition(run, RunState.ERRORED)

    async def cancel_run(self, run_id: str, reason: str = "user_cancelled") -> bool:
        """Cancel a run at its current suspension point.

        Args:
            run_id: The run to cancel
            reason: Recorded in the cancellation event

        Returns:
            True if the run is now Cancelled, False if it is unknown or had
            already reached a terminal state.
        """
        run = self._runs.get(run_id)
        if run is None or run.is_terminal:
            logger.info(
                "cancel_run_noop",
                run_id=run_id,
                state=run.state.value if run else None,
            )
            return False

        logger.info("cancel_run_start", run_id=run_id, current_state=run.state.value)
        self._cancel_reasons[run_id] = reason

        task = self._tasks.get(run_id)
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        # The task settles itself once it has started; a task cancelled before
        # its first step never ran its handler.
        await self._settle_cancelled(run, reason)
        self._cancel_reasons.pop(run_id, None)

        logger.info("cancel_run_complete", run_id=run_id, state=run.state.value)
        return run.state == RunState.CANCELLED

    async def wait_for_run(self, run_id: str) -> Run:
        """Wait until the run's background task has finished.

        Raises:
            KeyError: If the run doesn't exist
        """
        run = self._runs.get(run_id)
        if run is None:
            raise KeyError(f"Run '{run_id}' not found")
        task = self._tasks.get(run_id)
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await asyncio.shield(task)
        return run

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_run(self, run_id: str) -> Run | None:
        return self._runs.get(run_id)

    def get_all_runs(self) -> list[Run]:
        """All runs of the session, oldest first."""
        return list(self._runs.values())

    def get_active_run(self) -> Run | None:
        """The run that blocks new triggers, if any."""
        if self._active_run_id is None:
            return None
        run = self._runs.get(self._active_run_id)
        if run is None or run.is_terminal:
            return None
        return run

    async def cleanup_all(self) -> None:
        """Cancel in-flight runs and close the session's notification stream.

        Called during application shutdown.
        """
        logger.info("cleanup_all_start", run_count=len(self._runs))

        for run_id in list(self._tasks):
            try:
                await self.cancel_run(run_id, reason="shutdown")
            except Exception as e:
                logger.error("cleanup_run_cancel_failed", run_id=run_id, error=str(e))

        await self.event_bus.close_session(self.session_id, reason="shutdown")
        logger.info("cleanup_all_complete")
