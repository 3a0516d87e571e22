"""HTTP API routes for the EntropyOps orchestration backend.

This module defines the HTTP endpoints for topology ingestion, the agent
hierarchy, run control and health checks. Real-time notifications are
handled via WebSocket in websocket.py.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Annotated

import structlog
from fastapi import APIRouter, HTTPException, Path, Query, status
from fastapi.responses import PlainTextResponse

from events.types import ExecutionEvent
from models.domain import Run, Team
from models.schemas import (
    CancelRunResponse,
    HealthResponse,
    RunDetailResponse,
    RunResponse,
    RunSummaryResponse,
    StartRunRequest,
    TeamsResponse,
    TopologyRequest,
    UpdateMembersRequest,
)
from run_manager import RunInProgressError

if TYPE_CHECKING:
    from run_manager import RunManager

logger = structlog.get_logger(__name__)

router = APIRouter()


# Run manager dependency (set during application startup)
_run_manager: RunManager | None = None


def set_run_manager(manager: RunManager) -> None:
    """Set the run manager instance for the routes.

    This should be called during application startup to inject the run
    manager dependency.
    """
    global _run_manager
    _run_manager = manager
    logger.info("run_manager_configured")


def get_run_manager() -> RunManager:
    """Get the run manager instance.

    Raises:
        RuntimeError: If the run manager has not been configured.
    """
    if _run_manager is None:
        logger.error("run_manager_not_configured")
        raise RuntimeError(
            "RunManager not configured. Call set_run_manager() during startup."
        )
    return _run_manager


def _require_run(manager: RunManager, run_id: str) -> Run:
    run = manager.get_run(run_id)
    if run is None:
        logger.warning("run_not_found", run_id=run_id)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Run {run_id} not found",
        )
    return run


def _teams_response(manager: RunManager) -> TeamsResponse:
    context = manager.context
    return TeamsResponse(
        global_supervisor=context.global_supervisor,
        teams=context.registry.active_teams(),
    )


# -----------------------------------------------------------------------------
# Topology and teams
# -----------------------------------------------------------------------------


@router.put(
    "/api/topology",
    response_model=TeamsResponse,
    summary="Ingest topology",
    description="Register the current topology nodes; existing teams are reused.",
)
async def put_topology(request: TopologyRequest) -> TeamsResponse:
    manager = get_run_manager()
    teams = manager.ingest_topology(request.nodes)
    logger.info("topology_ingested", nodes=len(request.nodes), teams=len(teams))
    return _teams_response(manager)


@router.get(
    "/api/teams",
    response_model=TeamsResponse,
    summary="Get agent hierarchy",
    description="Global Supervisor and the teams of the active topology.",
)
async def get_teams() -> TeamsResponse:
    return _teams_response(get_run_manager())


@router.put(
    "/api/teams/{team_id}/members",
    response_model=Team,
    summary="Replace a team's workers",
    description="Explicit roster edit. Rejected while a run is in flight.",
)
async def put_team_members(
    team_id: Annotated[str, Path(description="The team ID")],
    request: UpdateMembersRequest,
) -> Team:
    manager = get_run_manager()
    active = manager.get_active_run()
    if active is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Run {active.run_id} is in progress",
        )
    try:
        return manager.context.registry.update_members(team_id, request.members)
    except KeyError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Team {team_id} not found",
        ) from None
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        ) from e


# -----------------------------------------------------------------------------
# Runs
# -----------------------------------------------------------------------------


@router.post(
    "/api/runs",
    response_model=RunResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a run",
    description="Trigger a run of the given directive over the active topology.",
)
async def start_run(request: StartRunRequest) -> RunResponse:
    """Start a run and return connection details for notification streaming.

    Raises:
        HTTPException: 409 if a run is already in flight, 422 on a blank directive.
    """
    manager = get_run_manager()

    try:
        run_id = await manager.start_run(request.directive, scope=request.scope)
    except RunInProgressError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        ) from e
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        ) from e

    run = manager.get_run(run_id)
    logger.info(
        "run_created",
        run_id=run_id,
        directive_length=len(request.directive),
        scoped=request.scope is not None,
    )
    return RunResponse(
        run_id=run_id,
        session_id=manager.session_id,
        websocket_url=f"/ws/{manager.session_id}",
        state=run.state if run else "Idle",
    )


@router.get(
    "/api/runs",
    response_model=list[RunSummaryResponse],
    summary="List runs",
    description="List the session's runs, most recent first.",
)
async def list_runs(
    limit: Annotated[int, Query(description="Maximum runs to return", ge=1, le=200)] = 25,
) -> list[RunSummaryResponse]:
    runs = list(reversed(get_run_manager().get_all_runs()))[:limit]
    return [RunSummaryResponse.from_run(run) for run in runs]


@router.get(
    "/api/runs/{run_id}",
    response_model=RunDetailResponse,
    summary="Get run details",
)
async def get_run(
    run_id: Annotated[str, Path(description="The run ID")],
) -> RunDetailResponse:
    return RunDetailResponse.from_run(_require_run(get_run_manager(), run_id))


@router.get(
    "/api/runs/{run_id}/events",
    response_model=list[ExecutionEvent],
    summary="Get execution log",
    description="The run's execution log in append order.",
)
async def get_run_events(
    run_id: Annotated[str, Path(description="The run ID")],
    after: Annotated[
        int | None,
        Query(description="Only events with a sequence greater than this", ge=-1),
    ] = None,
) -> list[ExecutionEvent]:
    events = _require_run(get_run_manager(), run_id).log.events()
    if after is not None:
        events = [event for event in events if event.sequence > after]
    return events


@router.get(
    "/api/runs/{run_id}/transcript",
    response_class=PlainTextResponse,
    summary="Get run transcript",
    description="Plain-text rendering of the execution log.",
)
async def get_run_transcript(
    run_id: Annotated[str, Path(description="The run ID")],
) -> PlainTextResponse:
    run = _require_run(get_run_manager(), run_id)
    return PlainTextResponse(run.log.render_transcript())


@router.post(
    "/api/runs/{run_id}/cancel",
    response_model=CancelRunResponse,
    summary="Cancel a run",
    description="Cancel a run at its current suspension point.",
)
async def cancel_run(
    run_id: Annotated[str, Path(description="The run ID")],
) -> CancelRunResponse:
    manager = get_run_manager()
    run = _require_run(manager, run_id)
    cancelled = await manager.cancel_run(run_id)
    logger.info("run_cancel_requested", run_id=run_id, cancelled=cancelled)
    return CancelRunResponse(run_id=run_id, cancelled=cancelled, state=run.state)


# -----------------------------------------------------------------------------
# Health
# -----------------------------------------------------------------------------


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Health check with the active provider and run.",
)
async def health_check() -> HealthResponse:
    try:
        manager = get_run_manager()
    except RuntimeError:
        # RunManager not configured yet (e.g., during startup)
        return HealthResponse(status="unhealthy", timestamp=time.time())

    active = manager.get_active_run()
    return HealthResponse(
        status="healthy",
        timestamp=time.time(),
        provider=manager.context.provider.name,
        session_id=manager.session_id,
        active_run_id=active.run_id if active else None,
    )
