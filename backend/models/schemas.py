"""Pydantic schemas for API request/response models.

This module defines the data models used by the HTTP API and WebSocket handlers.
All models use Pydantic v2 with strict type validation.
"""

from typing import Literal

from pydantic import BaseModel, Field

from models.domain import (
    Agent,
    HealthLevel,
    PlanItem,
    ResourceNode,
    Run,
    RunState,
    Team,
    TeamReport,
)


class TopologyRequest(BaseModel):
    """Request body for ingesting the current topology."""

    nodes: list[ResourceNode] = Field(
        description="Infrastructure nodes; one team is kept per node id",
        examples=[[{"id": "order-db", "label": "Order DB", "kind": "Database"}]],
    )


class TeamsResponse(BaseModel):
    """The agent hierarchy of the session."""

    global_supervisor: Agent = Field(description="The session's Global Supervisor")
    teams: list[Team] = Field(description="Teams of the active topology, in node order")


class UpdateMembersRequest(BaseModel):
    """Request body for replacing a team's worker roster."""

    members: list[Agent] = Field(
        min_length=1,
        description="New worker roster, in execution order",
    )


class StartRunRequest(BaseModel):
    """Request body for triggering a run."""

    directive: str = Field(
        min_length=1,
        max_length=10000,
        description="Free-text directive for the Global Supervisor",
        examples=["Check consistency of the order database"],
    )
    scope: list[str] | None = Field(
        default=None,
        description="Resource ids the run is restricted to; omit for all teams",
        examples=[["order-db"]],
    )


class RunResponse(BaseModel):
    """Response for run creation."""

    run_id: str = Field(
        description="Unique run identifier",
        examples=["run_abc123def456"],
    )
    session_id: str = Field(description="Session the run belongs to")
    websocket_url: str = Field(
        description="WebSocket URL for real-time notifications",
        examples=["/ws/sess_abc123def456"],
    )
    state: RunState = Field(description="Current run state")


class RunSummaryResponse(BaseModel):
    """Summary information for listing runs."""

    run_id: str = Field(description="Unique run identifier")
    directive: str = Field(description="The run's directive")
    scope: list[str] | None = Field(default=None, description="Resource id scope")
    state: RunState = Field(description="Current run state")
    started_at: float = Field(description="Unix timestamp of the trigger")
    completed_at: float | None = Field(
        default=None,
        description="Unix timestamp of the terminal transition",
    )
    error_message: str | None = Field(
        default=None,
        description="Failure or cancellation reason",
    )
    mission_level: HealthLevel | None = Field(
        default=None,
        description="Classification of the mission summary",
    )
    event_count: int = Field(default=0, ge=0, description="Execution log length")

    @classmethod
    def from_run(cls, run: Run) -> "RunSummaryResponse":
        return cls(**_summary_fields(run))


class RunDetailResponse(RunSummaryResponse):
    """Detailed run information."""

    plan: list[PlanItem] = Field(default_factory=list, description="Plan in execution order")
    team_reports: list[TeamReport] = Field(
        default_factory=list,
        description="Team reports in plan order",
    )

    @classmethod
    def from_run(cls, run: Run) -> "RunDetailResponse":
        return cls(
            **_summary_fields(run),
            plan=list(run.plan),
            team_reports=list(run.team_reports),
        )


def _summary_fields(run: Run) -> dict:
    return {
        "run_id": run.run_id,
        "directive": run.directive,
        "scope": sorted(run.scope) if run.scope is not None else None,
        "state": run.state,
        "started_at": run.started_at,
        "completed_at": run.completed_at,
        "error_message": run.error_message,
        "mission_level": run.mission_level,
        "event_count": len(run.log),
    }


class CancelRunResponse(BaseModel):
    """Response for a cancellation request."""

    run_id: str = Field(description="The run that was targeted")
    cancelled: bool = Field(description="True if this request cancelled the run")
    state: RunState = Field(description="Run state after the request")


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["healthy", "unhealthy"] = Field(
        description="Overall health status",
    )
    timestamp: float = Field(
        description="Current server timestamp",
    )
    version: str = Field(
        default="0.1.0",
        description="API version",
    )
    provider: str = Field(
        default="heuristic",
        description="Active reasoning provider",
    )
    session_id: str | None = Field(
        default=None,
        description="Session id to subscribe to over WebSocket",
    )
    active_run_id: str | None = Field(
        default=None,
        description="Run currently in flight, if any",
    )
