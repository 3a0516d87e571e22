"""Models module for the domain model and Pydantic API schemas.

This module exposes the orchestration domain types and the request/response
models used by the API.
"""

from models.domain import (
    Agent,
    AgentRole,
    AgentStatus,
    Assignment,
    EventKind,
    Findings,
    HealthLevel,
    MissionReport,
    PlanItem,
    ResourceKind,
    ResourceNode,
    Run,
    RunState,
    Team,
    TeamReport,
    WorkerResult,
)
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

__all__ = [
    # Domain
    "Agent",
    "AgentRole",
    "AgentStatus",
    "Assignment",
    "EventKind",
    "Findings",
    "HealthLevel",
    "MissionReport",
    "PlanItem",
    "ResourceKind",
    "ResourceNode",
    "Run",
    "RunState",
    "Team",
    "TeamReport",
    "WorkerResult",
    # API schemas
    "CancelRunResponse",
    "HealthResponse",
    "RunDetailResponse",
    "RunResponse",
    "RunSummaryResponse",
    "StartRunRequest",
    "TeamsResponse",
    "TopologyRequest",
    "UpdateMembersRequest",
]
