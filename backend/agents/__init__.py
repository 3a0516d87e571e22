"""Agent hierarchy, reasoning providers, prompts and the orchestration graph.

This module exports the key components needed for run execution:
- Team registry and roster templates for topology nodes
- Reasoning providers (deterministic heuristic and LLM-backed)
- Stage functions for planning, delegation and worker execution
- Aggregation of worker findings into team and mission reports
- The LangGraph orchestration graph for one run
"""

from agents.aggregation import aggregate_mission, aggregate_team, classify_findings
from agents.context import OrchestrationContext
from agents.findings import FindingsParseResult, parse_findings_marker
from agents.llm_provider import LLMReasoningProvider
from agents.orchestration_graph import (
    OrchestrationGraph,
    OrchestrationState,
    create_orchestration_graph,
    create_orchestration_initial_state,
)
from agents.provider import (
    HeuristicReasoningProvider,
    ProviderFailure,
    ReasoningProvider,
    Stage,
)
from agents.registry import TeamRegistry, build_global_supervisor, build_team_for_node
from agents.utils import LLMClient, LLMResponse, MockLLMClient, extract_json_from_response

__all__ = [
    # Registry
    "TeamRegistry",
    "build_global_supervisor",
    "build_team_for_node",
    # Providers
    "HeuristicReasoningProvider",
    "LLMReasoningProvider",
    "ProviderFailure",
    "ReasoningProvider",
    "Stage",
    # Findings and aggregation
    "FindingsParseResult",
    "parse_findings_marker",
    "aggregate_mission",
    "aggregate_team",
    "classify_findings",
    # Utils
    "LLMClient",
    "LLMResponse",
    "MockLLMClient",
    "extract_json_from_response",
    # Orchestration
    "OrchestrationContext",
    "OrchestrationGraph",
    "OrchestrationState",
    "create_orchestration_graph",
    "create_orchestration_initial_state",
]
