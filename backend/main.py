"""FastAPI application entry point for the EntropyOps orchestration backend.

This module initializes the FastAPI application with all middleware,
routers, and event handlers configured.

Usage:
    uv run uvicorn main:app --reload
"""

import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agents.context import OrchestrationContext
from agents.llm_provider import LLMReasoningProvider
from agents.provider import HeuristicReasoningProvider, ReasoningProvider
from agents.utils import LLMClient
from api.routes import router
from api.routes import set_run_manager as set_routes_run_manager
from api.websocket import set_run_manager as set_websocket_run_manager
from api.websocket import websocket_router
from config import configure_logging, settings
from events import get_event_bus
from run_manager import RunManager

# Configure structured logging
configure_logging(settings.log_level, settings.log_format)

logger = structlog.get_logger(__name__)


def build_provider() -> ReasoningProvider:
    """Create the reasoning provider selected by ``settings.reasoning_provider``."""
    if settings.reasoning_provider == "llm":
        return LLMReasoningProvider(
            LLMClient(
                fallback_model=settings.llm_fallback_model,
                retry_attempts=settings.llm_max_retries,
            )
        )
    return HeuristicReasoningProvider()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events.

    Creates the session's orchestration context and run manager on startup;
    cancels in-flight runs and closes the notification stream on shutdown.

    Args:
        app: The FastAPI application instance.

    Yields:
        None during application runtime.
    """
    logger.info(
        "application_starting",
        backend_port=settings.backend_port,
        log_level=settings.log_level,
        reasoning_provider=settings.reasoning_provider,
    )

    context = OrchestrationContext(
        session_id=f"sess_{uuid.uuid4().hex[:12]}",
        provider=build_provider(),
        event_bus=get_event_bus(),
    )
    run_manager = RunManager(context)

    set_routes_run_manager(run_manager)
    set_websocket_run_manager(run_manager)

    app.state.run_manager = run_manager

    logger.info("application_started", session_id=context.session_id)

    yield

    logger.info("application_shutting_down")
    await app.state.run_manager.cleanup_all()
    logger.info("application_shutdown_complete")


app = FastAPI(
    title="EntropyOps",
    description="Hierarchical multi-agent orchestration over an infrastructure "
    "topology: planning, delegation, streamed worker execution and aggregation.",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["*"],
)

# Include HTTP routes
app.include_router(router, tags=["runs"])

# Include WebSocket routes
app.include_router(websocket_router, tags=["websocket"])


@app.get("/", include_in_schema=False)
async def root() -> dict[str, str]:
    """Root endpoint pointing at the API documentation."""
    return {
        "message": "EntropyOps API",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.backend_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
