"""Application configuration using Pydantic Settings.

This module provides centralized configuration management for the EntropyOps
orchestration backend. All settings can be overridden via environment
variables or a .env file.
"""

import json
import logging
from typing import Any, Literal

import structlog
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Attributes:
        reasoning_provider: Which reasoning provider drives planning, delegation
            and worker output ("heuristic" needs no network, "llm" uses LiteLLM).
        planner_model: Model used by the Global Supervisor for planning.
        supervisor_model: Model used by team supervisors for delegation and reports.
        worker_model: Model used for streamed worker output.
        llm_request_timeout_seconds: Timeout for a single LLM request.
        llm_max_retries: Retries on transient LLM failures before giving up.
        llm_fallback_model: Optional model tried once after retries are exhausted.
        run_timeout_seconds: Wall-clock budget for a run; 0 disables the timeout.
            Expiry is treated as a cancellation, not a separate terminal state.
        max_notification_history: Notifications retained per session for replay.
        backend_port: Port for the FastAPI server.
        frontend_port: Port for the dashboard (for CORS).
        cors_origins: Allowed origins for CORS.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_format: Log format (json or text).
    """

    # Reasoning provider
    reasoning_provider: Literal["heuristic", "llm"] = "heuristic"
    # Model names must include provider prefix for LiteLLM (e.g., gemini/, xai/)
    planner_model: str = "gemini/gemini-2.5-pro"
    supervisor_model: str = "gemini/gemini-2.5-pro"
    worker_model: str = "gemini/gemini-2.5-flash"
    llm_request_timeout_seconds: int = 120
    llm_max_retries: int = 3
    llm_fallback_model: str | None = None

    # Run limits
    run_timeout_seconds: float = 0.0

    # Notifications
    max_notification_history: int = 5000

    # Server Configuration
    backend_port: int = 8000
    frontend_port: int = 3000
    cors_origins: str | list[str] = ["http://localhost:3000"]
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Any) -> list[str]:
        """Parse CORS origins from string or list.

        Accepts:
        - JSON array: '["http://localhost:3000"]'
        - Comma-separated: 'http://localhost:3000,http://localhost:8080'
        - Single value: 'http://localhost:3000'
        - Already a list: ["http://localhost:3000"]
        """
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return ["http://localhost:3000"]

    @field_validator("run_timeout_seconds")
    @classmethod
    def non_negative_timeout(cls, v: float) -> float:
        """Reject negative run budgets."""
        if v < 0:
            raise ValueError("run_timeout_seconds must be >= 0")
        return v

    model_config = SettingsConfigDict(
        # Support running `uvicorn` from either the repo root or `backend/`
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure structured logging for the application.

    Sets up structlog with appropriate processors for either JSON or console output.

    Args:
        log_level: The minimum log level to emit (DEBUG, INFO, WARNING, ERROR).
        log_format: Output format - 'json' for production, 'text' for development.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Global settings instance
settings = Settings()

# Configure logging on module import
configure_logging(settings.log_level, settings.log_format)

logger = structlog.get_logger(__name__)
