"""Configuration management for the orchestration engine."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional


def _float_env(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _int_env(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


@dataclass(frozen=True)
class GenerationConfig:
    """OpenAI-compatible generation service configuration."""

    api_key: str
    model: str = "gpt-4o-mini"
    base_url: Optional[str] = None
    request_timeout: float = 60.0
    temperature: float = 0.2


@dataclass(frozen=True)
class LimiterConfig:
    """Process-wide throttle on generation-service calls."""

    max_concurrent: int = 3
    queue_timeout: Optional[float] = 30.0


@dataclass(frozen=True)
class OrchestratorSettings:
    """Per-job execution knobs shared by every job in the process."""

    context_limit_bytes: int = 400_000
    context_limit_fraction: float = 0.8
    max_retries: int = 2
    retry_backoff: float = 1.0
    reasoning_timeout: Optional[float] = 60.0
    compression_timeout: Optional[float] = 60.0


@dataclass(frozen=True)
class Config:
    """Application configuration loaded from environment variables."""

    generation: Optional[GenerationConfig] = None
    limiter: LimiterConfig = field(default_factory=LimiterConfig)
    orchestrator: OrchestratorSettings = field(default_factory=OrchestratorSettings)
    environment: str = "development"
    log_level: str = "INFO"
    log_format: str = "plain"

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables."""
        api_key = os.getenv("OPENAI_API_KEY")

        generation = None
        if api_key:
            generation = GenerationConfig(
                api_key=api_key,
                model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
                base_url=os.getenv("OPENAI_BASE_URL") or None,
                request_timeout=_float_env("LLM_TIMEOUT", "60"),
            )

        queue_timeout = _float_env("LLM_QUEUE_TIMEOUT", "30")
        limiter = LimiterConfig(
            max_concurrent=_int_env("LLM_MAX_CONCURRENT", "3"),
            queue_timeout=queue_timeout if queue_timeout > 0 else None,
        )

        orchestrator = OrchestratorSettings(
            context_limit_bytes=_int_env("CONTEXT_LIMIT_BYTES", "400000"),
            context_limit_fraction=_float_env("CONTEXT_LIMIT_FRACTION", "0.8"),
            max_retries=_int_env("AGENT_MAX_RETRIES", "2"),
            retry_backoff=_float_env("AGENT_RETRY_BACKOFF", "1.0"),
            reasoning_timeout=_float_env("REASONING_TIMEOUT", "60"),
            compression_timeout=_float_env("COMPRESSION_TIMEOUT", "60"),
        )

        return cls(
            generation=generation,
            limiter=limiter,
            orchestrator=orchestrator,
            environment=os.getenv("ENVIRONMENT", "development"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "plain"),
        )


# Global config instance
config = Config.from_env()
