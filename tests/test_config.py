"""Tests for environment configuration and logging setup."""
from __future__ import annotations

import json
import logging

import pytest

from aeo_orchestrator.config import Config
from aeo_orchestrator.logging_config import StructuredFormatter, setup_logging


def test_defaults_without_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("OPENAI_API_KEY", "LLM_MAX_CONCURRENT", "LLM_QUEUE_TIMEOUT", "CONTEXT_LIMIT_BYTES"):
        monkeypatch.delenv(name, raising=False)

    loaded = Config.from_env()

    assert loaded.generation is None
    assert loaded.limiter.max_concurrent == 3
    assert loaded.limiter.queue_timeout == 30.0
    assert loaded.orchestrator.context_limit_bytes == 400_000
    assert loaded.orchestrator.context_limit_fraction == 0.8


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("OPENAI_MODEL", "gpt-test")
    monkeypatch.setenv("LLM_MAX_CONCURRENT", "5")
    monkeypatch.setenv("LLM_QUEUE_TIMEOUT", "0")
    monkeypatch.setenv("AGENT_MAX_RETRIES", "4")

    loaded = Config.from_env()

    assert loaded.generation is not None
    assert loaded.generation.model == "gpt-test"
    assert loaded.limiter.max_concurrent == 5
    assert loaded.limiter.queue_timeout is None
    assert loaded.orchestrator.max_retries == 4


def test_invalid_number_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LLM_MAX_CONCURRENT", "many")

    with pytest.raises(ValueError, match="LLM_MAX_CONCURRENT"):
        Config.from_env()


def test_structured_formatter_emits_json() -> None:
    record = logging.LogRecord("aeo_orchestrator.test", logging.INFO, __file__, 1, "phase %s done", ("One",), None)
    record.job_id = "job-1"

    entry = json.loads(StructuredFormatter().format(record))

    assert entry["message"] == "phase One done"
    assert entry["level"] == "INFO"
    assert entry["job_id"] == "job-1"


def test_setup_logging_replaces_handlers() -> None:
    logger = setup_logging("debug", "json", logger_name="aeo_orchestrator.test_setup")
    setup_logging("debug", "json", logger_name="aeo_orchestrator.test_setup")

    assert logger.level == logging.DEBUG
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0].formatter, StructuredFormatter)
