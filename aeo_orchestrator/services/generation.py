"""Client for the external structured-generation service."""
from __future__ import annotations

import abc
import json
import logging
from dataclasses import dataclass
from typing import Any, Generic, Optional, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError

from aeo_orchestrator.config import GenerationConfig
from aeo_orchestrator.core.context import PayloadSummarizer
from aeo_orchestrator.core.errors import GenerationError
from aeo_orchestrator.core.models import AgentResult

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)

# Characters of serialized payload sent along with a compression prompt.
COMPRESSION_PREVIEW_CHARS = 2000


@dataclass(slots=True)
class GenerationResult(Generic[SchemaT]):
    """Validated structured output plus token usage when the backend reports it."""

    data: SchemaT
    usage_tokens: Optional[int] = None


class BriefSummary(BaseModel):
    summary: str = Field(..., description="One sentence summary")


class GenerationService(abc.ABC):
    """Structured generation: a prompt in, a schema-validated object out."""

    @abc.abstractmethod
    async def generate(
        self,
        prompt: str,
        schema: Type[SchemaT],
        *,
        system: Optional[str] = None,
    ) -> GenerationResult[SchemaT]:
        """Generate an object matching ``schema``; raise ``GenerationError`` on failure."""


def extract_json(content: str) -> str:
    """Strip markdown code fences that models like to wrap JSON in."""
    if "```json" in content:
        return content.split("```json")[1].split("```")[0].strip()
    if "```" in content:
        return content.split("```")[1].split("```")[0].strip()
    return content.strip()


class OpenAIGenerationService(GenerationService):
    """Generation backed by an OpenAI-compatible chat completions API."""

    def __init__(self, config: GenerationConfig) -> None:
        self._config = config
        self._client: Optional[Any] = None

    @property
    def model(self) -> str:
        return self._config.model

    def _get_client(self) -> Any:
        """Lazy initialization of the actual client."""
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(
                api_key=self._config.api_key,
                base_url=self._config.base_url,
                timeout=self._config.request_timeout,
            )
        return self._client

    async def generate(
        self,
        prompt: str,
        schema: Type[SchemaT],
        *,
        system: Optional[str] = None,
    ) -> GenerationResult[SchemaT]:
        schema_hint = json.dumps(schema.model_json_schema())
        system_prompt = (system or "You are a precise analysis assistant.") + (
            "\nRespond with a single JSON object matching this JSON schema:\n" + schema_hint
        )
        try:
            response = await self._get_client().chat.completions.create(
                model=self._config.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": prompt},
                ],
                temperature=self._config.temperature,
                response_format={"type": "json_object"},
            )
        except Exception as exc:  # noqa: BLE001
            raise GenerationError(f"Generation request failed: {exc}") from exc

        content = response.choices[0].message.content or ""
        try:
            data = schema.model_validate_json(extract_json(content))
        except ValidationError as exc:
            raise GenerationError(f"Generation output did not match {schema.__name__}: {exc}") from exc

        usage = getattr(response, "usage", None)
        return GenerationResult(data=data, usage_tokens=getattr(usage, "total_tokens", None))


def payload_summarizer(generation: GenerationService) -> PayloadSummarizer:
    """Build a ``JobContext.compress`` summarizer backed by the generation service."""

    async def summarize(agent_id: str, result: AgentResult) -> Any:
        preview = json.dumps(result.payload, default=str)[:COMPRESSION_PREVIEW_CHARS]
        generated = await generation.generate(
            f"Agent: {agent_id}\nResult preview:\n{preview}",
            BriefSummary,
            system="Generate a very brief one-sentence summary of this agent result.",
        )
        return {"compressed": True, "brief": generated.data.summary}

    return summarize
