"""Multi-provider oracle factory.

An oracle is anything with a ``model`` name and an async ``generate(prompt)``
returning free text. Each concrete oracle goes through its provider's
circuit breaker and retries transient connection failures with backoff.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Protocol, runtime_checkable

import anthropic
import openai
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from storyglossary.config import settings
from storyglossary.core.logging import get_logger
from storyglossary.core.resilience import breaker_for, oracle_retry

logger = get_logger(__name__)


@runtime_checkable
class GlossaryOracle(Protocol):
    """Text generation backend used for extraction and consolidation."""

    model: str

    async def generate(self, prompt: str) -> str: ...


@lru_cache(maxsize=8)
def get_openai_client() -> AsyncOpenAI:
    """Get cached OpenAI async client."""
    return AsyncOpenAI(api_key=settings.openai_api_key)


@lru_cache(maxsize=4)
def get_anthropic_client() -> AsyncAnthropic:
    """Get cached Anthropic async client."""
    return AsyncAnthropic(api_key=settings.anthropic_api_key)


@lru_cache(maxsize=4)
def get_gemini_client():
    """Get cached Google GenAI client for Gemini models.

    Raises:
        ValueError: If no Gemini API key is configured.
    """
    if not settings.gemini_api_key:
        raise ValueError("GEMINI_API_KEY not configured, cannot create Gemini client")
    from google import genai

    return genai.Client(api_key=settings.gemini_api_key)


class _BreakerOracle:
    """Shared plumbing: breaker + retry around a provider-specific ``_complete``."""

    provider: str = ""

    def __init__(self, model: str, temperature: float | None = None) -> None:
        self.model = model
        self.temperature = settings.oracle_temperature if temperature is None else temperature
        self.breaker = breaker_for(self.provider)

    async def generate(self, prompt: str) -> str:
        return await self.breaker.call(self._generate_with_retry, prompt)

    @oracle_retry()
    async def _generate_with_retry(self, prompt: str) -> str:
        return await self._complete(prompt)

    async def _complete(self, prompt: str) -> str:
        raise NotImplementedError


class OpenAIOracle(_BreakerOracle):
    provider = "openai"

    async def _complete(self, prompt: str) -> str:
        try:
            response = await get_openai_client().chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.temperature,
            )
        except openai.APIConnectionError as exc:
            raise ConnectionError(str(exc)) from exc
        return response.choices[0].message.content or ""


class AnthropicOracle(_BreakerOracle):
    provider = "anthropic"
    max_tokens = 8192

    async def _complete(self, prompt: str) -> str:
        try:
            response = await get_anthropic_client().messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.temperature,
            )
        except anthropic.APIConnectionError as exc:
            raise ConnectionError(str(exc)) from exc
        return "".join(block.text for block in response.content if block.type == "text")


class GeminiOracle(_BreakerOracle):
    provider = "gemini"

    async def _complete(self, prompt: str) -> str:
        from google.genai import types

        response = await get_gemini_client().aio.models.generate_content(
            model=self.model,
            contents=prompt,
            config=types.GenerateContentConfig(temperature=self.temperature),
        )
        return response.text or ""


_ORACLES: dict[str, type[_BreakerOracle]] = {
    "openai": OpenAIOracle,
    "anthropic": AnthropicOracle,
    "gemini": GeminiOracle,
}


def get_oracle(spec: str | None = None) -> GlossaryOracle:
    """Build an oracle from a 'provider:model' spec (defaults to the extraction spec)."""
    provider, model = settings.parse_llm_spec(spec or settings.llm_extraction)
    oracle_cls = _ORACLES.get(provider)
    if oracle_cls is None:
        logger.warning("oracle_unknown_provider", provider=provider, fallback="openai")
        oracle_cls = OpenAIOracle
    return oracle_cls(model)
