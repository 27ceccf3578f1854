"""
Stance classifier providers (OpenAI-compatible chat completion APIs).
"""
from __future__ import annotations

import logging
from typing import List, Protocol

from openai import AsyncOpenAI

from leanwatch.config import Settings

logger = logging.getLogger(__name__)


class Classifier(Protocol):
    name: str
    model: str

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Return the raw text content of the model's reply."""
        ...


class ProviderError(RuntimeError):
    pass


class OpenAICompatibleClassifier:
    """Chat-completions classifier; DeepSeek is reached through its OpenAI-compatible endpoint."""

    def __init__(
        self,
        name: str,
        model: str,
        api_key: str,
        base_url: str | None = None,
        timeout: float = 30.0,
        max_tokens: int = 200,
    ):
        self.name = name
        self.model = model
        self.max_tokens = max_tokens
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        response = await self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            response_format={"type": "json_object"},
            temperature=0,
            max_tokens=self.max_tokens,
        )
        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ProviderError(f"{self.name} returned an empty response")
        return content.strip()


def build_providers(settings: Settings) -> List[Classifier]:
    """
    Build the configured providers in fallback order, skipping those without an API key.
    """
    available = {}
    if settings.DEEPSEEK_API_KEY:
        available["deepseek"] = lambda: OpenAICompatibleClassifier(
            "deepseek",
            settings.DEEPSEEK_MODEL,
            settings.DEEPSEEK_API_KEY,
            base_url=settings.DEEPSEEK_BASE_URL,
            timeout=settings.CLASSIFIER_TIMEOUT_SECONDS,
        )
    if settings.OPENAI_API_KEY:
        available["openai"] = lambda: OpenAICompatibleClassifier(
            "openai",
            settings.OPENAI_MODEL,
            settings.OPENAI_API_KEY,
            timeout=settings.CLASSIFIER_TIMEOUT_SECONDS,
        )

    providers: List[Classifier] = [available[name]() for name in settings.classifier_order if name in available]
    if not providers:
        logger.warning("No classifier API keys configured; discussion stance will be unavailable")
    return providers
