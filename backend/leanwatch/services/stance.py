"""
Stance inference: provider fallback, strict JSON parsing and a cache-and-persist layer.
"""
from __future__ import annotations

import asyncio
import json
import logging
import math
import re
from typing import Any, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from leanwatch.cache import TTLCache
from leanwatch.core.scoring import normalize_bias_label
from leanwatch.schemas import StanceAssessment
from leanwatch.services.prompts import DEFAULT_PROMPT_VERSION, SYSTEM_PROMPT, PromptKey, default_prompt, resolve_prompt
from leanwatch.services.providers import Classifier
from leanwatch.store import Store
from leanwatch.utils import sha256_hex

logger = logging.getLogger(__name__)

DEFAULT_INPUT_CHARS = 8000
DEFAULT_CACHE_TTL = 30 * 24 * 60 * 60

_ALIGNMENTS = {"aligns", "opposes", "mixed", "unclear"}
_FENCED_JSON = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


def fallback_assessment(reason: str = "") -> StanceAssessment:
    """Sentinel returned when no provider produced a usable answer."""
    return StanceAssessment(alignment="unclear", confidence=0.0, provider="fallback", model="none", reasoning=reason)


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def parse_assessment(raw: str, provider: str = "unknown", model: str = "unknown") -> StanceAssessment:
    """
    Parse a provider reply into a StanceAssessment.

    The reply must be one JSON object (a fenced ```json block is accepted). Missing or
    ill-typed fields fall back to neutral values.

    Raises:
        ValueError: If the reply is not a JSON object
    """
    text = (raw or "").strip()
    fenced = _FENCED_JSON.match(text)
    if fenced:
        text = fenced.group(1)

    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("classifier reply is not a JSON object")

    alignment = str(data.get("alignment") or "").strip().lower()
    stance_label = data.get("stance_label", data.get("stanceLabel"))
    stance_label = normalize_bias_label(stance_label) if isinstance(stance_label, str) else None
    if stance_label is not None and stance_label.lower() == "none":
        stance_label = None

    return StanceAssessment(
        alignment=alignment if alignment in _ALIGNMENTS else "unclear",
        alignment_score=_number(data.get("alignment_score", data.get("alignmentScore"))),
        confidence=_number(data.get("confidence")) or 0.0,
        stance_label=stance_label,
        stance_score=_number(data.get("stance_score", data.get("stanceScore"))),
        provider=provider,
        model=model,
        reasoning=str(data.get("reasoning") or "")[:300],
    )


class StanceInferenceAdapter:
    """Classifies discussion text against a stance, trying providers in order."""

    def __init__(
        self,
        providers: Sequence[Classifier],
        cache: TTLCache,
        store: Optional[Store] = None,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        input_chars: int = DEFAULT_INPUT_CHARS,
    ):
        self.providers: List[Classifier] = list(providers)
        self._cache = cache
        self._store = store
        self._cache_ttl = cache_ttl
        self._input_chars = input_chars

    @property
    def available(self) -> bool:
        return bool(self.providers)

    @staticmethod
    def content_hash(prompt_key: str, prompt_version: str, text: str) -> str:
        return sha256_hex(prompt_key, prompt_version, text)

    async def classify(
        self,
        text: str,
        prompt_key: PromptKey,
        prompt_version: str = DEFAULT_PROMPT_VERSION,
    ) -> StanceAssessment:
        """
        Classify text, serving from cache or the durable store when possible.

        Never raises for provider trouble: if every provider fails the fallback sentinel
        (unclear, zero confidence) is returned and nothing is cached.

        Raises:
            ValueError: If the prompt key or version is unknown
        """
        default_prompt(prompt_key, prompt_version)
        if not text or not text.strip():
            return fallback_assessment("empty text")

        content_hash = self.content_hash(prompt_key, prompt_version, text)
        cache_key = f"ai:{content_hash}"

        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        stored = await self._load(content_hash)
        if stored is not None:
            self._cache.set(cache_key, stored, self._cache_ttl)
            return stored

        payload = text[: self._input_chars]
        failures: List[str] = []
        for provider in self.providers:
            prompt = resolve_prompt(provider.name, prompt_key, prompt_version)
            try:
                raw = await provider.complete(SYSTEM_PROMPT, f"{prompt}\nText:\n{payload}")
                assessment = parse_assessment(raw, provider.name, provider.model)
            except Exception as e:  # SDK, transport and parse errors all mean "try the next provider"
                failures.append(f"{provider.name}: {type(e).__name__}")
                logger.warning("Classifier %s failed (%s), trying next provider", provider.name, type(e).__name__)
                continue

            logger.info(
                "Classified via %s/%s: %s (score=%s, confidence=%.2f)",
                provider.name, provider.model, assessment.alignment, assessment.alignment_score, assessment.confidence,
            )
            self._cache.set(cache_key, assessment, self._cache_ttl)
            await self._persist(content_hash, prompt_key, prompt_version, assessment)
            return assessment

        if failures:
            logger.warning("All classifier providers failed: %s", "; ".join(failures))
            return fallback_assessment("all providers failed")
        return fallback_assessment("no providers configured")

    async def _load(self, content_hash: str) -> Optional[StanceAssessment]:
        if self._store is None:
            return None
        try:
            return await asyncio.to_thread(self._store.get_classification, content_hash)
        except SQLAlchemyError as e:
            logger.warning("Classification lookup failed: %s", type(e).__name__)
            return None

    async def _persist(self, content_hash: str, prompt_key: str, prompt_version: str, assessment: StanceAssessment) -> None:
        if self._store is None:
            return
        try:
            await asyncio.to_thread(self._store.save_classification, content_hash, prompt_key, prompt_version, assessment)
        except SQLAlchemyError as e:
            logger.warning("Could not persist classification %s: %s", content_hash[:12], type(e).__name__)
