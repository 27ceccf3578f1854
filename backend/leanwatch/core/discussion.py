"""
Batched discussion analysis.

For each candidate post: fetch its top-level comments, classify how the comments relate
to the post's stance, and fold the result into an engagement weighted lean. Candidates are
processed in small concurrent batches and a fresh aggregate is reported after each batch.
"""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence, Tuple

from leanwatch.cache import TTLCache
from leanwatch.core.scoring import (
    NEUTRAL_SCORE,
    aggregate,
    alignment_to_score,
    bias_label_to_score,
    engagement_weight,
    refine_lean,
    score_to_label,
)
from leanwatch.schemas import AggregateScore, BiasRecord, DiscussionSample, FeedItem, Progress, StanceAssessment
from leanwatch.services.prompts import DEFAULT_PROMPT_VERSION
from leanwatch.services.stance import StanceInferenceAdapter
from leanwatch.sources.reddit import RedditClient

logger = logging.getLogger(__name__)

SAMPLE_COMMENTS = 3


@dataclass
class DiscussionProgress:
    """Snapshot of the discussion phase after a batch (or the final/cached result)."""

    samples: List[DiscussionSample]
    aggregate: AggregateScore
    progress: Progress
    cached: bool = False
    final: bool = False

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "samples": [sample.to_payload() for sample in self.samples],
            "leanRaw": self.aggregate.lean_raw,
            "leanNormalized": self.aggregate.lean_normalized,
            "label": self.aggregate.label,
            "confidence": self.aggregate.confidence,
            "progress": self.progress.to_payload(),
        }
        if self.cached:
            payload["cached"] = True
        return payload


def select_candidates(
    items: Sequence[FeedItem],
    bias_by_url: Mapping[str, BiasRecord],
    limit: int = 6,
) -> List[FeedItem]:
    """Posts linking to a source with a known bias first; otherwise the top-ranked posts."""
    with_bias = [item for item in items if item.external_url and _label_for(item, bias_by_url)]
    if with_bias:
        return with_bias[:limit]
    return list(items[:limit])


def _label_for(item: FeedItem, bias_by_url: Mapping[str, BiasRecord]) -> Optional[str]:
    record = bias_by_url.get(item.external_url)
    return record.bias_label if record else None


def run_cache_key(
    community_id: str,
    window: str,
    limit: int,
    batch_size: int,
    candidates: Sequence[FeedItem],
) -> str:
    parts = [community_id, window, str(limit), str(batch_size), *(item.thread_ref for item in candidates)]
    return "disc:" + "|".join(parts)


def build_classifier_input(item: FeedItem, bias_label: Optional[str], bodies: Sequence[str]) -> str:
    """Text handed to the classifier: optional source bias, the title, then the comments."""
    lines: List[str] = []
    if bias_label:
        score = bias_label_to_score(bias_label)
        lines.append(f"SOURCE_BIAS: label={bias_label}, score={'' if score is None else f'{score:.2f}'}")
    lines.append(f"TITLE: {item.title}")
    lines.append("---")
    if bodies:
        lines.append("\n---\n".join(bodies))
    return "\n".join(lines)


def derive_base_stance(bias_label: Optional[str], stance: StanceAssessment) -> Tuple[Optional[float], bool]:
    """
    Pick the reference stance the comments are measured against.

    Returns:
        (base score, defaulted) where defaulted is True when the title stance could not be
        resolved and the neutral midpoint was used instead
    """
    source_score = bias_label_to_score(bias_label)
    if source_score is not None:
        return source_score, False
    if stance.stance_score is not None:
        return stance.stance_score, False
    label_score = bias_label_to_score(stance.stance_label)
    if label_score is not None:
        return label_score, False
    if stance.stance_label is None or stance.alignment == "unclear":
        return NEUTRAL_SCORE, True
    return None, False


class DiscussionAnalyzer:
    def __init__(
        self,
        feed: RedditClient,
        stance: StanceInferenceAdapter,
        cache: TTLCache,
        limit: int = 6,
        batch_size: int = 3,
        window: str = "month",
        comment_timeout: float = 10.0,
        jitter_range_ms: Tuple[int, int] = (50, 200),
        cache_ttl: float = 600,
        prompt_version: str = DEFAULT_PROMPT_VERSION,
        sleep=asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self.feed = feed
        self.stance = stance
        self.cache = cache
        self.limit = limit
        self.batch_size = max(1, batch_size)
        self.window = window
        self.comment_timeout = comment_timeout
        self.jitter_range_ms = jitter_range_ms
        self.cache_ttl = cache_ttl
        self.prompt_version = prompt_version
        self._sleep = sleep
        self._rng = rng or random.Random()

    def select(self, items: Sequence[FeedItem], bias_by_url: Mapping[str, BiasRecord]) -> List[FeedItem]:
        return select_candidates(items, bias_by_url, self.limit)

    async def analyze(
        self,
        community_id: str,
        candidates: Sequence[FeedItem],
        bias_by_url: Mapping[str, BiasRecord],
    ) -> AsyncIterator[DiscussionProgress]:
        """
        Analyze the discussion of the candidate posts, yielding progress after every batch.

        The last yielded snapshot has final=True. A cached final result for the same
        community, parameters and candidates is yielded alone, marked cached.
        """
        candidates = list(candidates)
        total = len(candidates)
        cache_key = run_cache_key(community_id, self.window, self.limit, self.batch_size, candidates)

        cached = self.cache.get(cache_key)
        if cached is not None:
            samples, score = cached
            logger.info("Discussion result for %s served from cache", community_id)
            yield DiscussionProgress(list(samples), score, Progress(done=total, total=total), cached=True, final=True)
            return

        logger.info("Analyzing discussion for %s: %d candidates", community_id, total)
        samples: List[DiscussionSample] = []
        done = 0
        for start in range(0, total, self.batch_size):
            batch = candidates[start : start + self.batch_size]
            # Shielded so a consumer going away does not cancel half a batch
            results = await asyncio.shield(
                asyncio.gather(*(self._analyze_one_safely(item, _label_for(item, bias_by_url)) for item in batch))
            )
            samples.extend(results)
            done += len(batch)
            logger.info("Discussion progress for %s: %d/%d", community_id, done, total)
            yield DiscussionProgress(list(samples), aggregate(samples), Progress(done=done, total=total))

        final = DiscussionProgress(list(samples), aggregate(samples), Progress(done=done, total=total), final=True)
        self.cache.set(cache_key, (final.samples, final.aggregate), self.cache_ttl)
        yield final

    async def _analyze_one_safely(self, item: FeedItem, bias_label: Optional[str]) -> DiscussionSample:
        try:
            return await self._analyze_one(item, bias_label)
        except Exception:
            logger.exception("Discussion analysis failed for %s", item.thread_ref or item.title)
            return DiscussionSample(
                item=item,
                bias_label=bias_label,
                engagement=engagement_weight(item.comment_count, item.score),
            )

    async def _analyze_one(self, item: FeedItem, bias_label: Optional[str]) -> DiscussionSample:
        low, high = self.jitter_range_ms
        await self._sleep(self._rng.uniform(low, high) / 1000.0)

        sample = DiscussionSample(
            item=item,
            bias_label=bias_label,
            engagement=engagement_weight(item.comment_count, item.score),
        )
        if not item.thread_ref:
            return sample

        bodies = await self.feed.get_thread(item.thread_ref, self.comment_timeout)
        if bodies is None:
            return sample
        sample.sample_comments = list(bodies[:SAMPLE_COMMENTS])

        if not self.stance.available:
            return sample

        prompt_key = "stance_source" if bias_label_to_score(bias_label) is not None else "stance_title"
        stance = await self.stance.classify(build_classifier_input(item, bias_label, bodies), prompt_key, self.prompt_version)
        if stance.is_fallback:
            return sample

        base, defaulted = derive_base_stance(bias_label, stance)
        alignment = alignment_to_score(stance.alignment_score, stance.alignment)
        refined = refine_lean(base, alignment) if base is not None else None

        sample.stance = stance
        sample.base_score = base
        sample.base_defaulted = defaulted
        sample.alignment_score = alignment
        sample.refined_lean = refined
        sample.refined_label = score_to_label(refined) if refined is not None else None
        return sample
