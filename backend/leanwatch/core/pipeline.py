"""
Phase sequencing for one community analysis: items -> bias -> discussion -> done.
"""
from __future__ import annotations

import asyncio
import json
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from leanwatch.core.discussion import DiscussionAnalyzer, DiscussionProgress
from leanwatch.core.scoring import provisional_score
from leanwatch.schemas import BiasRecord, FeedItem
from leanwatch.sources.bias_index import SourceBiasIndex
from leanwatch.sources.reddit import FeedError, RedditClient
from leanwatch.store import Store
from leanwatch.utils import parse_community_ref

logger = logging.getLogger(__name__)

GENERIC_ERROR = "analysis failed"


@dataclass
class PhaseEvent:
    name: str
    data: Dict[str, Any]

    def encode(self) -> str:
        """Render as a text/event-stream frame."""
        return f"event: {self.name}\ndata: {json.dumps(self.data, ensure_ascii=False)}\n\n"


def _is_http_url(url: str) -> bool:
    return url.startswith(("http://", "https://"))


def build_items_payload(community_id: str, items: List[FeedItem]) -> Dict[str, Any]:
    return {
        "communityId": community_id,
        "items": [item.to_payload() for item in items],
        "totalCount": len(items),
    }


def build_bias_payload(urls: List[str], bias_by_url: Mapping[str, BiasRecord]) -> Dict[str, Any]:
    """Label counts, per-URL details and the source-only provisional score."""
    labels = [bias_by_url[url].bias_label for url in urls if url in bias_by_url]
    breakdown = Counter(label for label in labels if label)
    provisional = provisional_score(labels)
    return {
        "biasBreakdown": dict(breakdown),
        "details": [{"url": url, **bias_by_url[url].to_payload()} for url in urls if url in bias_by_url],
        "urlsChecked": len(urls),
        "provisionalScore": provisional.to_payload() if provisional else None,
    }


class AnalysisPipeline:
    """Drives one analysis run and reports each phase as an event."""

    def __init__(
        self,
        feed: RedditClient,
        bias_index: SourceBiasIndex,
        analyzer: DiscussionAnalyzer,
        store: Optional[Store] = None,
        item_limit: int = 25,
        window: str = "month",
    ):
        self.feed = feed
        self.bias_index = bias_index
        self.analyzer = analyzer
        self.store = store
        self.item_limit = item_limit
        self.window = window

    async def run(self, community_ref: str) -> AsyncIterator[PhaseEvent]:
        """
        Run the analysis, yielding events in order: items, bias, discussion (one per batch
        plus a final one), then done. Fatal failures end the stream with an error event.
        """
        try:
            community_id = parse_community_ref(community_ref)
        except ValueError:
            yield PhaseEvent("error", {"message": "invalid community reference"})
            return

        try:
            items = await self.feed.get_items(community_id, self.item_limit, self.window)
            yield PhaseEvent("items", build_items_payload(community_id, items))

            urls = [item.external_url for item in items if _is_http_url(item.external_url)]
            bias_by_url = await self.bias_index.lookup(urls)
            bias_payload = build_bias_payload(urls, bias_by_url)
            yield PhaseEvent("bias", bias_payload)

            candidates = self.analyzer.select(items, bias_by_url)
            final: Optional[DiscussionProgress] = None
            async for snapshot in self.analyzer.analyze(community_id, candidates, bias_by_url):
                final = snapshot
                yield PhaseEvent("discussion", snapshot.to_payload())

            cached = bool(final and final.cached)
            if final is not None and not cached:
                await self._record(community_id, final, bias_payload["biasBreakdown"])
            yield PhaseEvent("done", {"ok": True, "cached": True} if cached else {"ok": True})
        except FeedError as e:
            logger.error("Analysis of %s aborted: %s", community_id, e)
            yield PhaseEvent("error", {"message": str(e)})
        except Exception:
            logger.exception("Analysis of %s failed", community_id)
            yield PhaseEvent("error", {"message": GENERIC_ERROR})

    async def _record(self, community_id: str, final: DiscussionProgress, bias_breakdown: Dict[str, int]) -> None:
        """Append the final score to the analysis history (best-effort)."""
        if self.store is None:
            return
        breakdown = {
            "biasBreakdown": bias_breakdown,
            "samples": len(final.samples),
            "label": final.aggregate.label,
        }
        try:
            await asyncio.to_thread(
                self.store.save_analysis,
                community_id,
                final.aggregate.lean_normalized,
                final.aggregate.confidence,
                breakdown,
            )
        except SQLAlchemyError as e:
            logger.warning("Could not record analysis for %s: %s", community_id, type(e).__name__)
