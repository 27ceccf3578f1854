import asyncio
import json
from typing import Callable, Dict, List, Optional, Union

import pytest

from leanwatch.cache import TTLCache
from leanwatch.core.discussion import DiscussionAnalyzer
from leanwatch.schemas import FeedItem
from leanwatch.services.stance import StanceInferenceAdapter
from leanwatch.store import Store


async def no_sleep(_seconds: float) -> None:
    return None


class RecordingSleep:
    def __init__(self):
        self.waits: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.waits.append(seconds)


class FakeClassifier:
    """Replies with canned text; a reply may be an exception to raise or a callable of the user prompt."""

    def __init__(self, name: str, reply: Union[str, Exception, Callable[[str], str]], model: str = "fake-model"):
        self.name = name
        self.model = model
        self.reply = reply
        self.calls: List[str] = []

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        self.calls.append(user_prompt)
        if isinstance(self.reply, Exception):
            raise self.reply
        if callable(self.reply):
            return self.reply(user_prompt)
        return self.reply


class FakeFeed:
    def __init__(
        self,
        items: Optional[List[FeedItem]] = None,
        threads: Optional[Dict[str, Union[List[str], None, Exception]]] = None,
        items_error: Optional[Exception] = None,
    ):
        self.items = items or []
        self.threads = threads or {}
        self.items_error = items_error
        self.thread_calls: List[str] = []

    async def get_items(self, community_id, limit=25, window="month"):
        if self.items_error is not None:
            raise self.items_error
        return list(self.items[:limit])

    async def get_thread(self, permalink, timeout=10.0):
        self.thread_calls.append(permalink)
        result = self.threads.get(permalink, [])
        if isinstance(result, Exception):
            raise result
        return result

    async def search_communities(self, query, limit=10):
        return []


def stance_reply(**fields) -> str:
    return json.dumps(fields)


def make_item(key: str, url: str = "", comments: int = 0, score: int = 0, title: Optional[str] = None) -> FeedItem:
    return FeedItem(
        title=title or f"Post {key}",
        external_url=url,
        thread_ref=f"/r/test/comments/{key}/post_{key}/",
        author="someone",
        score=score,
        comment_count=comments,
    )


def make_analyzer(feed, providers, cache=None, store=None, **kwargs) -> DiscussionAnalyzer:
    cache = cache or TTLCache()
    stance = StanceInferenceAdapter(providers, cache, store)
    kwargs.setdefault("sleep", no_sleep)
    return DiscussionAnalyzer(feed, stance, cache, **kwargs)


def collect(agen) -> list:
    async def _run():
        return [value async for value in agen]

    return asyncio.run(_run())


@pytest.fixture
def store() -> Store:
    s = Store("sqlite://")
    s.create_all()
    s.add_bias_sources(
        [
            {"source_name": "CNN", "source_url": "cnn.com", "bias": "Left", "credibility": "Medium Credibility",
             "factual_reporting": "Mostly Factual", "country": "USA", "media_type": "TV Station"},
            {"source_name": "Fox News", "source_url": "foxnews.com", "bias": "Right", "credibility": "Medium Credibility",
             "factual_reporting": "Mixed", "country": "USA", "media_type": "TV Station"},
            {"source_name": "BBC", "source_url": "bbc.co.uk", "bias": "left center", "country": "United Kingdom"},
            {"source_name": "Reuters", "source_url": "reuters.com", "bias": "Least Biased"},
        ]
    )
    return s
