"""
File: leanwatch/sources/reddit.py
Reddit OAuth client: subreddit listings, comment threads and community search.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

from leanwatch.schemas import CommunitySuggestion, FeedItem
from leanwatch.sources.common import clean_text, compute_backoff_ms, header_number, jitter_ms
from leanwatch.utils import normalize_text

logger = logging.getLogger(__name__)

REDDIT_AUTH_URL = "https://www.reddit.com/api/v1/access_token"
REDDIT_API_BASE = "https://oauth.reddit.com"

MAX_RETRIES = 4          # retries beyond the first attempt
MAX_COMMENT_BODIES = 20
DEFAULT_TOKEN_TTL = 3600

Sleep = Callable[[float], Awaitable[None]]


class FeedError(RuntimeError):
    """Fatal feed-provider failure; the message is safe to show to users."""


class FeedAuthError(FeedError):
    pass


class FeedRequestError(FeedError):
    pass


def _is_retryable_status(status: int) -> bool:
    return status == 429 or status >= 500


class RedditTokenProvider:
    """Obtains and caches an app-only bearer token, refreshing it shortly before expiry."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        client_id: str,
        client_secret: str,
        user_agent: str,
        refresh_margin: float = 5.0,
        timeout: float = 10.0,
        clock: Callable[[], float] = time.time,
        sleep: Sleep = asyncio.sleep,
    ):
        self._http = http
        self._client_id = client_id
        self._client_secret = client_secret
        self._user_agent = user_agent
        self._refresh_margin = refresh_margin
        self._timeout = timeout
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._token: Optional[str] = None
        self._expires_at = 0.0

    def _valid(self) -> bool:
        return bool(self._token) and self._clock() < self._expires_at - self._refresh_margin

    async def get_token(self) -> str:
        """Return a valid bearer token, fetching a new one if needed."""
        if self._valid():
            return self._token
        async with self._lock:
            if not self._valid():
                self._token, self._expires_at = await self._fetch_token()
                logger.info("Obtained Reddit access token (expires in %.0fs)", self._expires_at - self._clock())
        return self._token

    async def _fetch_token(self) -> Tuple[str, float]:
        if not self._client_id or not self._client_secret:
            raise FeedAuthError("Missing Reddit client credentials")

        for attempt in range(MAX_RETRIES + 1):
            try:
                r = await self._http.post(
                    REDDIT_AUTH_URL,
                    data={"grant_type": "client_credentials"},
                    auth=(self._client_id, self._client_secret),
                    headers={"User-Agent": self._user_agent},
                    timeout=self._timeout,
                )
            except httpx.HTTPError as e:
                logger.warning("Token request failed (%s), attempt %d/%d", type(e).__name__, attempt + 1, MAX_RETRIES + 1)
            else:
                if r.is_success:
                    return self._parse_token(r)
                if not _is_retryable_status(r.status_code):
                    raise FeedAuthError(f"Reddit rejected the credentials ({r.status_code})")
                logger.warning("Token request returned %d, attempt %d/%d", r.status_code, attempt + 1, MAX_RETRIES + 1)

            if attempt < MAX_RETRIES:
                await self._sleep(jitter_ms(compute_backoff_ms(attempt)) / 1000.0)

        raise FeedAuthError("Could not obtain a Reddit access token")

    def _parse_token(self, r: httpx.Response) -> Tuple[str, float]:
        try:
            data = r.json()
            token = str(data["access_token"])
            expires_in = float(data.get("expires_in") or DEFAULT_TOKEN_TTL)
        except (ValueError, KeyError, TypeError) as e:
            raise FeedAuthError("Malformed token response from Reddit") from e
        return token, self._clock() + expires_in


def _listing_children(payload: Any) -> List[Dict[str, Any]]:
    """Return the `data.children` array of a listing payload, or [] if the shape is off."""
    if not isinstance(payload, dict):
        return []
    children = (payload.get("data") or {}).get("children") or []
    return [child for child in children if isinstance(child, dict)]


def _to_feed_item(node: Dict[str, Any]) -> Optional[FeedItem]:
    d = node.get("data") if isinstance(node, dict) else None
    if not isinstance(d, dict):
        return None
    title = normalize_text(d.get("title"))
    if not title:
        return None

    def _int(value: Any) -> int:
        try:
            return int(value or 0)
        except (TypeError, ValueError):
            return 0

    return FeedItem(
        title=title,
        external_url=clean_text(d.get("url")),
        thread_ref=clean_text(d.get("permalink")),
        author=clean_text(d.get("author")),
        score=_int(d.get("score")),
        comment_count=_int(d.get("num_comments")),
    )


def extract_top_level_comment_bodies(thread: Any, limit: int = MAX_COMMENT_BODIES) -> List[str]:
    """
    Extract up to `limit` top-level comment bodies from a thread listing.

    The thread payload is a two-element list: the post listing and the comment listing.
    """
    if not isinstance(thread, list) or len(thread) < 2:
        return []

    bodies: List[str] = []
    for child in _listing_children(thread[1]):
        if child.get("kind") != "t1":
            continue
        body = (child.get("data") or {}).get("body")
        if isinstance(body, str) and body:
            bodies.append(body)
        if len(bodies) >= limit:
            break
    return bodies


class RedditClient:
    """Authenticated access to subreddit listings and comment threads."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        tokens: RedditTokenProvider,
        user_agent: str,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self._http = http
        self._tokens = tokens
        self._user_agent = user_agent
        self._sleep = sleep
        self._rng = rng

    async def _headers(self) -> Dict[str, str]:
        token = await self._tokens.get_token()
        return {"Authorization": f"Bearer {token}", "User-Agent": self._user_agent}

    async def get_items(self, community_id: str, limit: int = 25, window: str = "month") -> List[FeedItem]:
        """
        Fetch the top posts of a community.

        Args:
            community_id: Canonical community path, e.g. 'r/worldnews'
            limit: Maximum number of posts
            window: Ranking window ('day', 'week', 'month', 'year', 'all')

        Returns:
            List of FeedItem objects in ranking order

        Raises:
            FeedAuthError: If no token can be obtained
            FeedRequestError: If the listing request fails
        """
        headers = await self._headers()
        url = f"{REDDIT_API_BASE}/{community_id}/top.json"
        try:
            r = await self._http.get(url, params={"limit": limit, "t": window}, headers=headers)
            r.raise_for_status()
            data = r.json()
        except httpx.HTTPStatusError as e:
            raise FeedRequestError(f"Failed to fetch {community_id} ({e.response.status_code})") from e
        except (httpx.HTTPError, ValueError) as e:
            raise FeedRequestError(f"Failed to fetch {community_id}") from e

        items = [item for item in (_to_feed_item(child) for child in _listing_children(data)) if item is not None]
        logger.info("Fetched %d posts for %s (t=%s)", len(items), community_id, window)
        return items

    def retry_delay_ms(self, r: httpx.Response, attempt: int) -> Optional[float]:
        """
        Decide how long to wait before retrying a failed thread request.

        Returns:
            Delay in milliseconds, or None when the response should not be retried
        """
        remaining = header_number(r.headers, "x-ratelimit-remaining")
        reset = header_number(r.headers, "x-ratelimit-reset")
        rate_limited = r.status_code == 429 or (remaining is not None and remaining <= 1)

        if rate_limited:
            if reset is not None and reset > 0:
                return jitter_ms(reset * 1000.0, self._rng)
            return jitter_ms(compute_backoff_ms(attempt), self._rng)
        if r.status_code >= 500:
            return jitter_ms(compute_backoff_ms(attempt), self._rng)
        return None

    async def get_thread(self, permalink: str, timeout: float = 10.0) -> Optional[List[str]]:
        """
        Fetch up to 20 top-level comment bodies for a post, with retries and backoff.

        Never raises: any unrecoverable failure returns None so the caller can carry on
        without comments.
        """
        try:
            headers = await self._headers()
        except FeedError as e:
            logger.warning("Skipping thread %s: %s", permalink, e)
            return None

        url = f"{REDDIT_API_BASE}{permalink.rstrip('/')}.json"
        for attempt in range(MAX_RETRIES + 1):
            last_attempt = attempt >= MAX_RETRIES
            try:
                r = await self._http.get(url, params={"limit": 50, "depth": 1}, headers=headers, timeout=timeout)
            except httpx.HTTPError as e:
                if last_attempt:
                    logger.warning("Thread %s failed after %d attempts (%s)", permalink, attempt + 1, type(e).__name__)
                    return None
                await self._sleep(jitter_ms(compute_backoff_ms(attempt), self._rng) / 1000.0)
                continue

            if r.is_success:
                try:
                    return extract_top_level_comment_bodies(r.json())
                except ValueError:
                    return None

            wait = self.retry_delay_ms(r, attempt)
            if wait is None or last_attempt:
                logger.warning("Thread %s gave up with status %d", permalink, r.status_code)
                return None
            logger.warning(
                "Thread %s returned %d, backing off %.0fms (attempt %d/%d)",
                permalink, r.status_code, wait, attempt + 1, MAX_RETRIES + 1,
            )
            await self._sleep(wait / 1000.0)

        return None

    async def search_communities(self, query: str, limit: int = 10) -> List[CommunitySuggestion]:
        """Search communities by name/description for autocomplete."""
        headers = await self._headers()
        try:
            r = await self._http.get(
                f"{REDDIT_API_BASE}/subreddits/search",
                params={"q": query, "limit": limit, "include_over_18": "off"},
                headers=headers,
            )
            r.raise_for_status()
            data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise FeedRequestError("Community search failed") from e

        suggestions: List[CommunitySuggestion] = []
        for child in _listing_children(data):
            d = child.get("data") or {}
            name = clean_text(d.get("display_name"))
            if not name:
                continue
            suggestions.append(
                CommunitySuggestion(
                    name=f"r/{name}",
                    title=clean_text(d.get("title")),
                    subscribers=int(d.get("subscribers") or 0),
                    over18=bool(d.get("over18")),
                )
            )
        return suggestions[:limit]
