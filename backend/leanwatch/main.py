"""
Main FastAPI application and routing layer.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Literal, Optional

import httpx
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from sqlalchemy.exc import SQLAlchemyError

from leanwatch.cache import TTLCache
from leanwatch.config import Settings, settings
from leanwatch.core.discussion import DiscussionAnalyzer
from leanwatch.core.pipeline import AnalysisPipeline
from leanwatch.services.analytics import get_series, series_to_csv
from leanwatch.services.providers import build_providers
from leanwatch.services.stance import StanceInferenceAdapter
from leanwatch.sources.bias_index import SourceBiasIndex
from leanwatch.sources.reddit import FeedError, RedditClient, RedditTokenProvider
from leanwatch.store import Store
from leanwatch.utils import now_utc, parse_community_ref, parse_utc_datetime

logger = logging.getLogger("uvicorn")

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@dataclass
class Services:
    """Long-lived collaborators shared by all requests."""

    settings: Settings
    http: httpx.AsyncClient
    store: Store
    cache: TTLCache
    feed: RedditClient
    pipeline: AnalysisPipeline


def build_services(config: Settings) -> Services:
    """
    Wire the feed client, bias index, classifier adapter and pipeline from settings.

    Args:
        config: Application settings

    Returns:
        Services container
    """
    http = httpx.AsyncClient(timeout=15.0)
    store = Store(config.DATABASE_URL)
    cache = TTLCache()

    tokens = RedditTokenProvider(
        http,
        config.REDDIT_CLIENT_ID,
        config.REDDIT_CLIENT_SECRET,
        config.REDDIT_USER_AGENT,
        refresh_margin=config.TOKEN_REFRESH_MARGIN_SECONDS,
    )
    feed = RedditClient(http, tokens, config.REDDIT_USER_AGENT)
    stance = StanceInferenceAdapter(
        build_providers(config),
        cache,
        store,
        cache_ttl=config.AI_CACHE_TTL_SECONDS,
        input_chars=config.CLASSIFIER_INPUT_CHARS,
    )
    analyzer = DiscussionAnalyzer(
        feed,
        stance,
        cache,
        limit=config.DISCUSSION_LIMIT,
        batch_size=config.DISCUSSION_BATCH_SIZE,
        window=config.REDDIT_TOP_TIME,
        comment_timeout=config.COMMENT_TIMEOUT_SECONDS,
        jitter_range_ms=(config.JITTER_MIN_MS, config.JITTER_MAX_MS),
        cache_ttl=config.ANALYSIS_CACHE_TTL_SECONDS,
        prompt_version=config.PROMPT_VERSION,
    )
    pipeline = AnalysisPipeline(
        feed,
        SourceBiasIndex(store),
        analyzer,
        store,
        item_limit=config.REDDIT_TOP_LIMIT,
        window=config.REDDIT_TOP_TIME,
    )
    return Services(settings=config, http=http, store=store, cache=cache, feed=feed, pipeline=pipeline)


# Initialize FastAPI app
app = FastAPI(
    title="Community Lean API",
    version="0.1.0",
    description="Streams a progressively refined political-lean estimate for a community",
)


@app.on_event("startup")
async def startup():
    """Configure logging, build services and make sure the tables exist."""
    logging.basicConfig(level=settings.LOG_LEVEL, format=settings.LOG_FORMAT)
    services = build_services(settings)
    try:
        await asyncio.to_thread(services.store.create_all)
    except SQLAlchemyError as e:
        logger.warning("Store unavailable at startup, continuing without persistence: %s", type(e).__name__)
    app.state.services = services


@app.on_event("shutdown")
async def shutdown():
    services = getattr(app.state, "services", None)
    if services is not None:
        await services.http.aclose()


# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return services


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "ok",
        "as_of": now_utc().isoformat(),
        "service": "leanwatch",
    }


@app.get("/analyze/stream")
async def analyze_stream(
    community: str = Query(..., min_length=1, max_length=300, description="Community URL, 'r/name' or name"),
    services: Services = Depends(get_services),
):
    """
    Analyze a community and stream phase events (items, bias, discussion, done/error).
    """
    try:
        community_id = parse_community_ref(community)
    except ValueError:
        raise HTTPException(status_code=400, detail="Valid community URL or name required")

    logger.info(f"Starting analysis stream for {community_id}")

    async def event_source():
        async for event in services.pipeline.run(community_id):
            yield event.encode()

    return StreamingResponse(event_source(), media_type="text/event-stream", headers=SSE_HEADERS)


@app.get("/analytics/{name}")
async def community_analytics(
    name: str,
    since: Optional[str] = Query(None, description="Inclusive start of the range (ISO 8601, UTC)"),
    until: Optional[str] = Query(None, description="Exclusive end of the range (ISO 8601, UTC)"),
    limit: int = Query(200, ge=1, le=1000),
    group_by: Literal["none", "day"] = Query("none", alias="groupBy"),
    output_format: Literal["json", "csv"] = Query("json", alias="format"),
    services: Services = Depends(get_services),
):
    """
    Historical bias score and confidence for a community, as JSON or CSV.
    """
    try:
        start = parse_utc_datetime(since)
        end = parse_utc_datetime(until)
    except ValueError:
        raise HTTPException(status_code=400, detail="since/until must be ISO 8601 dates")

    try:
        points = await get_series(services.store, name, start, end, limit=limit, group_by=group_by)
    except SQLAlchemyError as e:
        logger.error(f"Analytics query failed for {name}: {type(e).__name__}")
        return JSONResponse({"ok": False, "message": "analytics unavailable"}, status_code=500)

    if output_format == "csv":
        return Response(
            series_to_csv(points),
            media_type="text/csv; charset=utf-8",
            headers={"Cache-Control": "no-store"},
        )
    return {"ok": True, "name": name, "data": [point.to_payload() for point in points]}


@app.get("/communities/search")
async def search_communities(
    q: str = Query("", max_length=100),
    limit: int = Query(10),
    services: Services = Depends(get_services),
):
    """Community name autocomplete, cached briefly."""
    q = q.strip()
    limit = max(5, min(20, limit))
    if len(q) < 2:
        return {"items": []}

    cache_key = f"search:{q.lower()}|{limit}"
    hit = services.cache.get(cache_key)
    if hit is not None:
        return {"items": hit}

    try:
        suggestions = await services.feed.search_communities(q, limit)
    except FeedError as e:
        logger.warning(f"Community search failed for {q!r}: {e}")
        return {"items": [], "message": str(e)}

    items = [suggestion.to_payload() for suggestion in suggestions]
    services.cache.set(cache_key, items, services.settings.SEARCH_CACHE_TTL_SECONDS)
    return {"items": items}


if __name__ == "__main__":
    # For development
    import uvicorn
    uvicorn.run("leanwatch.main:app", host="0.0.0.0", port=settings.PORT, reload=True)
