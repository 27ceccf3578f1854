"""
Historical analysis series for charting.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional, Tuple

from leanwatch.schemas import SeriesPoint
from leanwatch.store import Store

GroupBy = Literal["none", "day"]

DEFAULT_LIMIT = 200
MAX_LIMIT = 1000


def community_names(community: str) -> List[str]:
    """Both stored spellings of a community: 'name' and 'r/name'."""
    base = community[2:] if community.startswith("r/") else community
    return [base, f"r/{base}"]


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value.astimezone(timezone.utc)


def _iso(value: datetime) -> str:
    return _as_utc(value).isoformat().replace("+00:00", "Z")


def _mean(values: List[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


def group_by_day(rows: List[Tuple[datetime, Optional[float], Optional[float]]]) -> List[SeriesPoint]:
    """Average score and confidence per UTC calendar day, ordered by day."""
    buckets: Dict[datetime, Tuple[List[float], List[float]]] = {}
    for at, score, confidence in rows:
        day = _as_utc(at).replace(hour=0, minute=0, second=0, microsecond=0)
        day_scores, day_confidences = buckets.setdefault(day, ([], []))
        if score is not None:
            day_scores.append(score)
        if confidence is not None:
            day_confidences.append(confidence)

    return [
        SeriesPoint(t=_iso(day), bias_score=_mean(day_scores), confidence=_mean(day_confidences))
        for day, (day_scores, day_confidences) in sorted(buckets.items())
    ]


async def get_series(
    store: Store,
    community: str,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: int = DEFAULT_LIMIT,
    group_by: GroupBy = "none",
) -> List[SeriesPoint]:
    """
    Fetch the (timestamp, biasScore, confidence) series for a community.

    Args:
        store: Relational store holding analysis results
        community: Community name, with or without the 'r/' prefix
        since: Inclusive lower bound (UTC)
        until: Exclusive upper bound (UTC)
        limit: Maximum points returned (rows, or days when grouped), clamped to 1..1000
        group_by: 'none' for raw rows, 'day' for per-day averages

    Returns:
        List of SeriesPoint ordered by time
    """
    limit = max(1, min(MAX_LIMIT, limit))
    names = community_names(community)
    if group_by == "day":
        # limit caps day buckets, so every row in the range is needed
        rows = await asyncio.to_thread(store.analysis_history, names, since, until, None)
        return group_by_day(rows)[:limit]
    rows = await asyncio.to_thread(store.analysis_history, names, since, until, limit)
    return [SeriesPoint(t=_iso(at), bias_score=score, confidence=confidence) for at, score, confidence in rows]


def series_to_csv(points: List[SeriesPoint]) -> str:
    """Render a series as CSV with header 't,biasScore,confidence'; nulls become empty cells."""

    def cell(value: Optional[float]) -> str:
        return "" if value is None else f"{value:g}"

    lines = ["t,biasScore,confidence"]
    lines.extend(f"{p.t},{cell(p.bias_score)},{cell(p.confidence)}" for p in points)
    return "\n".join(lines) + "\n"
