"""
Relational store for bias records, classification results and analysis history.

All methods are synchronous; async callers run them through asyncio.to_thread.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import create_engine, literal, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from leanwatch.models import AnalysisResult, Base, BiasSource, ClassificationResult
from leanwatch.schemas import BiasRecord, StanceAssessment
from leanwatch.utils import now_utc, root_domain

logger = logging.getLogger(__name__)

HistoryRow = Tuple[datetime, Optional[float], Optional[float]]


def make_engine(url: str) -> Engine:
    """Create an engine; SQLite connections are shared across worker threads."""
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)
    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    return create_engine(url, connect_args={"check_same_thread": False})


class Store:
    def __init__(self, url: str = "sqlite://", engine: Engine | None = None):
        self.engine = engine or make_engine(url)
        self._session = sessionmaker(self.engine, expire_on_commit=False)

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    # --- bias sources ---------------------------------------------------

    def add_bias_sources(self, rows: Iterable[Dict[str, Any]]) -> int:
        """Insert raw bias-source rows (column names as in mbfc_sources). Returns the count."""
        sources = [BiasSource(**row) for row in rows]
        with self._session() as session, session.begin():
            session.add_all(sources)
        return len(sources)

    def find_bias_sources(self, hostnames: Sequence[str]) -> List[BiasRecord]:
        """
        Fetch every row that could match one of the hostnames.

        A row qualifies when its domain key equals a hostname or its root domain, or when
        a hostname ends with the key. Tier selection happens in the caller.
        """
        if not hostnames:
            return []

        exact_keys = set(hostnames) | {root_domain(h) for h in hostnames}
        suffix_clauses = [literal(h).like("%" + BiasSource.source_url) for h in set(hostnames)]
        query = select(BiasSource).where(
            BiasSource.source_url.is_not(None),
            BiasSource.source_url != "",
            or_(BiasSource.source_url.in_(exact_keys), *suffix_clauses),
        )

        with self._session() as session:
            rows = session.scalars(query).all()

        return [
            BiasRecord(
                domain_key=row.source_url.lower(),
                bias_label=row.bias,
                credibility=row.credibility,
                factual_reporting=row.factual_reporting,
                country=row.country,
                media_type=row.media_type,
                source_name=row.source_name,
            )
            for row in rows
        ]

    # --- classification results -----------------------------------------

    def get_classification(self, content_hash: str) -> Optional[StanceAssessment]:
        with self._session() as session:
            row = session.scalar(select(ClassificationResult).where(ClassificationResult.hash == content_hash))
        if row is None:
            return None

        meta = row.meta or {}
        return StanceAssessment(
            alignment=row.alignment if row.alignment in ("aligns", "opposes", "mixed", "unclear") else "unclear",
            alignment_score=row.alignment_score,
            confidence=row.confidence or 0.0,
            stance_label=row.stance_label,
            stance_score=row.stance_score,
            provider=row.provider,
            model=row.model,
            reasoning=str(meta.get("reasoning", "")),
        )

    def save_classification(
        self,
        content_hash: str,
        prompt_key: str,
        prompt_version: str,
        assessment: StanceAssessment,
    ) -> None:
        """Upsert a classification result by content hash."""
        values = dict(
            provider=assessment.provider,
            model=assessment.model,
            prompt_key=prompt_key,
            prompt_version=prompt_version,
            alignment=assessment.alignment,
            alignment_score=assessment.alignment_score,
            stance_label=assessment.stance_label,
            stance_score=assessment.stance_score,
            confidence=assessment.confidence,
            meta={"reasoning": assessment.reasoning},
        )
        with self._session() as session, session.begin():
            row = session.scalar(select(ClassificationResult).where(ClassificationResult.hash == content_hash))
            if row is None:
                session.add(ClassificationResult(hash=content_hash, **values))
            else:
                for key, value in values.items():
                    setattr(row, key, value)

    # --- analysis history -----------------------------------------------

    def save_analysis(
        self,
        community_name: str,
        bias_score: Optional[float],
        confidence: Optional[float],
        signal_breakdown: Optional[Dict[str, Any]] = None,
        platform: str = "reddit",
        analysis_date: Optional[datetime] = None,
    ) -> None:
        with self._session() as session, session.begin():
            session.add(
                AnalysisResult(
                    community_name=community_name,
                    platform=platform,
                    bias_score=None if bias_score is None else round(bias_score, 1),
                    confidence=None if confidence is None else round(confidence, 2),
                    analysis_date=analysis_date or now_utc(),
                    signal_breakdown=signal_breakdown,
                )
            )

    def analysis_history(
        self,
        names: Sequence[str],
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = 200,
        platform: str = "reddit",
    ) -> List[HistoryRow]:
        """Return (analysis_date, bias_score, confidence) rows ordered by time; limit None returns all."""
        query = select(AnalysisResult.analysis_date, AnalysisResult.bias_score, AnalysisResult.confidence).where(
            AnalysisResult.community_name.in_(list(names)),
            AnalysisResult.platform == platform,
        )
        if since is not None:
            query = query.where(AnalysisResult.analysis_date >= since)
        if until is not None:
            query = query.where(AnalysisResult.analysis_date < until)
        query = query.order_by(AnalysisResult.analysis_date).limit(limit)

        with self._session() as session:
            return [(row[0], row[1], row[2]) for row in session.execute(query).all()]
