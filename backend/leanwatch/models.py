"""
SQLAlchemy models for the source-bias table, classifier results and analysis history.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class BiasSource(Base):
    """Seeded media-bias dataset, one row per registered source domain."""

    __tablename__ = "mbfc_sources"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_name: Mapped[str] = mapped_column(String(255), nullable=False)
    mbfc_url: Mapped[Optional[str]] = mapped_column(String(500))
    bias: Mapped[Optional[str]] = mapped_column(String(100))
    country: Mapped[Optional[str]] = mapped_column(String(100))
    factual_reporting: Mapped[Optional[str]] = mapped_column(String(50))
    media_type: Mapped[Optional[str]] = mapped_column(String(100))
    source_url: Mapped[Optional[str]] = mapped_column(String(255))  # domain key, e.g. "cnn.com"
    credibility: Mapped[Optional[str]] = mapped_column(String(50))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_source_url", "source_url"),)

    def __repr__(self) -> str:
        return f"<BiasSource(source_url={self.source_url}, bias={self.bias})>"


class ClassificationResult(Base):
    """Durable copy of a stance classification, keyed by the content hash of its input."""

    __tablename__ = "ai_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    model: Mapped[str] = mapped_column(String(64), nullable=False)
    prompt_key: Mapped[str] = mapped_column(String(64), nullable=False)
    prompt_version: Mapped[str] = mapped_column(String(16), nullable=False)
    alignment: Mapped[Optional[str]] = mapped_column(String(16))
    alignment_score: Mapped[Optional[float]] = mapped_column(Float)
    stance_label: Mapped[Optional[str]] = mapped_column(String(32))
    stance_score: Mapped[Optional[float]] = mapped_column(Float)
    confidence: Mapped[Optional[float]] = mapped_column(Float)
    meta: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("ai_results_created_idx", "created_at"),)


class AnalysisResult(Base):
    """One finished community analysis, used for historical charts."""

    __tablename__ = "analysis_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    community_name: Mapped[str] = mapped_column(String(255), nullable=False)
    platform: Mapped[str] = mapped_column(String(50), nullable=False)
    bias_score: Mapped[Optional[float]] = mapped_column(Float)
    confidence: Mapped[Optional[float]] = mapped_column(Float)
    analysis_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    signal_breakdown: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)

    __table_args__ = (Index("idx_community_platform", "community_name", "platform"),)

    def __repr__(self) -> str:
        return f"<AnalysisResult(community={self.community_name}, score={self.bias_score}, at={self.analysis_date})>"
