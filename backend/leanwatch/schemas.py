# leanwatch/schemas.py
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from leanwatch.utils import clamp

Alignment = Literal["aligns", "opposes", "mixed", "unclear"]


class CamelModel(BaseModel):
    """Base model serialised with camelCase keys for the event stream and API."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class BiasRecord(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    domain_key: str
    bias_label: Optional[str] = None
    credibility: Optional[str] = None
    factual_reporting: Optional[str] = None
    country: Optional[str] = None
    media_type: Optional[str] = None
    source_name: Optional[str] = None


class FeedItem(CamelModel):
    title: str
    external_url: str = ""
    thread_ref: str = ""                     # permalink, e.g. /r/news/comments/abc/...
    author: str = ""
    score: int = 0
    comment_count: int = 0


class StanceAssessment(CamelModel):
    alignment: Alignment = "unclear"
    alignment_score: Optional[float] = None  # None when the provider gave no numeric score
    confidence: float = 0.0
    stance_label: Optional[str] = None
    stance_score: Optional[float] = None
    provider: str = "fallback"
    model: str = "none"
    reasoning: str = ""

    @field_validator("alignment_score")
    @classmethod
    def _clamp_alignment(cls, v: Optional[float]) -> Optional[float]:
        return None if v is None else clamp(v, -1.0, 1.0)

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, v: float) -> float:
        return clamp(v, 0.0, 1.0)

    @field_validator("stance_score")
    @classmethod
    def _clamp_stance(cls, v: Optional[float]) -> Optional[float]:
        return None if v is None else clamp(v, 0.0, 10.0)

    @property
    def is_fallback(self) -> bool:
        return self.provider == "fallback"


class AggregateScore(CamelModel):
    lean_raw: float
    lean_normalized: float
    label: str
    confidence: float


class DiscussionSample(CamelModel):
    item: FeedItem
    bias_label: Optional[str] = None
    stance: Optional[StanceAssessment] = None
    engagement: float = 0.0
    base_score: Optional[float] = None
    base_defaulted: bool = False
    alignment_score: float = 0.0
    refined_lean: Optional[float] = None
    refined_label: Optional[str] = None
    sample_comments: List[str] = Field(default_factory=list)


class Progress(CamelModel):
    done: int
    total: int


class SeriesPoint(CamelModel):
    t: str
    bias_score: Optional[float] = None
    confidence: Optional[float] = None


class CommunitySuggestion(CamelModel):
    name: str
    title: str = ""
    subscribers: int = 0
    over18: bool = False
