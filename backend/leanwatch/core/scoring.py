"""
Bias scoring and engagement-weighted aggregation.

Everything here is a pure function of its inputs: the current aggregate is always
recomputed from the full sample list, never updated incrementally.
"""
from __future__ import annotations

import math
import re
from typing import Iterable, List, Optional

from leanwatch.schemas import AggregateScore, DiscussionSample
from leanwatch.utils import clamp

# Ordered left -> right; segment i of the 0..10 scale belongs to BIAS_LABELS[i]
BIAS_LABELS: List[str] = [
    "Extreme-Left",
    "Left",
    "Left-Center",
    "Least Biased",
    "Right-Center",
    "Right",
    "Extreme-Right",
]
QUESTIONABLE_LABEL = "Questionable"
# Editorial policy value, not a segment midpoint
QUESTIONABLE_SCORE = 7.0

NEUTRAL_SCORE = 5.0
SEGMENT_WIDTH = 10.0 / len(BIAS_LABELS)
DEFAULTED_BASE_FACTOR = 0.4

# Categorical alignment -> numeric alignment when the classifier gave no number
ALIGNMENT_DEFAULTS = {"aligns": 1.0, "opposes": -1.0, "mixed": 0.25, "unclear": 0.0}

_LABEL_ALIASES = {
    "extreme left": "Extreme-Left",
    "far left": "Extreme-Left",
    "left": "Left",
    "left center": "Left-Center",
    "center left": "Left-Center",
    "least biased": "Least Biased",
    "center": "Least Biased",
    "right center": "Right-Center",
    "center right": "Right-Center",
    "right": "Right",
    "extreme right": "Extreme-Right",
    "far right": "Extreme-Right",
    "questionable": QUESTIONABLE_LABEL,
}


def normalize_bias_label(label: Optional[str]) -> Optional[str]:
    """
    Map spelling variants ('extreme left', 'Far-Left', 'Left Center') onto canonical labels.

    Unrecognized labels are returned stripped but otherwise untouched, so they can still be
    counted; they simply carry no numeric score.
    """
    if not label or not label.strip():
        return None
    key = re.sub(r"[\s\-_/]+", " ", label.strip().lower())
    return _LABEL_ALIASES.get(key, label.strip())


def bias_label_to_score(label: Optional[str]) -> Optional[float]:
    """
    Convert a bias label to its 0..10 score.

    Known labels map to the midpoint of their segment of an equal 7-way partition;
    'Questionable' maps to QUESTIONABLE_SCORE; anything else is None (excluded, not centered).
    """
    canonical = normalize_bias_label(label)
    if canonical is None:
        return None
    if canonical == QUESTIONABLE_LABEL:
        return QUESTIONABLE_SCORE
    if canonical in BIAS_LABELS:
        return (BIAS_LABELS.index(canonical) + 0.5) * SEGMENT_WIDTH
    return None


def score_to_label(score: float) -> str:
    """Map a 0..10 score to the bias label of the segment it falls in."""
    index = math.floor(clamp(score, 0.0, 10.0) / SEGMENT_WIDTH)
    return BIAS_LABELS[int(clamp(index, 0, len(BIAS_LABELS) - 1))]


def refine_lean(base: float, alignment_score: float) -> float:
    """
    Adjust a base stance by how the discussion relates to it.

    +1 keeps the base, -1 mirrors it across the neutral midpoint, 0 collapses to neutral.
    """
    a = clamp(alignment_score, -1.0, 1.0)
    return clamp(NEUTRAL_SCORE + (base - NEUTRAL_SCORE) * a, 0.0, 10.0)


def alignment_to_score(alignment_score: Optional[float], alignment: Optional[str]) -> float:
    """Prefer the numeric alignment score; otherwise fall back to the categorical default."""
    if alignment_score is not None:
        return clamp(alignment_score, -1.0, 1.0)
    return ALIGNMENT_DEFAULTS.get(alignment or "", 0.0)


def engagement_weight(comment_count: int, score: int) -> float:
    """Discussion volume proxy: comments dominate, votes add a small bump."""
    return max(0.0, float(comment_count or 0) + float(score or 0) / 100.0)


def sample_weight(sample: DiscussionSample) -> float:
    """
    Weight of one sample in the aggregate.

    Samples without a stance or without a refined lean weigh nothing.
    """
    if sample.stance is None or sample.refined_lean is None:
        return 0.0
    factor = DEFAULTED_BASE_FACTOR if sample.base_defaulted else 1.0
    return sample.engagement * (1.0 + sample.stance.confidence) * factor


def default_confidence(sample_count: int) -> float:
    return min(0.95, 0.4 + 0.07 * sample_count)


def aggregate(samples: Iterable[DiscussionSample], confidence: Optional[float] = None) -> AggregateScore:
    """
    Engagement and confidence weighted mean of refined leans.

    Args:
        samples: All samples gathered so far (order does not matter)
        confidence: Optional explicit confidence overriding the sample-count heuristic

    Returns:
        AggregateScore; the neutral midpoint when nothing carries weight
    """
    samples = list(samples)
    numerator = 0.0
    denominator = 0.0
    for sample in samples:
        weight = sample_weight(sample)
        if weight <= 0:
            continue
        numerator += sample.refined_lean * weight
        denominator += weight

    lean_raw = numerator / denominator if denominator > 0 else NEUTRAL_SCORE
    lean_normalized = clamp(lean_raw, 0.0, 10.0)
    return AggregateScore(
        lean_raw=lean_raw,
        lean_normalized=lean_normalized,
        label=score_to_label(lean_normalized),
        confidence=default_confidence(len(samples)) if confidence is None else clamp(confidence, 0.0, 1.0),
    )


def provisional_score(labels: Iterable[Optional[str]], confidence: float = 0.5) -> Optional[AggregateScore]:
    """
    Source-only estimate emitted with the bias phase: mean score of the known labels.

    Returns None when none of the labels carries a score.
    """
    scores = [s for s in (bias_label_to_score(label) for label in labels) if s is not None]
    if not scores:
        return None
    mean = sum(scores) / len(scores)
    normalized = clamp(mean, 0.0, 10.0)
    return AggregateScore(
        lean_raw=mean,
        lean_normalized=normalized,
        label=score_to_label(normalized),
        confidence=confidence,
    )
