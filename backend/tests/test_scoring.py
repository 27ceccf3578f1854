import pytest

from leanwatch.core.scoring import (
    BIAS_LABELS,
    QUESTIONABLE_SCORE,
    aggregate,
    alignment_to_score,
    bias_label_to_score,
    engagement_weight,
    normalize_bias_label,
    provisional_score,
    refine_lean,
    score_to_label,
)
from leanwatch.schemas import DiscussionSample, FeedItem, StanceAssessment


def _sample(refined, engagement=1.0, confidence=0.5, defaulted=False, stance=True):
    return DiscussionSample(
        item=FeedItem(title="t"),
        stance=StanceAssessment(alignment="aligns", confidence=confidence, provider="p") if stance else None,
        engagement=engagement,
        base_defaulted=defaulted,
        refined_lean=refined,
    )


@pytest.mark.parametrize("label", BIAS_LABELS)
def test_label_round_trip(label):
    assert score_to_label(bias_label_to_score(label)) == label


def test_label_midpoints():
    assert bias_label_to_score("Extreme-Left") == pytest.approx(10 / 14)
    assert bias_label_to_score("Least Biased") == pytest.approx(5.0)
    assert bias_label_to_score("Right") == pytest.approx(7.857, abs=1e-3)


def test_questionable_is_policy_constant():
    assert bias_label_to_score("Questionable") == QUESTIONABLE_SCORE == 7.0


def test_unknown_label_is_excluded_not_centered():
    assert bias_label_to_score("Pro-Science") is None
    assert bias_label_to_score(None) is None
    assert bias_label_to_score("") is None


def test_label_spelling_variants():
    assert normalize_bias_label("extreme left") == "Extreme-Left"
    assert normalize_bias_label("Far-Right") == "Extreme-Right"
    assert normalize_bias_label("left center") == "Left-Center"
    assert normalize_bias_label("  Least Biased ") == "Least Biased"
    assert normalize_bias_label("Satire") == "Satire"


def test_score_to_label_clamps_out_of_range():
    assert score_to_label(-3) == "Extreme-Left"
    assert score_to_label(10) == "Extreme-Right"
    assert score_to_label(42) == "Extreme-Right"


@pytest.mark.parametrize("base", [0.0, 1.3, 2.5, 5.0, 7.86, 9.99, 10.0])
def test_refine_lean_identity_and_mirror(base):
    assert refine_lean(base, 1) == pytest.approx(base)
    assert refine_lean(base, -1) == pytest.approx(10 - base)
    assert refine_lean(base, 0) == pytest.approx(5.0)


def test_refine_lean_clamps_alignment():
    assert refine_lean(8.0, 3.0) == pytest.approx(8.0)
    assert refine_lean(8.0, -7.0) == pytest.approx(2.0)
    assert refine_lean(8.0, 0.5) == pytest.approx(6.5)


def test_alignment_prefers_numeric_score():
    assert alignment_to_score(-0.3, "aligns") == pytest.approx(-0.3)
    assert alignment_to_score(None, "aligns") == 1.0
    assert alignment_to_score(None, "opposes") == -1.0
    assert alignment_to_score(None, "mixed") == 0.25
    assert alignment_to_score(None, "unclear") == 0.0
    assert alignment_to_score(None, None) == 0.0


def test_engagement_weight():
    assert engagement_weight(12, 350) == pytest.approx(15.5)
    assert engagement_weight(0, 0) == 0.0


def test_aggregate_empty_is_neutral():
    score = aggregate([])
    assert score.lean_normalized == 5.0
    assert score.label == "Least Biased"
    assert score.confidence == pytest.approx(0.4)


def test_aggregate_weights_by_engagement_and_confidence():
    samples = [_sample(8.0, engagement=10, confidence=1.0), _sample(2.0, engagement=10, confidence=0.0)]
    score = aggregate(samples)
    # weights 20 and 10
    assert score.lean_raw == pytest.approx((8.0 * 20 + 2.0 * 10) / 30)
    assert score.confidence == pytest.approx(0.54)


def test_aggregate_ignores_samples_without_stance():
    samples = [_sample(9.0, engagement=5), _sample(1.0, engagement=500, stance=False), _sample(None, engagement=50)]
    score = aggregate(samples)
    assert score.lean_raw == pytest.approx(9.0)
    assert score.label == "Extreme-Right"


def test_aggregate_discounts_defaulted_base():
    samples = [_sample(8.0, engagement=10, confidence=0.0), _sample(5.0, engagement=10, confidence=0.0, defaulted=True)]
    score = aggregate(samples)
    assert score.lean_raw == pytest.approx((8.0 * 10 + 5.0 * 4) / 14)


def test_aggregate_confidence_cap_and_override():
    samples = [_sample(5.0) for _ in range(20)]
    assert aggregate(samples).confidence == pytest.approx(0.95)
    assert aggregate(samples, confidence=0.3).confidence == pytest.approx(0.3)


def test_aggregate_is_order_independent():
    samples = [_sample(3.0, 4, 0.2), _sample(7.5, 9, 0.9), _sample(6.1, 1, 0.5)]
    assert aggregate(samples).lean_raw == pytest.approx(aggregate(list(reversed(samples))).lean_raw)


def test_provisional_score():
    score = provisional_score(["Left", "Right", "Satire", None])
    assert score.lean_raw == pytest.approx(5.0)
    assert score.confidence == 0.5
    assert provisional_score(["Satire", None]) is None
