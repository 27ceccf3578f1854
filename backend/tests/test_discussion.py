import asyncio

import pytest

from conftest import FakeClassifier, FakeFeed, collect, make_analyzer, make_item, stance_reply
from leanwatch.cache import TTLCache
from leanwatch.core.discussion import build_classifier_input, derive_base_stance, select_candidates
from leanwatch.core.scoring import NEUTRAL_SCORE
from leanwatch.schemas import BiasRecord, StanceAssessment

RIGHT = BiasRecord(domain_key="foxnews.com", bias_label="Right")


def _scenario():
    a = make_item("a", url="https://foxnews.com/politics/story", comments=10)
    b = make_item("b", url="https://substack.example/post", comments=5)
    c = make_item("c", url="https://foxnews.com/other", comments=50)
    feed = FakeFeed(
        items=[a, b, c],
        threads={a.thread_ref: ["right on", "exactly"], b.thread_ref: ["no way", "this is wrong"], c.thread_ref: None},
    )

    def reply(prompt):
        if "TITLE: Post a" in prompt:
            return stance_reply(alignment="aligns", alignment_score=1, confidence=0.8)
        return stance_reply(
            stance_label="Left", stance_score=2.14, alignment="opposes", alignment_score=-1, confidence=0.8
        )

    provider = FakeClassifier("deepseek", reply)
    bias_by_url = {a.external_url: RIGHT}
    return feed, provider, [a, b, c], bias_by_url


def test_end_to_end_weighted_lean():
    feed, provider, candidates, bias_by_url = _scenario()
    analyzer = make_analyzer(feed, [provider])

    snapshots = collect(analyzer.analyze("r/test", candidates, bias_by_url))
    final = snapshots[-1]

    assert final.final and not final.cached
    a, b, c = final.samples
    assert a.base_score == pytest.approx(7.857, abs=1e-3)
    assert a.refined_lean == pytest.approx(7.857, abs=1e-3)
    assert b.base_score == pytest.approx(2.14)
    assert b.refined_lean == pytest.approx(7.86)
    assert b.refined_label == "Right"
    assert c.stance is None and c.refined_lean is None

    assert final.aggregate.lean_raw == pytest.approx(7.858, abs=1e-3)
    assert final.aggregate.label == "Right"
    assert final.aggregate.confidence == pytest.approx(0.61)

    prompts = {p.split("TITLE: ")[1][:6]: p for p in provider.calls}
    assert "SOURCE_BIAS: label=Right, score=7.86" in prompts["Post a"]
    assert "SOURCE_BIAS" not in prompts["Post b"].split("Text:\n")[1]


def test_progress_reported_per_batch():
    feed, provider, candidates, bias_by_url = _scenario()
    analyzer = make_analyzer(feed, [provider], batch_size=2)

    snapshots = collect(analyzer.analyze("r/test", candidates, bias_by_url))

    assert [(s.progress.done, s.progress.total, s.final) for s in snapshots] == [
        (2, 3, False),
        (3, 3, False),
        (3, 3, True),
    ]
    assert len(snapshots[0].samples) == 2
    payload = snapshots[0].to_payload()
    assert payload["progress"] == {"done": 2, "total": 3}
    assert "cached" not in payload
    assert {"samples", "leanRaw", "leanNormalized", "label", "confidence"} <= set(payload)


def test_repeat_run_served_from_cache():
    feed, provider, candidates, bias_by_url = _scenario()
    cache = TTLCache()
    analyzer = make_analyzer(feed, [provider], cache=cache)

    first = collect(analyzer.analyze("r/test", candidates, bias_by_url))[-1]
    calls = len(provider.calls)
    again = collect(analyzer.analyze("r/test", candidates, bias_by_url))

    assert len(again) == 1
    assert again[0].cached and again[0].final
    assert again[0].aggregate == first.aggregate
    assert again[0].to_payload()["cached"] is True
    assert len(provider.calls) == calls
    assert len(feed.thread_calls) == 3


def test_different_candidates_not_cached_together():
    feed, provider, candidates, bias_by_url = _scenario()
    analyzer = make_analyzer(feed, [provider])
    collect(analyzer.analyze("r/test", candidates, bias_by_url))
    rerun = collect(analyzer.analyze("r/test", candidates[:2], bias_by_url))
    assert not rerun[-1].cached


def test_no_providers_keeps_samples_without_stance():
    feed, _, candidates, bias_by_url = _scenario()
    analyzer = make_analyzer(feed, [])

    final = collect(analyzer.analyze("r/test", candidates, bias_by_url))[-1]

    assert all(s.stance is None for s in final.samples)
    assert final.samples[0].sample_comments == ["right on", "exactly"]
    assert final.aggregate.lean_raw == NEUTRAL_SCORE


def test_provider_failure_excludes_sample():
    feed, _, candidates, bias_by_url = _scenario()
    analyzer = make_analyzer(feed, [FakeClassifier("deepseek", ConnectionError("down"))])
    final = collect(analyzer.analyze("r/test", candidates, bias_by_url))[-1]
    assert all(s.refined_lean is None for s in final.samples)


def test_unexpected_error_degrades_one_sample():
    feed, provider, candidates, bias_by_url = _scenario()
    feed.threads[candidates[1].thread_ref] = KeyError("boom")
    analyzer = make_analyzer(feed, [provider])

    final = collect(analyzer.analyze("r/test", candidates, bias_by_url))[-1]

    assert final.samples[0].refined_lean is not None
    assert final.samples[1].stance is None
    assert final.samples[1].engagement == 5
    assert final.aggregate.lean_raw == pytest.approx(7.857, abs=1e-3)


def test_jitter_applied_before_each_fetch():
    waits = []

    async def sleep(seconds):
        waits.append(seconds)

    feed, provider, candidates, bias_by_url = _scenario()
    analyzer = make_analyzer(feed, [provider], sleep=sleep, jitter_range_ms=(50, 200))
    collect(analyzer.analyze("r/test", candidates, bias_by_url))

    assert len(waits) == 3
    assert all(0.05 <= w <= 0.2 for w in waits)


def test_empty_candidate_list():
    analyzer = make_analyzer(FakeFeed(), [])
    snapshots = collect(analyzer.analyze("r/test", [], {}))
    assert len(snapshots) == 1
    assert snapshots[0].final
    assert snapshots[0].progress.total == 0
    assert snapshots[0].aggregate.label == "Least Biased"


def test_candidate_selection():
    with_bias = [make_item(str(i), url=f"https://foxnews.com/{i}") for i in range(8)]
    plain = [make_item(f"p{i}", url="https://self.example/") for i in range(3)]
    bias_by_url = {item.external_url: RIGHT for item in with_bias}

    selected = select_candidates(plain + with_bias, bias_by_url, limit=6)
    assert selected == with_bias[:6]

    assert select_candidates(plain, {}, limit=2) == plain[:2]


def test_classifier_input_layout():
    item = make_item("x", title="Senate passes bill")
    text = build_classifier_input(item, "Left", ["one", "two"])
    assert text == "SOURCE_BIAS: label=Left, score=2.14\nTITLE: Senate passes bill\n---\none\n---\ntwo"
    assert build_classifier_input(item, None, []) == "TITLE: Senate passes bill\n---"


def test_base_stance_precedence():
    stance = StanceAssessment(alignment="aligns", stance_label="Left", stance_score=3.0, provider="p")
    assert derive_base_stance("Right", stance) == (pytest.approx(7.857, abs=1e-3), False)
    assert derive_base_stance(None, stance) == (3.0, False)

    by_label = StanceAssessment(alignment="aligns", stance_label="Right-Center", provider="p")
    assert derive_base_stance("Satire", by_label) == (pytest.approx(6.4286, abs=1e-3), False)

    no_stance = StanceAssessment(alignment="aligns", provider="p")
    assert derive_base_stance(None, no_stance) == (NEUTRAL_SCORE, True)

    unclear = StanceAssessment(alignment="unclear", stance_label="Populist", provider="p")
    assert derive_base_stance(None, unclear) == (NEUTRAL_SCORE, True)

    unknown = StanceAssessment(alignment="aligns", stance_label="Populist", provider="p")
    assert derive_base_stance(None, unknown) == (None, False)


def test_unscored_source_label_infers_title_stance():
    item = make_item("s", url="https://satire.example/piece", comments=4)
    feed = FakeFeed(items=[item], threads={item.thread_ref: ["lol"]})

    def reply(prompt):
        if "POST TITLE" in prompt:
            return stance_reply(stance_label="Right", alignment="aligns", alignment_score=1, confidence=0.6)
        return stance_reply(alignment="aligns", alignment_score=1, confidence=0.6)

    analyzer = make_analyzer(feed, [FakeClassifier("deepseek", reply)])
    satire = {item.external_url: BiasRecord(domain_key="satire.example", bias_label="Satire")}

    sample = collect(analyzer.analyze("r/test", [item], satire))[-1].samples[0]

    assert sample.bias_label == "Satire"
    assert sample.base_defaulted is False
    assert sample.base_score == pytest.approx(7.857, abs=1e-3)
    assert sample.refined_label == "Right"
