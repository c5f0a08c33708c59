"""Tests for the boundary-detection pass with fake providers."""

import logging
from collections.abc import Mapping

from boundary_engine.application.use_cases.detect_boundaries import DetectBoundaries
from boundary_engine.application.use_cases.score_semantic import SemanticBoundaryScorer
from boundary_engine.application.use_cases.score_statistical import StatisticalBoundaryScorer
from boundary_engine.domain.config import EngineConfig
from boundary_engine.domain.errors import (
    DomainError,
    InvalidInput,
    ProviderUnavailable,
    RateLimited,
)
from boundary_engine.domain.models import BoundaryType, Segment, SignalMode, TokenLogProb
from boundary_engine.domain.types import Result, Vector

CFG = EngineConfig(min_segment_length=0, retry_backoff_s=0.0)

CAT_MAT = [
    Segment(0, "The cat sat."),
    Segment(1, "On the mat."),
    Segment(2, "Stock prices rose 3% today."),
]


class FakeLogProbs:
    """Every token of a text gets the same log-probability."""

    def __init__(self, per_text: Mapping[str, float], default: float = -1.0) -> None:
        self.per_text = per_text
        self.default = default
        self.calls: list[tuple[str, str]] = []

    async def score_tokens(
        self, text: str, context: str = ""
    ) -> Result[list[TokenLogProb], DomainError]:
        self.calls.append((text, context))
        lp = self.per_text.get(text, self.default)
        return Result.success([TokenLogProb(f"t{i}", lp, i) for i in range(5)])


class FailingLogProbs:
    async def score_tokens(
        self, text: str, context: str = ""
    ) -> Result[list[TokenLogProb], DomainError]:
        return Result.failure(ProviderUnavailable("connection refused", provider="fake"))


class FakeEmbedding:
    def __init__(self, vectors: Mapping[str, Vector]) -> None:
        self.vectors = vectors
        self.calls: list[str] = []

    async def embed(self, text: str) -> Result[Vector, DomainError]:
        self.calls.append(text)
        return Result.success(self.vectors.get(text, (0.5, 0.5)))


class ThrottledEmbedding:
    def __init__(self) -> None:
        self.calls = 0

    async def embed(self, text: str) -> Result[Vector, DomainError]:
        self.calls += 1
        return Result.failure(RateLimited("quota exceeded", provider="fake"))


def _cat_mat_logprobs() -> FakeLogProbs:
    return FakeLogProbs({"On the mat.": -0.5, "Stock prices rose 3% today.": -5.0})


def _cat_mat_embedding() -> FakeEmbedding:
    return FakeEmbedding(
        {
            "The cat sat.": (1.0, 0.0),
            "On the mat.": (0.9, 0.1),
            "Stock prices rose 3% today.": (0.0, 1.0),
        }
    )


def _detector(logprobs=None, embedding=None) -> DetectBoundaries:
    return DetectBoundaries(
        statistical=StatisticalBoundaryScorer(logprobs or _cat_mat_logprobs()),
        semantic=SemanticBoundaryScorer(embedding) if embedding is not None else None,
    )


async def test_topic_shift_is_detected_and_narrative_is_not():
    res = await _detector(embedding=_cat_mat_embedding()).execute(CAT_MAT, CFG)

    assert res.ok and res.value is not None
    first, second = res.value
    assert first.index == 0 and not first.is_boundary
    assert second.index == 1 and second.is_boundary
    assert second.statistical_score is not None and second.statistical_score > 0.6
    assert second.semantic_similarity is not None and second.semantic_similarity < 0.5
    assert second.mode is SignalMode.HYBRID
    assert second.boundary_type is BoundaryType.TOPIC_CHANGE
    assert first.warnings == () and second.warnings == ()


async def test_statistical_pass_scores_each_segment_against_its_predecessor():
    logprobs = _cat_mat_logprobs()
    embedding = _cat_mat_embedding()
    await _detector(logprobs, embedding).execute(CAT_MAT, CFG)

    assert sorted(logprobs.calls) == sorted(
        [("On the mat.", "The cat sat."), ("Stock prices rose 3% today.", "On the mat.")]
    )
    # each segment embedded once, not once per pair
    assert sorted(embedding.calls) == sorted(s.text for s in CAT_MAT)


async def test_rate_limited_semantic_falls_back_to_statistical_only():
    dual = await _detector(embedding=_cat_mat_embedding()).execute(CAT_MAT, CFG)
    single = await _detector(embedding=ThrottledEmbedding()).execute(CAT_MAT, CFG)

    assert dual.ok and single.ok
    assert dual.value is not None and single.value is not None
    shifted = single.value[1]
    assert shifted.mode is SignalMode.STATISTICAL_ONLY
    assert shifted.is_boundary
    assert shifted.confidence < dual.value[1].confidence
    assert any("RateLimited" in w for w in shifted.warnings)
    assert any("statistical-only" in w for w in shifted.warnings)


async def test_statistical_failure_makes_no_decision():
    res = await _detector(FailingLogProbs(), _cat_mat_embedding()).execute(CAT_MAT, CFG)

    assert res.ok and res.value is not None
    assert all(b.mode is SignalMode.NONE for b in res.value)
    assert not any(b.is_boundary for b in res.value)
    assert all("statistical scoring failed" in b.warnings[0] for b in res.value)


async def test_without_semantic_provider_decisions_are_statistical_only():
    res = await _detector().execute(CAT_MAT, CFG)

    assert res.ok and res.value is not None
    assert [b.mode for b in res.value] == [SignalMode.STATISTICAL_ONLY] * 2
    assert res.value[1].is_boundary


async def test_whitespace_segment_is_never_sent_to_providers():
    logprobs = _cat_mat_logprobs()
    embedding = _cat_mat_embedding()
    segments = [Segment(0, "The cat sat."), Segment(1, "   "), Segment(2, "On the mat.")]

    res = await _detector(logprobs, embedding).execute(segments, CFG)

    assert res.ok and res.value is not None
    assert "   " not in embedding.calls
    assert all(text != "   " for text, _ in logprobs.calls)
    assert res.value[0].semantic_similarity == 1.0
    assert res.value[0].statistical_score == 0.0
    assert not res.value[0].is_boundary


async def test_short_segments_suppress_boundaries():
    cfg = EngineConfig(min_segment_length=50, retry_backoff_s=0.0)
    res = await _detector(embedding=_cat_mat_embedding()).execute(CAT_MAT, cfg)

    assert res.ok and res.value is not None
    assert not res.value[1].is_boundary
    assert "suppressed" in res.value[1].reason


async def test_nearby_boundaries_are_merged():
    segments = [Segment(0, "Alpha."), Segment(1, "Beta."), Segment(2, "Gamma.")]
    logprobs = FakeLogProbs({}, default=-5.0)
    embedding = FakeEmbedding(
        {"Alpha.": (1.0, 0.0, 0.0), "Beta.": (0.0, 1.0, 0.0), "Gamma.": (0.0, 0.0, 1.0)}
    )

    merged = await _detector(logprobs, embedding).execute(segments, CFG)
    unmerged = await _detector(logprobs, embedding).execute(
        segments, EngineConfig(min_segment_length=0, merge_nearby_boundaries=False)
    )

    assert merged.value is not None and unmerged.value is not None
    assert [b.is_boundary for b in unmerged.value] == [True, True]
    assert [b.is_boundary for b in merged.value] == [True, False]
    assert merged.value[1].suppressed_by == 0


async def test_minmax_normalisation_spans_the_document():
    cfg = EngineConfig(min_segment_length=0, statistical_normalization="minmax")
    res = await _detector().execute(CAT_MAT, cfg)

    assert res.value is not None
    assert [b.statistical_score for b in res.value] == [0.0, 1.0]


async def test_repeated_runs_do_not_share_threshold_state():
    detector = _detector(embedding=_cat_mat_embedding())
    first = await detector.execute(CAT_MAT, CFG)
    second = await detector.execute(CAT_MAT, CFG)
    assert first.value == second.value


async def test_segments_are_processed_in_index_order():
    shuffled = [CAT_MAT[2], CAT_MAT[0], CAT_MAT[1]]
    res = await _detector(embedding=_cat_mat_embedding()).execute(shuffled, CFG)
    assert res.value is not None
    assert [b.index for b in res.value] == [0, 1]
    assert res.value[1].is_boundary


async def test_invalid_input_is_reported_immediately():
    detector = _detector()
    empty = await detector.execute([], CFG)
    duplicate = await detector.execute([Segment(0, "a"), Segment(0, "b")], CFG)
    oversized = await detector.execute(
        [Segment(0, "x" * 20), Segment(1, "y")], EngineConfig(max_segment_chars=10)
    )

    for res in (empty, duplicate, oversized):
        assert not res.ok
        assert isinstance(res.error, InvalidInput)


async def test_single_segment_has_no_pairs():
    logprobs = _cat_mat_logprobs()
    res = await _detector(logprobs).execute([Segment(0, "Only one.")], CFG)
    assert res.ok and res.value == []
    assert logprobs.calls == []


async def test_degraded_pairs_are_logged(caplog):
    with caplog.at_level(logging.WARNING):
        await _detector(embedding=ThrottledEmbedding()).execute(CAT_MAT, CFG)
    assert "degraded" in caplog.text


async def test_adaptive_threshold_learns_from_hybrid_scores_only():
    segments = [Segment(i, f"Segment number {i}.") for i in range(5)]
    logprobs = FakeLogProbs({}, default=-5.0)
    orthogonal = {
        s.text: tuple(1.0 if j == s.index else 0.0 for j in range(5)) for s in segments
    }
    cfg = EngineConfig(min_segment_length=0, retry_backoff_s=0.0, merge_nearby_boundaries=False)

    stat_only = await _detector(logprobs).execute(segments, cfg)
    hybrid = await _detector(logprobs, FakeEmbedding(orthogonal)).execute(segments, cfg)

    assert stat_only.value is not None and hybrid.value is not None
    assert [b.threshold for b in stat_only.value] == [cfg.boundary_threshold] * 4
    assert hybrid.value[3].threshold > cfg.boundary_threshold
