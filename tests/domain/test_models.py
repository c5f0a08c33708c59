"""Tests for the immutable value objects."""

import math

import pytest

from boundary_engine.domain.models import (
    AssessmentFactor,
    ChunkAssessment,
    ChunkCandidate,
    QualityMetrics,
    Segment,
    TokenLogProb,
)


def test_segment_is_frozen():
    seg = Segment(index=0, text="hello")
    with pytest.raises(AttributeError):
        seg.text = "other"  # type: ignore[misc]


def test_token_logprob_probability():
    tok = TokenLogProb(token=" the", logprob=math.log(0.25))
    assert math.isclose(tok.probability, 0.25)


def test_chunk_candidate_segment_span():
    segs = (Segment(3, "a"), Segment(4, "b"))
    chunk = ChunkCandidate(index=0, segments=segs, text="a\n\nb", start_char=0, end_char=4)

    assert chunk.first_segment == 3
    assert chunk.last_segment == 4
    assert dict(chunk.metadata) == {}


def test_chunk_assessment_factor_lookup():
    assessment = ChunkAssessment(
        initial_score=0.8,
        reflection_score=None,
        critic_score=None,
        final_score=0.8,
        confidence=0.6,
        factors=(AssessmentFactor("keyword density", 0.5, "half the keywords"),),
    )

    factor = assessment.factor("keyword density")
    assert factor is not None and factor.contribution == 0.5
    assert assessment.factor("topic drift") is None


def test_mapping_defaults_are_empty_and_read_only():
    chunk = ChunkCandidate(index=0, segments=(), text="", start_char=0, end_char=0)
    assessment = ChunkAssessment(
        initial_score=0.5,
        reflection_score=None,
        critic_score=None,
        final_score=0.5,
        confidence=0.5,
    )

    assert dict(chunk.metadata) == {} and dict(assessment.reasoning) == {}
    with pytest.raises(TypeError):
        chunk.metadata["doc_id"] = "x"  # type: ignore[index]


def test_quality_metrics_overall_is_mean_of_sub_scores():
    m = QualityMetrics.from_scores(
        completeness=1.0,
        boundary_sharpness=0.5,
        information_density=0.5,
        structural_coherence=0.5,
        size_fitness=0.5,
        factual_content=0.0,
        redundancy_control=0.5,
    )
    assert math.isclose(m.overall_score, 3.5 / 7)
    assert m.recommendations == ()
