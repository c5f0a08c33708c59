# boundary_engine/domain/models.py
# Domain models must be pure (no I/O, no external libs)
from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

_EMPTY: Mapping[str, Any] = MappingProxyType({})


@dataclass(frozen=True)
class Segment:
    """
    Immutable span of normalized text produced by an external reader.

    - index: stable, sequential position in the document
    - text:  plain text; never mutated by the engine
    """

    index: int
    text: str


@dataclass(frozen=True)
class TokenLogProb:
    token: str
    logprob: float
    position: int = 0

    @property
    def probability(self) -> float:
        return math.exp(self.logprob)


@dataclass(frozen=True)
class StatisticalResult:
    """
    Uncertainty of a segment given its preceding context.

    - score:          normalized uncertainty in [0,1] (1 = likely boundary)
    - raw_nll:        mean negative log-likelihood per token (nats)
    - perplexity:     exp(raw_nll)
    - token_logprobs: per-token log-probabilities the score was derived from
    - confidence:     trust in the score, grows with token count
    """

    score: float
    raw_nll: float
    perplexity: float
    token_logprobs: tuple[TokenLogProb, ...]
    token_count: int
    confidence: float
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class SemanticResult:
    """Cosine similarity of two adjacent segments, in [-1, 1]."""

    similarity: float
    degenerate: bool = False  # an empty/whitespace side short-circuited to 1.0


class SignalMode(str, Enum):
    HYBRID = "hybrid"
    STATISTICAL_ONLY = "statistical_only"
    NONE = "none"


class BoundaryType(str, Enum):
    NONE = "none"
    TOPIC_CHANGE = "topic_change"
    SECTION = "section"
    PARAGRAPH = "paragraph"
    SENTENCE = "sentence"
    CODE_BLOCK = "code_block"
    TABLE = "table"
    LIST = "list"


@dataclass(frozen=True)
class BoundaryScore:
    """
    Fused boundary decision for the adjacent pair (index, index + 1).

    - statistical_score:   normalized uncertainty of segment index+1, or None
    - semantic_similarity: cosine similarity of the pair, or None
    - hybrid_score:        only set when both signals are available
    - decision_score:      the value compared against ``threshold``
                           (hybrid, or statistical-only fallback)
    - mode:                which signals produced the decision
    - suppressed_by:       index of the stronger nearby boundary that absorbed
                           this one during merging
    """

    index: int
    statistical_score: float | None
    semantic_similarity: float | None
    hybrid_score: float | None
    decision_score: float | None
    threshold: float
    is_boundary: bool
    confidence: float
    mode: SignalMode
    boundary_type: BoundaryType = BoundaryType.NONE
    statistical_contribution: float = 0.0
    semantic_contribution: float = 0.0
    reason: str = ""
    suppressed_by: int | None = None
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class ChunkCandidate:
    """
    Contiguous run of segments assembled between two accepted boundaries.

    - start_char/end_char: offsets into the document formed by joining all
      segments with the assembly separator (end exclusive)
    - metadata: caller-defined passthrough; the engine never reads it
    """

    index: int
    segments: tuple[Segment, ...]
    text: str
    start_char: int
    end_char: int
    metadata: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)

    @property
    def first_segment(self) -> int:
        return self.segments[0].index if self.segments else -1

    @property
    def last_segment(self) -> int:
        return self.segments[-1].index if self.segments else -1


class AssessmentStage(str, Enum):
    INITIAL = "initial"
    REFLECTION = "reflection"
    CRITIC = "critic"


@dataclass(frozen=True)
class StageVerdict:
    stage: AssessmentStage
    score: float
    reasoning: str
    revised: bool = False


@dataclass(frozen=True)
class AssessmentFactor:
    """Named, signed contribution to an assessment; for debugging only."""

    name: str
    contribution: float
    explanation: str


@dataclass(frozen=True)
class ChunkAssessment:
    initial_score: float
    reflection_score: float | None
    critic_score: float | None
    final_score: float
    confidence: float
    factors: tuple[AssessmentFactor, ...] = ()
    reasoning: Mapping[str, str] = field(default_factory=lambda: _EMPTY)
    suggestions: tuple[str, ...] = ()
    completed_stages: tuple[AssessmentStage, ...] = ()
    warnings: tuple[str, ...] = ()

    def factor(self, name: str) -> AssessmentFactor | None:
        return next((f for f in self.factors if f.name == name), None)


class CriterionType(str, Enum):
    KEYWORD_PRESENCE = "keyword_presence"
    TOPIC_RELEVANCE = "topic_relevance"
    INFORMATION_DENSITY = "information_density"
    FACTUAL_CONTENT = "factual_content"
    COMPLETENESS = "completeness"


@dataclass(frozen=True)
class FilterCriterion:
    """
    Caller-supplied filter criterion.

    - value:     keyword or tuple of keywords for KEYWORD_PRESENCE, else unused
    - mandatory: a mandatory criterion scoring below ``min_score`` fails the chunk
    """

    type: CriterionType
    value: str | tuple[str, ...] = ""
    weight: float = 1.0
    mandatory: bool = False
    min_score: float = 0.5


@dataclass(frozen=True)
class QualityMetrics:
    """Signal-independent chunk quality; every sub-score lies in [0,1]."""

    completeness: float
    boundary_sharpness: float
    information_density: float
    structural_coherence: float
    size_fitness: float
    factual_content: float
    redundancy_control: float
    overall_score: float
    recommendations: tuple[str, ...] = ()

    @staticmethod
    def from_scores(
        *,
        completeness: float,
        boundary_sharpness: float,
        information_density: float,
        structural_coherence: float,
        size_fitness: float,
        factual_content: float,
        redundancy_control: float,
        recommendations: tuple[str, ...] = (),
    ) -> QualityMetrics:
        parts = (
            completeness,
            boundary_sharpness,
            information_density,
            structural_coherence,
            size_fitness,
            factual_content,
            redundancy_control,
        )
        return QualityMetrics(
            completeness=completeness,
            boundary_sharpness=boundary_sharpness,
            information_density=information_density,
            structural_coherence=structural_coherence,
            size_fitness=size_fitness,
            factual_content=factual_content,
            redundancy_control=redundancy_control,
            overall_score=sum(parts) / len(parts),
            recommendations=recommendations,
        )


@dataclass(frozen=True)
class FilteredChunk:
    chunk: ChunkCandidate
    relevance_score: float
    quality_score: float
    combined_score: float
    passed: bool
    reason: str
    assessment: ChunkAssessment
    quality: QualityMetrics
    warnings: tuple[str, ...] = ()
