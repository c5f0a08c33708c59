"""Pure boundary fusion: hybrid scoring, adaptive thresholds, merging.

The fuser never calls a provider. Orchestration hands it the two signals and
a threshold; everything here is deterministic arithmetic.

Functions:
- BoundaryFuser.hybrid_score: α·s + (1-α)·(1-sim)
- BoundaryFuser.fuse: one BoundaryScore per adjacent pair
- AdaptiveThreshold: running mean/variance of decision scores, one document
- merge_nearby_boundaries: collapse boundaries within merge_distance
- classify_boundary: structural type of an accepted boundary
"""

from __future__ import annotations

import math
import re
from collections.abc import Sequence
from dataclasses import replace

from boundary_engine.domain.config import EngineConfig
from boundary_engine.domain.models import BoundaryScore, BoundaryType, SignalMode
from boundary_engine.domain.similarity import clamp01

# Single-signal decisions never reach the floor of a dual-signal decision (0.5).
STATISTICAL_ONLY_CAP = 0.45
TOPIC_CHANGE_SIMILARITY = 0.3

_HEADING = re.compile(r"^\s*(#{1,6}\s+\S|(chapter|section)\s+\S|\d+(\.\d+)*\.?\s+[A-Z])", re.I)
_LIST_ITEM = re.compile(r"^\s*([-*+•]|\d+\.)\s+", re.M)


class AdaptiveThreshold:
    """Threshold derived from the decision scores seen so far in one document.

    Busy documents (uniformly high scores) raise the threshold; flat ones
    lower it, so both still produce a proportionate number of boundaries.
    The running statistics use Welford's update. One instance belongs to
    exactly one document pass and must not be shared.
    """

    def __init__(self, cfg: EngineConfig) -> None:
        self._cfg = cfg
        self._n = 0
        self._mean = 0.0
        self._m2 = 0.0

    @property
    def count(self) -> int:
        return self._n

    @property
    def mean(self) -> float:
        return self._mean

    @property
    def std(self) -> float:
        if self._n < 2:
            return 0.0
        return math.sqrt(self._m2 / (self._n - 1))

    def current(self) -> float:
        cfg = self._cfg
        if not cfg.use_adaptive_threshold or self._n < cfg.adaptive_warmup:
            return cfg.boundary_threshold
        target = self._mean + cfg.adaptive_std_factor * self.std
        w = cfg.adaptive_weight
        blended = w * cfg.boundary_threshold + (1.0 - w) * target
        return max(cfg.adaptive_min_threshold, min(cfg.adaptive_max_threshold, blended))

    def observe(self, score: float) -> None:
        self._n += 1
        delta = score - self._mean
        self._mean += delta / self._n
        self._m2 += delta * (score - self._mean)


class BoundaryFuser:
    def __init__(self, cfg: EngineConfig) -> None:
        self.cfg = cfg

    def hybrid_score(self, statistical_score: float, semantic_similarity: float) -> float:
        """α·statistical + (1-α)·(1-similarity); similarity is clamped to [0,1]."""
        a = self.cfg.alpha
        return a * statistical_score + (1.0 - a) * (1.0 - clamp01(semantic_similarity))

    def is_boundary(self, score: float, threshold: float) -> bool:
        # Within tie_epsilon of the threshold counts as "no boundary".
        return score - threshold >= self.cfg.tie_epsilon

    def separation(self, score: float, threshold: float) -> float:
        span = max(threshold, 1.0 - threshold, 1e-9)
        return min(1.0, abs(score - threshold) / span)

    def confidence(
        self,
        score: float,
        threshold: float,
        *,
        statistical_score: float,
        semantic_similarity: float | None,
        statistical_confidence: float = 1.0,
    ) -> float:
        reliability = 0.5 + 0.5 * clamp01(statistical_confidence)
        sep = self.separation(score, threshold)
        if semantic_similarity is None:
            return STATISTICAL_ONLY_CAP * (0.5 + 0.5 * sep) * reliability
        agreement = 1.0 - abs(statistical_score - (1.0 - clamp01(semantic_similarity)))
        return (0.5 + 0.5 * (0.6 * sep + 0.4 * agreement)) * reliability

    def fuse(
        self,
        index: int,
        statistical_score: float | None,
        semantic_similarity: float | None,
        threshold: float,
        *,
        statistical_confidence: float = 1.0,
        left_text: str = "",
        right_text: str = "",
        warnings: Sequence[str] = (),
    ) -> BoundaryScore:
        """Combine both signals of the pair (index, index+1) into one decision."""
        notes = list(warnings)
        if statistical_score is None:
            notes.append("statistical signal unavailable; no boundary decision made")
            return BoundaryScore(
                index=index,
                statistical_score=None,
                semantic_similarity=semantic_similarity,
                hybrid_score=None,
                decision_score=None,
                threshold=threshold,
                is_boundary=False,
                confidence=0.0,
                mode=SignalMode.NONE,
                reason="no decision",
                warnings=tuple(notes),
            )

        a = self.cfg.alpha
        stat_part = a * statistical_score
        if semantic_similarity is None:
            notes.append("semantic signal unavailable; statistical-only decision")
            mode = SignalMode.STATISTICAL_ONLY
            hybrid = None
            decision = statistical_score
            sem_part = 0.0
        else:
            mode = SignalMode.HYBRID
            hybrid = self.hybrid_score(statistical_score, semantic_similarity)
            decision = hybrid
            sem_part = (1.0 - a) * (1.0 - clamp01(semantic_similarity))

        boundary = self.is_boundary(decision, threshold)
        btype = classify_boundary(left_text, right_text, semantic_similarity, decision, boundary)
        return BoundaryScore(
            index=index,
            statistical_score=statistical_score,
            semantic_similarity=semantic_similarity,
            hybrid_score=hybrid,
            decision_score=decision,
            threshold=threshold,
            is_boundary=boundary,
            confidence=self.confidence(
                decision,
                threshold,
                statistical_score=statistical_score,
                semantic_similarity=semantic_similarity,
                statistical_confidence=statistical_confidence,
            ),
            mode=mode,
            boundary_type=btype,
            statistical_contribution=stat_part,
            semantic_contribution=sem_part,
            reason=_reason(statistical_score, semantic_similarity, decision, threshold, btype),
            warnings=tuple(notes),
        )


def classify_boundary(
    left: str,
    right: str,
    similarity: float | None,
    decision_score: float,
    is_boundary: bool,
) -> BoundaryType:
    if not is_boundary:
        return BoundaryType.NONE
    if similarity is not None and similarity < TOPIC_CHANGE_SIMILARITY:
        return BoundaryType.TOPIC_CHANGE
    if _HEADING.match(right):
        return BoundaryType.SECTION
    if "```" in right or "```" in left:
        return BoundaryType.CODE_BLOCK
    if right.count("|") > 3:
        return BoundaryType.TABLE
    if _LIST_ITEM.search(right):
        return BoundaryType.LIST
    if decision_score > 0.5:
        return BoundaryType.PARAGRAPH
    return BoundaryType.SENTENCE


def _reason(
    stat: float,
    sim: float | None,
    decision: float,
    threshold: float,
    btype: BoundaryType,
) -> str:
    parts: list[str] = []
    if stat > 0.6:
        parts.append(f"high uncertainty ({stat:.2f})")
    if sim is not None and sim < 0.5:
        parts.append(f"low similarity ({sim:.2f})")
    relation = ">=" if btype is not BoundaryType.NONE else "<"
    parts.append(f"score {decision:.2f} {relation} threshold {threshold:.2f}")
    if btype is not BoundaryType.NONE:
        parts.append(f"{btype.value} boundary")
    return ", ".join(parts)


def _strength(b: BoundaryScore) -> tuple[float, float]:
    return (b.confidence, b.decision_score or 0.0)


def merge_nearby_boundaries(
    scores: Sequence[BoundaryScore], merge_distance: int
) -> list[BoundaryScore]:
    """Collapse accepted boundaries within ``merge_distance`` segments.

    Returns every input score in index order; the weaker member of a close
    pair keeps its numbers but loses ``is_boundary`` and points at the
    winner through ``suppressed_by``. Ties keep the earlier boundary.
    """
    out = sorted(scores, key=lambda b: b.index)
    if merge_distance <= 0:
        return out

    leader: int | None = None  # position in ``out``
    absorbed: list[int] = []
    for pos, b in enumerate(out):
        if not b.is_boundary:
            continue
        if leader is None or b.index - out[leader].index > merge_distance:
            leader, absorbed = pos, []
            continue
        if _strength(b) > _strength(out[leader]):
            absorbed.append(leader)
            winner = pos
        else:
            absorbed.append(pos)
            winner = leader
        for lost in absorbed:
            out[lost] = replace(
                out[lost],
                is_boundary=False,
                boundary_type=BoundaryType.NONE,
                suppressed_by=out[winner].index,
            )
        leader = winner
    return out
