# boundary_engine/application/use_cases/detect_boundaries.py
from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import replace

from boundary_engine.application.use_cases.score_semantic import (
    SemanticBoundaryScorer,
    is_degenerate,
)
from boundary_engine.application.use_cases.score_statistical import StatisticalBoundaryScorer
from boundary_engine.domain.config import EngineConfig
from boundary_engine.domain.errors import DomainError, InvalidInput
from boundary_engine.domain.models import (
    BoundaryScore,
    BoundaryType,
    Segment,
    SemanticResult,
    SignalMode,
    StatisticalResult,
)
from boundary_engine.domain.services.fusion import (
    AdaptiveThreshold,
    BoundaryFuser,
    merge_nearby_boundaries,
)
from boundary_engine.domain.services.statistical import normalize_document
from boundary_engine.domain.types import Result, Vector

logger = logging.getLogger(__name__)


def validate_segments(
    segments: Sequence[Segment], cfg: EngineConfig
) -> list[Segment] | InvalidInput:
    if not segments:
        return InvalidInput("no segments given")
    ordered = sorted(segments, key=lambda s: s.index)
    seen: set[int] = set()
    for seg in ordered:
        if seg.index in seen:
            return InvalidInput(f"duplicate segment index {seg.index}")
        seen.add(seg.index)
        if len(seg.text) > cfg.max_segment_chars:
            return InvalidInput(
                f"segment {seg.index} has {len(seg.text)} chars (max {cfg.max_segment_chars})"
            )
    return ordered


class DetectBoundaries:
    """
    One boundary-detection pass over a document.

    Gathers both signals for every adjacent pair concurrently, then fuses
    them in segment order. The adaptive threshold lives only inside one
    ``execute`` call, so concurrent documents never share it.
    """

    def __init__(
        self,
        statistical: StatisticalBoundaryScorer,
        semantic: SemanticBoundaryScorer | None = None,
    ) -> None:
        self.statistical = statistical
        self.semantic = semantic

    async def execute(
        self,
        segments: Sequence[Segment],
        cfg: EngineConfig,
        *,
        cancel: asyncio.Event | None = None,
    ) -> Result[list[BoundaryScore], DomainError]:
        # 1) Validate
        checked = validate_segments(segments, cfg)
        if isinstance(checked, InvalidInput):
            return Result.failure(checked)
        ordered = checked
        if len(ordered) < 2:
            return Result.success([])

        # 2) Gather signals (bounded, per-call semaphore)
        semaphore = asyncio.Semaphore(cfg.max_concurrency)
        stat_results, vectors = await asyncio.gather(
            self._statistical_pass(ordered, cfg, cancel, semaphore),
            self._embedding_pass(ordered, cfg, cancel, semaphore),
        )

        # 3) Document-level normalisation (minmax needs every raw value)
        stat_scores = self._normalized_scores(stat_results, cfg)

        # 4) Fuse in segment order
        fuser = BoundaryFuser(cfg)
        adaptive = AdaptiveThreshold(cfg)
        scores: list[BoundaryScore] = []
        for i in range(len(ordered) - 1):
            left, right = ordered[i], ordered[i + 1]
            stat_res = stat_results[i]
            sem_res = self._pair_similarity(left, right, vectors, i)
            warnings: list[str] = []
            stat_value: float | None = None
            stat_conf = 0.0
            if isinstance(stat_res, StatisticalResult):
                stat_value = stat_scores[i]
                stat_conf = stat_res.confidence
                warnings.extend(stat_res.warnings)
            else:
                warnings.append(f"statistical scoring failed: {stat_res}")
            similarity: float | None = None
            if isinstance(sem_res, SemanticResult):
                similarity = sem_res.similarity
            elif sem_res is not None:
                warnings.append(f"semantic scoring failed: {sem_res}")

            threshold = adaptive.current()
            score = fuser.fuse(
                left.index,
                stat_value,
                similarity,
                threshold,
                statistical_confidence=stat_conf,
                left_text=left.text,
                right_text=right.text,
                warnings=warnings,
            )
            if score.mode is SignalMode.HYBRID and score.hybrid_score is not None:
                adaptive.observe(score.hybrid_score)
            if score.is_boundary and self._too_short(left, right, cfg):
                score = replace(
                    score,
                    is_boundary=False,
                    boundary_type=BoundaryType.NONE,
                    reason=f"{score.reason}, suppressed: segment shorter than "
                    f"{cfg.min_segment_length} chars",
                )
            if score.warnings:
                logger.warning("pair %d degraded: %s", left.index, "; ".join(score.warnings))
            logger.debug(
                "pair %d: mode=%s decision=%s threshold=%.3f boundary=%s",
                left.index,
                score.mode.value,
                score.decision_score,
                threshold,
                score.is_boundary,
            )
            scores.append(score)

        # 5) Collapse nearby boundaries
        if cfg.merge_nearby_boundaries:
            scores = merge_nearby_boundaries(scores, cfg.merge_distance)

        logger.info(
            "detected %d boundaries over %d segments",
            sum(1 for b in scores if b.is_boundary),
            len(ordered),
        )
        return Result.success(scores)

    # ---------- signal gathering ----------

    async def _statistical_pass(
        self,
        ordered: list[Segment],
        cfg: EngineConfig,
        cancel: asyncio.Event | None,
        semaphore: asyncio.Semaphore,
    ) -> list[StatisticalResult | DomainError]:
        """Score segment i+1 given segment i, for every pair i."""
        results = await asyncio.gather(
            *(
                self.statistical.score(
                    ordered[i + 1].text,
                    cfg,
                    context=ordered[i].text,
                    cancel=cancel,
                    semaphore=semaphore,
                )
                for i in range(len(ordered) - 1)
            )
        )
        return [r.value if r.ok else r.error for r in results]  # type: ignore[misc]

    async def _embedding_pass(
        self,
        ordered: list[Segment],
        cfg: EngineConfig,
        cancel: asyncio.Event | None,
        semaphore: asyncio.Semaphore,
    ) -> list[Vector | DomainError | None]:
        """Embed every segment once; whitespace-only segments are not embedded."""
        if self.semantic is None:
            return []
        semantic = self.semantic

        async def one(seg: Segment) -> Vector | DomainError | None:
            if is_degenerate(seg.text):
                return None
            res = await semantic.embed(seg.text, cfg, cancel=cancel, semaphore=semaphore)
            return res.value if res.ok else res.error

        return list(await asyncio.gather(*(one(s) for s in ordered)))

    def _pair_similarity(
        self,
        left: Segment,
        right: Segment,
        vectors: list[Vector | DomainError | None],
        i: int,
    ) -> SemanticResult | DomainError | None:
        """None means no semantic provider is configured."""
        if self.semantic is None:
            return None
        res = self.semantic.resolve(left.text, right.text, vectors[i], vectors[i + 1])
        return res.value if res.ok else res.error

    @staticmethod
    def _normalized_scores(
        stat_results: list[StatisticalResult | DomainError], cfg: EngineConfig
    ) -> list[float | None]:
        out: list[float | None] = [
            r.score if isinstance(r, StatisticalResult) else None for r in stat_results
        ]
        if cfg.statistical_normalization != "minmax":
            return out
        # short segments keep their score of 0; everything else is rescaled together
        positions = [
            i
            for i, r in enumerate(stat_results)
            if isinstance(r, StatisticalResult) and r.token_count >= cfg.min_token_count
        ]
        if len(positions) < 2:
            return out
        raw = [stat_results[i].raw_nll for i in positions]  # type: ignore[union-attr]
        rescaled = normalize_document(raw, cfg)
        for i, value in zip(positions, rescaled, strict=True):
            out[i] = value
        return out

    @staticmethod
    def _too_short(left: Segment, right: Segment, cfg: EngineConfig) -> bool:
        limit = cfg.min_segment_length
        return len(left.text.strip()) < limit or len(right.text.strip()) < limit
