# boundary_engine/application/use_cases/filter_chunks.py
from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from boundary_engine.application.dto.chunking_dto import FilterReport
from boundary_engine.application.use_cases.assess_chunk import ChunkAssessor
from boundary_engine.domain.config import EngineConfig
from boundary_engine.domain.errors import DomainError, InvalidInput
from boundary_engine.domain.models import ChunkCandidate, FilteredChunk, QualityMetrics
from boundary_engine.domain.services import assessment_rules as rules
from boundary_engine.domain.services.quality import assess_chunks
from boundary_engine.domain.types import Result

logger = logging.getLogger(__name__)


class FilterChunks:
    """
    Assess a batch of chunks and keep the ones worth emitting.

    A chunk passes when its final relevance reaches ``relevance_threshold``
    and every mandatory criterion is met. Survivors are ranked by
    ``quality_weight * quality + (1 - quality_weight) * relevance``.
    One chunk's provider trouble never blocks the others.
    """

    def __init__(self, assessor: ChunkAssessor) -> None:
        self.assessor = assessor

    async def execute(
        self,
        chunks: Sequence[ChunkCandidate],
        cfg: EngineConfig,
        *,
        query: str | None = None,
        quality: Sequence[QualityMetrics] | None = None,
        cancel: asyncio.Event | None = None,
    ) -> Result[FilterReport, DomainError]:
        # 1) Validate the whole batch before any provider call
        for c in chunks:
            if not c.text.strip():
                return Result.failure(InvalidInput(f"chunk {c.index} is empty"))
            if len(c.text) > cfg.max_segment_chars:
                return Result.failure(
                    InvalidInput(f"chunk {c.index} exceeds {cfg.max_segment_chars} chars")
                )
        if quality is not None and len(quality) != len(chunks):
            return Result.failure(InvalidInput("quality metrics do not match chunks"))
        if quality is None:
            quality = assess_chunks(chunks, cfg.target_chunk_chars)
        metrics = list(quality)

        # 2) Assess concurrently
        semaphore = asyncio.Semaphore(cfg.max_concurrency)
        results = await asyncio.gather(
            *(
                self.assessor.assess(
                    c, cfg, query=query, quality=m, cancel=cancel, semaphore=semaphore
                )
                for c, m in zip(chunks, metrics, strict=True)
            )
        )

        # 3) Pass/fail and combined score
        evaluated: list[FilteredChunk] = []
        for chunk, m, res in zip(chunks, metrics, results, strict=True):
            if not res.ok:
                return Result.failure(res.error)  # type: ignore[arg-type]
            assessment = res.value
            assert assessment is not None
            _, failed = rules.evaluate_criteria(cfg.criteria, chunk.text, query)
            relevance = assessment.final_score
            passed = relevance >= cfg.relevance_threshold and not failed
            evaluated.append(
                FilteredChunk(
                    chunk=chunk,
                    relevance_score=relevance,
                    quality_score=m.overall_score,
                    combined_score=rules.combined_score(
                        relevance, m.overall_score, cfg.quality_weight
                    ),
                    passed=passed,
                    reason=rules.filter_reason(
                        assessment, passed, cfg.relevance_threshold, failed
                    ),
                    assessment=assessment,
                    quality=m,
                    warnings=assessment.warnings,
                )
            )

        # 4) Select
        kept = [fc for fc in evaluated if fc.passed]
        if cfg.max_chunks is not None:
            kept = sorted(kept, key=lambda fc: fc.combined_score, reverse=True)[: cfg.max_chunks]
        if cfg.preserve_order:
            kept.sort(key=lambda fc: fc.chunk.index)

        logger.info("kept %d of %d chunks", len(kept), len(evaluated))
        return Result.success(FilterReport(evaluated=tuple(evaluated), kept=tuple(kept)))
