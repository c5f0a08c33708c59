# boundary_engine/application/use_cases/chunk_document.py
from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from boundary_engine.application.dto.chunking_dto import ChunkingReport
from boundary_engine.application.use_cases.detect_boundaries import DetectBoundaries
from boundary_engine.application.use_cases.filter_chunks import FilterChunks
from boundary_engine.domain.config import EngineConfig
from boundary_engine.domain.errors import DomainError
from boundary_engine.domain.models import Segment
from boundary_engine.domain.services.assembly import DEFAULT_SEPARATOR, assemble_chunks
from boundary_engine.domain.services.quality import assess_chunks
from boundary_engine.domain.types import Result

logger = logging.getLogger(__name__)


class ChunkDocument:
    """
    Detect -> assemble -> quality (always) -> assess/filter (optional).

    Thin orchestration over the other use cases for callers that want the
    whole flow in one call. Nothing is kept between documents.
    """

    def __init__(
        self,
        detector: DetectBoundaries,
        chunk_filter: FilterChunks | None = None,
        separator: str = DEFAULT_SEPARATOR,
    ) -> None:
        self.detector = detector
        self.chunk_filter = chunk_filter
        self.separator = separator

    async def execute(
        self,
        segments: Sequence[Segment],
        cfg: EngineConfig,
        *,
        query: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        cancel: asyncio.Event | None = None,
    ) -> Result[ChunkingReport, DomainError]:
        # 1) Boundaries
        detected = await self.detector.execute(segments, cfg, cancel=cancel)
        if not detected.ok:
            return Result.failure(detected.error)  # type: ignore[arg-type]
        boundaries = detected.value or []

        # 2) Assemble
        chunks = assemble_chunks(segments, boundaries, self.separator, metadata)

        # 3) Quality, always available
        quality = assess_chunks(chunks, cfg.target_chunk_chars)

        # 4) Optional assessment
        filtered = None
        skipped: list[str] = []
        if self.chunk_filter is not None:
            pairs = []
            for c, q in zip(chunks, quality, strict=True):
                if not c.text.strip():
                    skipped.append(f"chunk {c.index}: not assessed: blank")
                elif len(c.text) > cfg.max_segment_chars:
                    skipped.append(
                        f"chunk {c.index}: not assessed: {len(c.text)} chars exceed "
                        f"max_segment_chars ({cfg.max_segment_chars})"
                    )
                else:
                    pairs.append((c, q))
            for msg in skipped:
                logger.warning(msg)
            res = await self.chunk_filter.execute(
                [c for c, _ in pairs],
                cfg,
                query=query,
                quality=[q for _, q in pairs],
                cancel=cancel,
            )
            if not res.ok:
                return Result.failure(res.error)  # type: ignore[arg-type]
            filtered = res.value

        report = ChunkingReport(
            boundaries=tuple(boundaries),
            chunks=tuple(chunks),
            quality=tuple(quality),
            filtered=filtered,
            skipped=tuple(skipped),
        )
        logger.info(
            "document chunked: %d segments -> %d chunks (%d warnings)",
            len(segments),
            len(chunks),
            len(report.warnings),
        )
        return Result.success(report)
