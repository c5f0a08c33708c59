# boundary_engine/application/dto/chunking_dto.py
from __future__ import annotations

from dataclasses import dataclass

from boundary_engine.domain.models import (
    BoundaryScore,
    ChunkCandidate,
    FilteredChunk,
    QualityMetrics,
)


@dataclass(frozen=True)
class FilterReport:
    """
    Outcome of assessing a batch of chunks.

    - evaluated: one entry per input chunk, input order, passed or not
    - kept:      passing chunks after max_chunks / preserve_order
    """

    evaluated: tuple[FilteredChunk, ...]
    kept: tuple[FilteredChunk, ...]

    @property
    def warnings(self) -> tuple[str, ...]:
        return tuple(f"chunk {fc.chunk.index}: {w}" for fc in self.evaluated for w in fc.warnings)


@dataclass(frozen=True)
class ChunkingReport:
    """End-to-end result for one document."""

    boundaries: tuple[BoundaryScore, ...]
    chunks: tuple[ChunkCandidate, ...]
    quality: tuple[QualityMetrics, ...]
    filtered: FilterReport | None = None
    # chunks left out of assessment, one "chunk N: ..." entry each
    skipped: tuple[str, ...] = ()

    @property
    def warnings(self) -> tuple[str, ...]:
        out = [f"pair {b.index}: {w}" for b in self.boundaries for w in b.warnings]
        out.extend(self.skipped)
        if self.filtered is not None:
            out.extend(self.filtered.warnings)
        return tuple(out)
