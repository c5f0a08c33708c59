from __future__ import annotations

from collections.abc import Mapping, Sequence
from types import MappingProxyType
from typing import Any

from boundary_engine.domain.models import BoundaryScore, ChunkCandidate, Segment

DEFAULT_SEPARATOR = "\n\n"


def accepted_cuts(boundaries: Sequence[BoundaryScore]) -> list[int]:
    """Indices i such that a chunk ends after segment i."""
    return sorted(b.index for b in boundaries if b.is_boundary)


def assemble_chunks(
    segments: Sequence[Segment],
    boundaries: Sequence[BoundaryScore],
    separator: str = DEFAULT_SEPARATOR,
    metadata: Mapping[str, Any] | None = None,
) -> list[ChunkCandidate]:
    """Cut the segment run at every accepted boundary.

    Character offsets refer to the document formed by joining all segments
    with ``separator``; a chunk's text is the exact slice of that document.
    """
    if not segments:
        return []
    ordered = sorted(segments, key=lambda s: s.index)
    cut_after = set(accepted_cuts(boundaries))

    chunks: list[ChunkCandidate] = []
    buf: list[Segment] = []
    offset = 0
    start = 0
    for pos, seg in enumerate(ordered):
        if not buf:
            start = offset
        buf.append(seg)
        offset += len(seg.text)
        last = pos == len(ordered) - 1
        if seg.index in cut_after or last:
            text = separator.join(s.text for s in buf)
            chunks.append(
                ChunkCandidate(
                    index=len(chunks),
                    segments=tuple(buf),
                    text=text,
                    start_char=start,
                    end_char=start + len(text),
                    metadata=MappingProxyType(dict(metadata or {})),
                )
            )
            buf = []
        if not last:
            offset += len(separator)
    return chunks
