from __future__ import annotations

import asyncio
import logging

from boundary_engine.application.ports.embedding_port import EmbeddingPort
from boundary_engine.application.provider_calls import call_provider
from boundary_engine.domain.config import EngineConfig
from boundary_engine.domain.errors import DomainError, InvalidInput
from boundary_engine.domain.models import SemanticResult
from boundary_engine.domain.similarity import cosine
from boundary_engine.domain.types import Result, Vector

logger = logging.getLogger(__name__)


def is_degenerate(text: str) -> bool:
    return not text.strip()


class SemanticBoundaryScorer:
    """Cosine similarity of adjacent segments via an embedding provider.

    An empty or whitespace-only side short-circuits to similarity 1.0
    ("no information, assume continuation") without any provider call.
    A failed embedding is returned as a failure, never replaced by a guess.
    """

    def __init__(self, embedding: EmbeddingPort, provider_name: str = "embedding") -> None:
        self.embedding = embedding
        self.provider_name = provider_name

    async def embed(
        self,
        text: str,
        cfg: EngineConfig,
        *,
        cancel: asyncio.Event | None = None,
        semaphore: asyncio.Semaphore | None = None,
    ) -> Result[Vector, DomainError]:
        if len(text) > cfg.max_segment_chars:
            return Result.failure(
                InvalidInput(f"segment has {len(text)} chars (max {cfg.max_segment_chars})")
            )
        return await call_provider(
            lambda: self.embedding.embed(text),
            name=self.provider_name,
            cfg=cfg,
            cancel=cancel,
            semaphore=semaphore,
        )

    @staticmethod
    def compare(u: Vector, v: Vector) -> SemanticResult:
        return SemanticResult(similarity=cosine(u, v))

    @staticmethod
    def resolve(
        left: str,
        right: str,
        u: Vector | DomainError | None,
        v: Vector | DomainError | None,
    ) -> Result[SemanticResult, DomainError]:
        """Similarity of a pair whose embeddings were already requested.

        ``u``/``v`` are the embeddings or the errors that replaced them;
        degenerate text needs neither.
        """
        if is_degenerate(left) or is_degenerate(right):
            return Result.success(SemanticResult(similarity=1.0, degenerate=True))
        for x in (u, v):
            if isinstance(x, DomainError):
                return Result.failure(x)
            if x is None:
                return Result.failure(InvalidInput("embedding missing for non-empty segment"))
        return Result.success(SemanticBoundaryScorer.compare(u, v))  # type: ignore[arg-type]

    async def similarity(
        self,
        left: str,
        right: str,
        cfg: EngineConfig,
        *,
        cancel: asyncio.Event | None = None,
        semaphore: asyncio.Semaphore | None = None,
    ) -> Result[SemanticResult, DomainError]:
        if is_degenerate(left) or is_degenerate(right):
            return Result.success(SemanticResult(similarity=1.0, degenerate=True))
        for text in (left, right):
            if len(text) > cfg.max_segment_chars:
                return Result.failure(
                    InvalidInput(f"segment has {len(text)} chars (max {cfg.max_segment_chars})")
                )

        a, b = await asyncio.gather(
            self.embed(left, cfg, cancel=cancel, semaphore=semaphore),
            self.embed(right, cfg, cancel=cancel, semaphore=semaphore),
        )
        result = self.resolve(
            left,
            right,
            a.value if a.ok else a.error,
            b.value if b.ok else b.error,
        )
        if result.ok and result.value is not None:
            logger.debug("semantic similarity %.3f", result.value.similarity)
        return result
