"""Tests for the pairwise semantic scorer."""

import math

import pytest

from boundary_engine.application.use_cases.score_semantic import SemanticBoundaryScorer
from boundary_engine.domain.config import EngineConfig
from boundary_engine.domain.errors import DomainError, InvalidInput, ProviderUnavailable
from boundary_engine.domain.types import Result, Vector

CFG = EngineConfig(retry_backoff_s=0.0)


class FakeEmbedding:
    def __init__(self, vectors: dict[str, Vector]) -> None:
        self.vectors = vectors
        self.calls: list[str] = []

    async def embed(self, text: str) -> Result[Vector, DomainError]:
        self.calls.append(text)
        return Result.success(self.vectors[text])


class DownEmbedding:
    async def embed(self, text: str) -> Result[Vector, DomainError]:
        return Result.failure(ProviderUnavailable("connection refused", provider="fake"))


async def test_similarity_is_cosine_of_both_embeddings():
    embedding = FakeEmbedding({"left": (1.0, 0.0), "right": (1.0, 1.0)})
    res = await SemanticBoundaryScorer(embedding).similarity("left", "right", CFG)

    assert res.ok and res.value is not None
    assert math.isclose(res.value.similarity, 1 / math.sqrt(2))
    assert not res.value.degenerate
    assert sorted(embedding.calls) == ["left", "right"]


@pytest.mark.parametrize(("left", "right"), [("   ", "text"), ("text", ""), ("\n", "\t")])
async def test_degenerate_side_short_circuits_without_provider_call(left, right):
    embedding = FakeEmbedding({})
    res = await SemanticBoundaryScorer(embedding).similarity(left, right, CFG)

    assert res.ok and res.value is not None
    assert res.value.similarity == 1.0
    assert res.value.degenerate
    assert embedding.calls == []


async def test_embedding_failure_is_returned_not_guessed():
    res = await SemanticBoundaryScorer(DownEmbedding()).similarity("left", "right", CFG)

    assert not res.ok
    assert isinstance(res.error, ProviderUnavailable)


async def test_oversized_segment_is_invalid_input():
    cfg = EngineConfig(max_segment_chars=5)
    embedding = FakeEmbedding({})
    res = await SemanticBoundaryScorer(embedding).similarity("far too long", "ok", cfg)

    assert isinstance(res.error, InvalidInput)
    assert embedding.calls == []


def test_resolve_reuses_fetched_embeddings():
    failure = ProviderUnavailable("down", provider="fake")

    assert SemanticBoundaryScorer.resolve("a", "b", (1.0, 0.0), (1.0, 0.0)).value.similarity == 1.0
    assert SemanticBoundaryScorer.resolve("a", "b", (1.0, 0.0), failure).error is failure
    assert SemanticBoundaryScorer.resolve(" ", "b", None, failure).value.degenerate
    assert isinstance(SemanticBoundaryScorer.resolve("a", "b", None, (1.0,)).error, InvalidInput)
