from __future__ import annotations

import asyncio
import logging

from boundary_engine.application.ports.logprob_port import LogProbPort
from boundary_engine.application.provider_calls import call_provider
from boundary_engine.domain.config import EngineConfig
from boundary_engine.domain.errors import DomainError, InvalidInput
from boundary_engine.domain.models import StatisticalResult
from boundary_engine.domain.services.statistical import build_statistical_result
from boundary_engine.domain.types import Result

logger = logging.getLogger(__name__)


class StatisticalBoundaryScorer:
    """
    Uncertainty of a segment given its preceding context.

    A high score means the language model did not expect this text after the
    context, which hints at a boundary before the segment.
    """

    def __init__(self, logprobs: LogProbPort, provider_name: str = "logprob") -> None:
        self.logprobs = logprobs
        self.provider_name = provider_name

    async def score(
        self,
        text: str,
        cfg: EngineConfig,
        context: str = "",
        *,
        cancel: asyncio.Event | None = None,
        semaphore: asyncio.Semaphore | None = None,
    ) -> Result[StatisticalResult, DomainError]:
        if len(text) > cfg.max_segment_chars:
            return Result.failure(
                InvalidInput(f"segment has {len(text)} chars (max {cfg.max_segment_chars})")
            )
        if not text.strip():
            # nothing to score; the short-segment rule yields score 0
            return Result.success(build_statistical_result([], cfg))

        res = await call_provider(
            lambda: self.logprobs.score_tokens(text, context),
            name=self.provider_name,
            cfg=cfg,
            cancel=cancel,
            semaphore=semaphore,
        )
        if not res.ok:
            return Result.failure(res.error)  # type: ignore[arg-type]
        result = build_statistical_result(res.value or [], cfg)
        logger.debug(
            "statistical score %.3f (nll=%.3f, tokens=%d)",
            result.score,
            result.raw_nll,
            result.token_count,
        )
        return Result.success(result)
