# boundary_engine/domain/services/statistical.py
# Pure domain services: no I/O, deterministic, no external libraries.
from __future__ import annotations

import math
from collections.abc import Sequence

from boundary_engine.domain.config import EngineConfig
from boundary_engine.domain.models import StatisticalResult, TokenLogProb
from boundary_engine.domain.similarity import clamp01, minmax_normalize

LOW_CONFIDENCE = 0.1


def mean_nll(token_logprobs: Sequence[TokenLogProb]) -> float:
    """Mean negative log-likelihood per token (nats); 0.0 for no tokens."""
    if not token_logprobs:
        return 0.0
    return -sum(t.logprob for t in token_logprobs) / len(token_logprobs)


def logistic_normalize(raw_nll: float, center: float, scale: float) -> float:
    z = (raw_nll - center) / scale
    # avoid overflow in exp for extreme values
    if z >= 0:
        return 1.0 / (1.0 + math.exp(-z))
    ez = math.exp(z)
    return ez / (1.0 + ez)


def log_perplexity_normalize(raw_nll: float) -> float:
    """Map perplexity 1 → 0 and perplexity ≥ 1000 → 1 on a log10 scale."""
    # log10(exp(nll)) == nll / ln(10)
    return clamp01((raw_nll / math.log(10)) / 3.0)


def normalize_uncertainty(raw_nll: float, cfg: EngineConfig) -> float:
    """Normalize a single raw NLL without document context.

    ``minmax`` needs the whole document, so a lone value falls back to the
    logistic transform; the document pass re-normalizes afterwards.
    """
    if cfg.statistical_normalization == "log_perplexity":
        return log_perplexity_normalize(raw_nll)
    return logistic_normalize(raw_nll, cfg.logistic_center, cfg.logistic_scale)


def normalize_document(raw_nlls: Sequence[float], cfg: EngineConfig) -> list[float]:
    """Normalize all raw NLLs of one document pass."""
    if cfg.statistical_normalization == "minmax":
        return minmax_normalize(raw_nlls)
    return [normalize_uncertainty(r, cfg) for r in raw_nlls]


def token_confidence(token_count: int, cfg: EngineConfig) -> float:
    return min(1.0, token_count / cfg.statistical_confidence_tokens)


def build_statistical_result(
    token_logprobs: Sequence[TokenLogProb], cfg: EngineConfig
) -> StatisticalResult:
    """Turn provider log-probabilities into an uncertainty score."""
    tokens = tuple(token_logprobs)
    raw = mean_nll(tokens)
    if len(tokens) < cfg.min_token_count:
        return StatisticalResult(
            score=0.0,
            raw_nll=raw,
            perplexity=math.exp(min(raw, 700.0)),
            token_logprobs=tokens,
            token_count=len(tokens),
            confidence=LOW_CONFIDENCE,
            warnings=(
                f"segment has {len(tokens)} tokens (< {cfg.min_token_count}); "
                "uncertainty defaulted to 0",
            ),
        )
    return StatisticalResult(
        score=normalize_uncertainty(raw, cfg),
        raw_nll=raw,
        perplexity=math.exp(min(raw, 700.0)),
        token_logprobs=tokens,
        token_count=len(tokens),
        confidence=token_confidence(len(tokens), cfg),
    )
