from __future__ import annotations

import math
from dataclasses import dataclass

from .errors import InvalidInput
from .models import FilterCriterion

NORMALIZATION_MODES = ("logistic", "log_perplexity", "minmax")


@dataclass(frozen=True)
class EngineConfig:
    """Explicit configuration passed into every engine call.

    Boundary detection:
    - alpha: weight of the statistical signal in the hybrid score
    - boundary_threshold: fixed threshold, also the base of the adaptive one
    - tie_epsilon: scores closer than this to the threshold are not boundaries
    - merge_distance: boundaries this many segments apart collapse to one

    Chunk assessment:
    - relevance_threshold: minimum final score for a chunk to pass
    - quality_weight: share of quality in the combined ranking score
    - max_chunks: keep at most this many passing chunks (None = unbounded)

    Provider calls:
    - provider_timeout_s: deadline of one provider call, not of a document
    - max_retries: extra attempts for RateLimited/ProviderTimeout
    - max_concurrency: in-flight provider calls per engine call
    """

    # ===== Boundary fusion =====
    alpha: float = 0.6
    boundary_threshold: float = 0.7
    use_adaptive_threshold: bool = True
    tie_epsilon: float = 0.01
    merge_nearby_boundaries: bool = True
    merge_distance: int = 2
    min_segment_length: int = 50

    # Adaptive threshold: blend of base and running mean + k * std
    adaptive_weight: float = 0.5
    adaptive_std_factor: float = 1.0
    adaptive_warmup: int = 3
    adaptive_min_threshold: float = 0.3
    adaptive_max_threshold: float = 0.9

    # ===== Statistical scoring =====
    statistical_normalization: str = "logistic"
    logistic_center: float = 2.5
    logistic_scale: float = 1.0
    min_token_count: int = 3
    statistical_confidence_tokens: int = 20
    max_segment_chars: int = 100_000

    # ===== Chunk assessment =====
    relevance_threshold: float = 0.7
    quality_weight: float = 0.3
    use_self_reflection: bool = True
    use_critic_validation: bool = True
    max_chunks: int | None = None
    preserve_order: bool = False
    criteria: tuple[FilterCriterion, ...] = ()
    target_chunk_chars: int = 1000
    assessment_preview_chars: int = 1500

    # ===== Provider calls =====
    provider_timeout_s: float = 30.0
    max_retries: int = 2
    retry_backoff_s: float = 0.5
    retry_backoff_max_s: float = 8.0
    max_concurrency: int = 8

    def __post_init__(self) -> None:
        for name in (
            "alpha",
            "boundary_threshold",
            "relevance_threshold",
            "quality_weight",
            "adaptive_weight",
            "adaptive_min_threshold",
            "adaptive_max_threshold",
        ):
            value = getattr(self, name)
            if not (0.0 <= value <= 1.0) or math.isnan(value):
                raise InvalidInput(f"{name} must be within [0, 1], got {value}")
        if self.adaptive_min_threshold > self.adaptive_max_threshold:
            raise InvalidInput("adaptive_min_threshold must not exceed adaptive_max_threshold")
        if self.tie_epsilon < 0:
            raise InvalidInput("tie_epsilon must be >= 0")
        if self.merge_distance < 0 or self.min_segment_length < 0:
            raise InvalidInput("merge_distance and min_segment_length must be >= 0")
        if self.statistical_normalization not in NORMALIZATION_MODES:
            raise InvalidInput(
                f"statistical_normalization must be one of {NORMALIZATION_MODES}, "
                f"got {self.statistical_normalization!r}"
            )
        if self.logistic_scale <= 0:
            raise InvalidInput("logistic_scale must be > 0")
        if self.min_token_count < 1 or self.statistical_confidence_tokens < 1:
            raise InvalidInput("token counts must be >= 1")
        if self.max_chunks is not None and self.max_chunks < 0:
            raise InvalidInput("max_chunks must be >= 0")
        if self.provider_timeout_s <= 0 or self.max_retries < 0 or self.max_concurrency < 1:
            raise InvalidInput("invalid provider call limits")
        if self.target_chunk_chars < 1 or self.max_segment_chars < 1:
            raise InvalidInput("character limits must be >= 1")
