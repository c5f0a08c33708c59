"""Application settings with environment-driven configuration.

The only place environment variables are read. Everything else receives an
explicit ``EngineConfig`` (see ``config.composition``).
"""

import os
from dataclasses import dataclass, field


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _optional_int(name: str) -> int | None:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else None


@dataclass(frozen=True)
class AppSettings:
    """Settings loaded from environment variables.

    Feature Flags:
    - use_adaptive_threshold: derive the boundary threshold from the document
    - use_self_reflection / use_critic_validation: optional assessment stages
    - use_semantic_signal: embed segments (off = statistical-only detection)
    """

    # ===== Boundary Detection =====
    alpha: float = field(default_factory=lambda: float(os.getenv("BOUNDARY_ALPHA", "0.6")))
    boundary_threshold: float = field(
        default_factory=lambda: float(os.getenv("BOUNDARY_THRESHOLD", "0.7"))
    )
    use_adaptive_threshold: bool = field(
        default_factory=lambda: _flag("BOUNDARY_ADAPTIVE_THRESHOLD", "true")
    )
    merge_distance: int = field(
        default_factory=lambda: int(os.getenv("BOUNDARY_MERGE_DISTANCE", "2"))
    )
    min_segment_length: int = field(
        default_factory=lambda: int(os.getenv("BOUNDARY_MIN_SEGMENT_LENGTH", "50"))
    )
    statistical_normalization: str = field(
        default_factory=lambda: os.getenv("BOUNDARY_NORMALIZATION", "logistic").lower()
    )
    # Supported: "logistic" | "log_perplexity" | "minmax"
    use_semantic_signal: bool = field(
        default_factory=lambda: _flag("BOUNDARY_USE_SEMANTIC", "true")
    )

    # ===== Chunk Assessment =====
    relevance_threshold: float = field(
        default_factory=lambda: float(os.getenv("BOUNDARY_RELEVANCE_THRESHOLD", "0.7"))
    )
    quality_weight: float = field(
        default_factory=lambda: float(os.getenv("BOUNDARY_QUALITY_WEIGHT", "0.3"))
    )
    use_self_reflection: bool = field(
        default_factory=lambda: _flag("BOUNDARY_SELF_REFLECTION", "true")
    )
    use_critic_validation: bool = field(
        default_factory=lambda: _flag("BOUNDARY_CRITIC_VALIDATION", "true")
    )
    max_chunks: int | None = field(default_factory=lambda: _optional_int("BOUNDARY_MAX_CHUNKS"))
    target_chunk_chars: int = field(
        default_factory=lambda: int(os.getenv("BOUNDARY_TARGET_CHUNK_CHARS", "1000"))
    )

    # ===== Provider Calls =====
    provider_timeout_s: float = field(
        default_factory=lambda: float(os.getenv("BOUNDARY_PROVIDER_TIMEOUT_S", "30"))
    )
    max_retries: int = field(default_factory=lambda: int(os.getenv("BOUNDARY_MAX_RETRIES", "2")))
    max_concurrency: int = field(
        default_factory=lambda: int(os.getenv("BOUNDARY_MAX_CONCURRENCY", "8"))
    )

    # ===== LLM Configuration (OpenAI-compatible, e.g. vLLM) =====
    llm_base_url: str = field(
        default_factory=lambda: os.getenv("LLM_BASE_URL", "http://localhost:8000/v1")
    )
    llm_api_key: str = field(default_factory=lambda: os.getenv("LLM_API_KEY", "EMPTY"))
    llm_model: str = field(
        default_factory=lambda: os.getenv("LLM_MODEL", "meta-llama/Meta-Llama-3.1-8B-Instruct")
    )
    # Base model for prompt-echo log-probabilities; falls back to llm_model
    logprob_model: str = field(default_factory=lambda: os.getenv("LLM_LOGPROB_MODEL", ""))
    use_llm_assessment: bool = field(default_factory=lambda: _flag("LLM_ASSESSMENT", "true"))

    # ===== Embedding Configuration =====
    embedding_model: str = field(
        default_factory=lambda: os.getenv(
            "EMBEDDING_MODEL", "sentence-transformers/all-MiniLM-L6-v2"
        )
    )
    embedding_device: str = field(default_factory=lambda: os.getenv("EMBEDDING_DEVICE", "cpu"))
    # Supported: "cpu" | "cuda" | "mps"
    embedding_local_files_only: bool = field(
        default_factory=lambda: _flag("EMBEDDING_LOCAL_FILES_ONLY", "false")
    )
