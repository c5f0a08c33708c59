from boundary_engine.application.ports.embedding_port import EmbeddingPort
from boundary_engine.application.ports.llm_port import LLMPort
from boundary_engine.application.ports.logprob_port import LogProbPort
from boundary_engine.application.use_cases.assess_chunk import ChunkAssessor
from boundary_engine.application.use_cases.chunk_document import ChunkDocument
from boundary_engine.application.use_cases.detect_boundaries import DetectBoundaries
from boundary_engine.application.use_cases.filter_chunks import FilterChunks
from boundary_engine.application.use_cases.score_semantic import SemanticBoundaryScorer
from boundary_engine.application.use_cases.score_statistical import StatisticalBoundaryScorer
from boundary_engine.config.settings import AppSettings
from boundary_engine.domain.config import EngineConfig
from boundary_engine.infrastructure.embeddings.sentence_transformers_adapter import (
    SentenceTransformersEmbeddingAdapter,
)
from boundary_engine.infrastructure.llm.openai_adapter import (
    OpenAIChatAdapter,
    OpenAILogProbAdapter,
)


def build_engine_config(settings: AppSettings) -> EngineConfig:
    """Map environment settings onto the explicit engine configuration.

    Raises:
        InvalidInput: when a setting is out of range.
    """
    return EngineConfig(
        alpha=settings.alpha,
        boundary_threshold=settings.boundary_threshold,
        use_adaptive_threshold=settings.use_adaptive_threshold,
        merge_distance=settings.merge_distance,
        min_segment_length=settings.min_segment_length,
        statistical_normalization=settings.statistical_normalization,
        relevance_threshold=settings.relevance_threshold,
        quality_weight=settings.quality_weight,
        use_self_reflection=settings.use_self_reflection,
        use_critic_validation=settings.use_critic_validation,
        max_chunks=settings.max_chunks,
        target_chunk_chars=settings.target_chunk_chars,
        provider_timeout_s=settings.provider_timeout_s,
        max_retries=settings.max_retries,
        max_concurrency=settings.max_concurrency,
    )


def build_llm(settings: AppSettings) -> LLMPort:
    return OpenAIChatAdapter(
        base_url=settings.llm_base_url,
        api_key=settings.llm_api_key,
        model=settings.llm_model,
        timeout_s=settings.provider_timeout_s,
    )


def build_logprobs(settings: AppSettings) -> LogProbPort:
    return OpenAILogProbAdapter(
        base_url=settings.llm_base_url,
        api_key=settings.llm_api_key,
        model=settings.logprob_model or settings.llm_model,
        timeout_s=settings.provider_timeout_s,
    )


def build_embedding(settings: AppSettings) -> EmbeddingPort:
    return SentenceTransformersEmbeddingAdapter(
        model_name=settings.embedding_model,
        device=settings.embedding_device,
        local_files_only=settings.embedding_local_files_only,
    )


def build_detector(
    settings: AppSettings,
    logprobs: LogProbPort | None = None,
    embedding: EmbeddingPort | None = None,
) -> DetectBoundaries:
    """Build the boundary detector; injected ports win over settings.

    With ``use_semantic_signal`` off and no embedding injected, detection
    runs statistical-only.
    """
    if embedding is None and settings.use_semantic_signal:
        embedding = build_embedding(settings)
    return DetectBoundaries(
        statistical=StatisticalBoundaryScorer(logprobs or build_logprobs(settings)),
        semantic=SemanticBoundaryScorer(embedding) if embedding is not None else None,
    )


def build_chunk_filter(settings: AppSettings, llm: LLMPort | None = None) -> FilterChunks:
    """Assessor with an LLM when enabled, heuristic-only otherwise."""
    if llm is None and settings.use_llm_assessment:
        llm = build_llm(settings)
    return FilterChunks(ChunkAssessor(llm))


def build_chunk_document_use_case(
    settings: AppSettings | None = None,
    *,
    with_assessment: bool = True,
) -> ChunkDocument:
    settings = settings or AppSettings()
    return ChunkDocument(
        detector=build_detector(settings),
        chunk_filter=build_chunk_filter(settings) if with_assessment else None,
    )
