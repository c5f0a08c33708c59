# boundary_engine/application/use_cases/assess_chunk.py
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import replace
from types import MappingProxyType

from boundary_engine.application.ports.llm_port import ChatMessage, LLMPort, LLMResponse
from boundary_engine.application.provider_calls import call_provider
from boundary_engine.domain.config import EngineConfig
from boundary_engine.domain.errors import DomainError, InvalidInput, MalformedResponse
from boundary_engine.domain.models import (
    AssessmentFactor,
    AssessmentStage,
    ChunkAssessment,
    ChunkCandidate,
    QualityMetrics,
    StageVerdict,
)
from boundary_engine.domain.services import assessment_rules as rules
from boundary_engine.domain.services.quality import assess_quality
from boundary_engine.domain.types import Result

logger = logging.getLogger(__name__)

_ASSESSOR_ROLE = (
    "You grade text chunks for a retrieval system. Judge how relevant the chunk is "
    "to the query (or, without a query, how useful it is on its own) and how "
    "self-contained and informative it is. Answer with JSON only."
)
_CRITIC_ROLE = (
    "You are an independent reviewer checking another grader's verdict on a text "
    "chunk. Be skeptical of over-confident scores. Answer with JSON only."
)


def _chunk_block(chunk: ChunkCandidate, query: str | None, preview_chars: int) -> str:
    text = chunk.text[:preview_chars]
    suffix = " [...]" if len(chunk.text) > preview_chars else ""
    topic = query.strip() if query and query.strip() else "(none; judge general usefulness)"
    return f"Query: {topic}\n\nChunk:\n<<<\n{text}{suffix}\n>>>"


def initial_prompt(
    chunk: ChunkCandidate, query: str | None, cfg: EngineConfig
) -> list[ChatMessage]:
    return [
        ChatMessage("system", _ASSESSOR_ROLE),
        ChatMessage(
            "user",
            _chunk_block(chunk, query, cfg.assessment_preview_chars)
            + '\n\nReturn {"score": <0.0-1.0>, "reasoning": "<one or two sentences>"}.',
        ),
    ]


def reflection_prompt(
    chunk: ChunkCandidate, query: str | None, initial: StageVerdict, cfg: EngineConfig
) -> list[ChatMessage]:
    return [
        ChatMessage("system", _ASSESSOR_ROLE),
        ChatMessage(
            "user",
            _chunk_block(chunk, query, cfg.assessment_preview_chars)
            + f"\n\nYour earlier verdict was score {initial.score:.2f}: "
            f"{initial.reasoning or '(no reasoning given)'}\n"
            "Critique that verdict. If it should change, return "
            '{"revised_score": <0.0-1.0>, "reasoning": "<why>"}; '
            'if it stands, return {"revised_score": null, "reasoning": "<why>"}.',
        ),
    ]


def critic_prompt(
    chunk: ChunkCandidate, query: str | None, prior: float, reasoning: str, cfg: EngineConfig
) -> list[ChatMessage]:
    return [
        ChatMessage("system", _CRITIC_ROLE),
        ChatMessage(
            "user",
            _chunk_block(chunk, query, cfg.assessment_preview_chars)
            + f"\n\nThe grader's verdict: score {prior:.2f}. {reasoning}\n"
            'Return {"decision": "validate", "reasoning": "<why>"} to accept it, or '
            '{"decision": "override", "score": <0.0-1.0>, "reasoning": "<why>"}.',
        ),
    ]


class ChunkAssessor:
    """
    Three-stage assessment: Initial -> [Reflection] -> [Critic] -> Final.

    Stages run strictly in order; a disabled stage is skipped, never retried.
    A failing stage keeps the prior stage's score and leaves a warning. With
    no LLM, or when the initial call fails, a heuristic score stands in.
    """

    def __init__(self, llm: LLMPort | None = None, provider_name: str = "llm") -> None:
        self.llm = llm
        self.provider_name = provider_name

    async def assess(
        self,
        chunk: ChunkCandidate,
        cfg: EngineConfig,
        *,
        query: str | None = None,
        quality: QualityMetrics | None = None,
        cancel: asyncio.Event | None = None,
        semaphore: asyncio.Semaphore | None = None,
    ) -> Result[ChunkAssessment, DomainError]:
        # 1) Validate
        if not chunk.text.strip():
            return Result.failure(InvalidInput(f"chunk {chunk.index} is empty"))
        if len(chunk.text) > cfg.max_segment_chars:
            return Result.failure(
                InvalidInput(
                    f"chunk {chunk.index} has {len(chunk.text)} chars (max {cfg.max_segment_chars})"
                )
            )
        quality = quality or assess_quality(chunk.text, target_chars=cfg.target_chunk_chars)

        factors: list[AssessmentFactor] = rules.heuristic_factors(chunk, query)
        criteria_factors, _ = rules.evaluate_criteria(cfg.criteria, chunk.text, query)
        factors.extend(criteria_factors)
        warnings: list[str] = []
        reasoning: dict[str, str] = {}
        stages: list[AssessmentStage] = []

        # 2) Initial
        initial = await self._initial(chunk, query, quality, cfg, cancel, semaphore, warnings)
        reasoning["initial"] = initial.reasoning
        stages.append(AssessmentStage.INITIAL)
        reflection: StageVerdict | None = None
        critic: StageVerdict | None = None

        # 3) Self-reflection
        if (
            cfg.use_self_reflection
            and self.llm is not None
            and not self._cancelled(cancel, warnings, "reflection")
        ):
            reflection = await self._stage(
                reflection_prompt(chunk, query, initial, cfg),
                lambda raw: rules.parse_reflection(raw, initial.score),
                AssessmentStage.REFLECTION,
                cfg,
                cancel,
                semaphore,
                warnings,
            )
            if reflection is not None:
                reasoning["reflection"] = reflection.reasoning
                stages.append(AssessmentStage.REFLECTION)

        # 4) Critic validation
        if (
            cfg.use_critic_validation
            and self.llm is not None
            and not self._cancelled(cancel, warnings, "critic")
        ):
            prior = reflection or initial
            critic = await self._stage(
                critic_prompt(chunk, query, prior.score, prior.reasoning, cfg),
                lambda raw: rules.parse_critic(raw, prior.score),
                AssessmentStage.CRITIC,
                cfg,
                cancel,
                semaphore,
                warnings,
            )
            if critic is not None:
                reasoning["critic"] = critic.reasoning
                stages.append(AssessmentStage.CRITIC)

        # 5) Final
        reflection_score = reflection.score if reflection else None
        critic_score = critic.score if critic else None
        final = rules.final_score(initial.score, reflection_score, critic_score)
        stage_scores = [v.score for v in (initial, reflection, critic) if v is not None]
        assessment = ChunkAssessment(
            initial_score=initial.score,
            reflection_score=reflection_score,
            critic_score=critic_score,
            final_score=final,
            confidence=rules.assessment_confidence(stage_scores, final, len(factors)),
            factors=tuple(factors),
            reasoning=MappingProxyType(reasoning),
            completed_stages=tuple(stages),
            warnings=tuple(warnings),
        )
        assessment = replace(assessment, suggestions=tuple(rules.suggestions(assessment, quality)))
        logger.debug(
            "chunk %d assessed: initial=%.2f reflection=%s critic=%s final=%.2f",
            chunk.index,
            initial.score,
            reflection_score,
            critic_score,
            final,
        )
        return Result.success(assessment)

    # ---------- stages ----------

    async def _initial(
        self,
        chunk: ChunkCandidate,
        query: str | None,
        quality: QualityMetrics,
        cfg: EngineConfig,
        cancel: asyncio.Event | None,
        semaphore: asyncio.Semaphore | None,
        warnings: list[str],
    ) -> StageVerdict:
        if self.llm is not None:
            verdict = await self._stage(
                initial_prompt(chunk, query, cfg),
                rules.parse_initial,
                AssessmentStage.INITIAL,
                cfg,
                cancel,
                semaphore,
                warnings,
            )
            if verdict is not None:
                return verdict
            warnings.append("initial score taken from heuristic fallback")
        score = rules.heuristic_score(chunk, query, quality)
        return StageVerdict(
            AssessmentStage.INITIAL,
            score,
            f"heuristic: keyword coverage and quality {quality.overall_score:.2f}",
        )

    async def _stage(
        self,
        messages: Sequence[ChatMessage],
        parse: Callable[[str], Result[StageVerdict, MalformedResponse]],
        stage: AssessmentStage,
        cfg: EngineConfig,
        cancel: asyncio.Event | None,
        semaphore: asyncio.Semaphore | None,
        warnings: list[str],
    ) -> StageVerdict | None:
        """Run one LLM stage; None means the stage did not complete."""
        assert self.llm is not None
        llm = self.llm

        async def op() -> Result[StageVerdict, DomainError]:
            res: Result[LLMResponse, DomainError] = await llm.chat(messages)
            if not res.ok:
                return Result.failure(res.error)  # type: ignore[arg-type]
            assert res.value is not None
            parsed = parse(res.value.text)
            if not parsed.ok:
                return Result.failure(parsed.error)  # type: ignore[arg-type]
            return Result.success(parsed.value)  # type: ignore[arg-type]

        res = await call_provider(
            op, name=self.provider_name, cfg=cfg, cancel=cancel, semaphore=semaphore
        )
        if res.ok:
            return res.value
        msg = f"{stage.value} stage failed: {res.error}"
        warnings.append(msg)
        logger.warning(msg)
        return None

    @staticmethod
    def _cancelled(cancel: asyncio.Event | None, warnings: list[str], stage: str) -> bool:
        if cancel is not None and cancel.is_set():
            warnings.append(f"cancelled; {stage} stage skipped")
            return True
        return False
