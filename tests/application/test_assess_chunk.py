"""Tests for the three-stage chunk assessor."""

import asyncio
import json
from collections.abc import Sequence

from boundary_engine.application.ports.llm_port import ChatMessage, LLMResponse
from boundary_engine.application.use_cases.assess_chunk import ChunkAssessor
from boundary_engine.domain.config import EngineConfig
from boundary_engine.domain.errors import DomainError, InvalidInput, ProviderUnavailable
from boundary_engine.domain.models import AssessmentStage, ChunkCandidate, Segment
from boundary_engine.domain.services import assessment_rules as rules
from boundary_engine.domain.services.quality import assess_quality
from boundary_engine.domain.types import Result

TEXT = (
    "Quarterly revenue grew 12% to 4.2 billion dollars, driven by strong cloud "
    "subscriptions and higher enterprise demand across European markets."
)
CFG = EngineConfig(retry_backoff_s=0.0)
INITIAL_ONLY = EngineConfig(
    retry_backoff_s=0.0, use_self_reflection=False, use_critic_validation=False
)


def _chunk(text: str = TEXT, index: int = 0) -> ChunkCandidate:
    return ChunkCandidate(index, (Segment(index, text),), text, 0, len(text))


def _initial(score: float, reasoning: str = "on topic") -> str:
    return json.dumps({"score": score, "reasoning": reasoning})


def _reflection(score: float | None, reasoning: str = "reconsidered") -> str:
    return json.dumps({"revised_score": score, "reasoning": reasoning})


def _validate() -> str:
    return json.dumps({"decision": "validate", "reasoning": "agree"})


class ScriptedLLM:
    """Fake LLM answering with the scripted replies in order."""

    def __init__(self, *replies: str | DomainError) -> None:
        self.replies = list(replies)
        self.prompts: list[Sequence[ChatMessage]] = []

    async def chat(
        self, messages: Sequence[ChatMessage], temperature: float = 0.0, max_tokens: int = 256
    ) -> Result[LLMResponse, DomainError]:
        self.prompts.append(messages)
        reply = self.replies.pop(0)
        if isinstance(reply, DomainError):
            return Result.failure(reply)
        return Result.success(LLMResponse(text=reply))


class CancellingLLM(ScriptedLLM):
    """Answers, then fires the caller's cancel signal."""

    def __init__(self, cancel: asyncio.Event, *replies: str) -> None:
        super().__init__(*replies)
        self.cancel = cancel

    async def chat(
        self, messages: Sequence[ChatMessage], temperature: float = 0.0, max_tokens: int = 256
    ) -> Result[LLMResponse, DomainError]:
        res = await super().chat(messages, temperature, max_tokens)
        self.cancel.set()
        return res


async def test_initial_only_assessment():
    llm = ScriptedLLM(_initial(0.9))
    res = await ChunkAssessor(llm).assess(_chunk(), INITIAL_ONLY, query="cloud revenue")

    assert res.ok and res.value is not None
    a = res.value
    assert a.initial_score == 0.9 and a.final_score == 0.9
    assert a.reflection_score is None and a.critic_score is None
    assert a.completed_stages == (AssessmentStage.INITIAL,)
    assert a.warnings == ()
    assert len(llm.prompts) == 1
    assert "cloud revenue" in llm.prompts[0][-1].content


async def test_reflection_revision_is_validated_by_critic():
    llm = ScriptedLLM(_initial(0.9), _reflection(0.6, "mostly boilerplate"), _validate())
    res = await ChunkAssessor(llm).assess(_chunk(), CFG)

    assert res.value is not None
    a = res.value
    assert (a.initial_score, a.reflection_score, a.critic_score, a.final_score) == (
        0.9,
        0.6,
        0.6,
        0.6,
    )
    assert a.completed_stages == (
        AssessmentStage.INITIAL,
        AssessmentStage.REFLECTION,
        AssessmentStage.CRITIC,
    )
    assert a.reasoning["reflection"] == "mostly boilerplate"
    assert "0.60" in llm.prompts[2][-1].content


async def test_critic_override_sets_final_score():
    override = json.dumps({"decision": "override", "score": 0.3, "reasoning": "generic"})
    llm = ScriptedLLM(_initial(0.8), _reflection(None), override)
    res = await ChunkAssessor(llm).assess(_chunk(), CFG)

    assert res.value is not None
    assert res.value.reflection_score == 0.8
    assert res.value.critic_score == 0.3
    assert res.value.final_score == 0.3


async def test_malformed_reflection_falls_back_to_initial_score():
    llm = ScriptedLLM(_initial(0.8), "I think it is fine", "still not json", _validate())
    res = await ChunkAssessor(llm).assess(_chunk(), CFG)

    assert res.value is not None
    a = res.value
    assert a.reflection_score is None
    assert a.critic_score == 0.8 and a.final_score == 0.8
    assert any(w.startswith("reflection stage failed") for w in a.warnings)
    # one retry for the malformed payload
    assert len(llm.prompts) == 4


async def test_failed_initial_call_uses_heuristic_score():
    llm = ScriptedLLM(ProviderUnavailable("connection refused", provider="fake"))
    chunk = _chunk()
    res = await ChunkAssessor(llm).assess(chunk, INITIAL_ONLY, query="cloud revenue")

    assert res.value is not None
    quality = assess_quality(chunk.text, target_chars=INITIAL_ONLY.target_chunk_chars)
    assert res.value.initial_score == rules.heuristic_score(chunk, "cloud revenue", quality)
    assert any("initial stage failed" in w for w in res.value.warnings)
    assert "initial score taken from heuristic fallback" in res.value.warnings


async def test_without_llm_only_the_heuristic_runs():
    res = await ChunkAssessor(None).assess(_chunk(), CFG)

    assert res.value is not None
    assert res.value.completed_stages == (AssessmentStage.INITIAL,)
    assert res.value.warnings == ()
    assert res.value.reasoning["initial"].startswith("heuristic")
    assert res.value.factor("keyword density") is not None


async def test_cancel_mid_assessment_keeps_completed_stages():
    cancel = asyncio.Event()
    llm = CancellingLLM(cancel, _initial(0.9))
    res = await ChunkAssessor(llm).assess(_chunk(), CFG, cancel=cancel)

    assert res.ok and res.value is not None
    assert res.value.final_score == 0.9
    assert res.value.completed_stages == (AssessmentStage.INITIAL,)
    assert "cancelled; reflection stage skipped" in res.value.warnings
    assert "cancelled; critic stage skipped" in res.value.warnings
    assert len(llm.prompts) == 1


async def test_cancel_before_start_makes_no_llm_call():
    cancel = asyncio.Event()
    cancel.set()
    llm = ScriptedLLM()
    res = await ChunkAssessor(llm).assess(_chunk(), CFG, cancel=cancel)

    assert res.ok and res.value is not None
    assert llm.prompts == []
    assert any("OperationCancelled" in w for w in res.value.warnings)


async def test_invalid_chunks_are_rejected():
    assessor = ChunkAssessor(ScriptedLLM())
    blank = await assessor.assess(_chunk("   "), CFG)
    oversized = await assessor.assess(_chunk("x" * 50), EngineConfig(max_segment_chars=10))

    assert isinstance(blank.error, InvalidInput)
    assert isinstance(oversized.error, InvalidInput)


async def test_long_chunks_are_previewed():
    llm = ScriptedLLM(_initial(0.5))
    cfg = EngineConfig(
        assessment_preview_chars=20, use_self_reflection=False, use_critic_validation=False
    )
    await ChunkAssessor(llm).assess(_chunk(), cfg)
    prompt = llm.prompts[0][-1].content
    assert TEXT[:20] in prompt
    assert TEXT not in prompt
    assert "[...]" in prompt


async def test_low_score_produces_suggestions():
    llm = ScriptedLLM(_initial(0.2, "off topic"))
    res = await ChunkAssessor(llm).assess(_chunk(), INITIAL_ONLY)

    assert res.value is not None
    assert any("refine chunk boundaries" in s for s in res.value.suggestions)
    assert 0.0 <= res.value.confidence <= 1.0
