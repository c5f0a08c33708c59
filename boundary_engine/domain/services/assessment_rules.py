"""Pure rules behind the three-stage chunk assessment.

The LLM stages only supply scores and reasoning; everything that decides what
those scores mean lives here:

- verdict parsing (initial / reflection / critic payloads)
- final score: critic if present, else reflection, else initial
- heuristic factors and the no-LLM fallback score
- filter criteria, combined ranking score, confidence, suggestions
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Sequence
from typing import Any

from boundary_engine.domain.errors import MalformedResponse
from boundary_engine.domain.models import (
    AssessmentFactor,
    AssessmentStage,
    ChunkAssessment,
    ChunkCandidate,
    CriterionType,
    FilterCriterion,
    QualityMetrics,
    StageVerdict,
)
from boundary_engine.domain.services.quality import (
    completeness,
    content_words,
    factual_content,
    information_density,
    words,
)
from boundary_engine.domain.similarity import clamp01
from boundary_engine.domain.types import Result

SCORE_CHANGE_EPS = 1e-9

_DECODER = json.JSONDecoder()
_BARE_NUMBER = re.compile(r"^\s*(\d*\.?\d+)\s*$")


# ---------- Verdict parsing ----------


def _load_object(raw: str) -> dict[str, Any] | None:
    """First JSON object embedded in ``raw``; surrounding prose is ignored."""
    start = raw.find("{")
    while start != -1:
        try:
            data, _ = _DECODER.raw_decode(raw, start)
        except json.JSONDecodeError:
            start = raw.find("{", start + 1)
            continue
        return data
    return None


def _as_score(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        x = float(value)
    except ValueError:
        return None
    if math.isnan(x) or not (0.0 <= x <= 1.0):
        return None
    return x


def _reasoning(data: dict[str, Any]) -> str:
    text = data.get("reasoning") or data.get("reason") or ""
    return str(text).strip()


def parse_initial(raw: str) -> Result[StageVerdict, MalformedResponse]:
    """Parse ``{"score": 0.8, "reasoning": "..."}``; a bare number is accepted."""
    bare = _BARE_NUMBER.match(raw)
    if bare:
        value = _as_score(bare.group(1))
        if value is None:
            return Result.failure(MalformedResponse("bare score outside [0,1]", raw=raw))
        return Result.success(StageVerdict(AssessmentStage.INITIAL, value, ""))
    data = _load_object(raw)
    score = _as_score(data.get("score")) if data else None
    if data is None or score is None:
        return Result.failure(MalformedResponse("initial verdict has no score in [0,1]", raw=raw))
    return Result.success(StageVerdict(AssessmentStage.INITIAL, score, _reasoning(data)))


def parse_reflection(raw: str, initial: float) -> Result[StageVerdict, MalformedResponse]:
    """Parse ``{"revised_score": 0.6 | null, "reasoning": "..."}``.

    Without an explicit revised value the initial score stands. A revision
    that changes the score must carry reasoning.
    """
    data = _load_object(raw)
    if data is None:
        return Result.failure(MalformedResponse("reflection verdict is not a JSON object", raw=raw))
    reasoning = _reasoning(data)
    revised = data.get("revised_score")
    if revised is None:
        return Result.success(StageVerdict(AssessmentStage.REFLECTION, initial, reasoning))
    score = _as_score(revised)
    if score is None:
        return Result.failure(MalformedResponse("revised_score is not in [0,1]", raw=raw))
    changed = abs(score - initial) > SCORE_CHANGE_EPS
    if changed and not reasoning:
        return Result.failure(MalformedResponse("score revised without reasoning", raw=raw))
    return Result.success(
        StageVerdict(AssessmentStage.REFLECTION, score, reasoning, revised=changed)
    )


def parse_critic(raw: str, prior: float) -> Result[StageVerdict, MalformedResponse]:
    """Parse ``{"decision": "validate" | "override", "score": .., "reasoning": ..}``."""
    data = _load_object(raw)
    if data is None:
        return Result.failure(MalformedResponse("critic verdict is not a JSON object", raw=raw))
    decision = str(data.get("decision", "")).strip().lower()
    reasoning = _reasoning(data)
    if decision == "validate":
        return Result.success(StageVerdict(AssessmentStage.CRITIC, prior, reasoning))
    if decision != "override":
        return Result.failure(MalformedResponse(f"unknown critic decision {decision!r}", raw=raw))
    score = _as_score(data.get("score"))
    if score is None:
        return Result.failure(MalformedResponse("override without a score in [0,1]", raw=raw))
    if not reasoning:
        return Result.failure(MalformedResponse("critic override without reasoning", raw=raw))
    changed = abs(score - prior) > SCORE_CHANGE_EPS
    return Result.success(StageVerdict(AssessmentStage.CRITIC, score, reasoning, revised=changed))


# ---------- Score rules ----------


def final_score(initial: float, reflection: float | None, critic: float | None) -> float:
    if critic is not None:
        return critic
    if reflection is not None:
        return reflection
    return initial


def combined_score(relevance: float, quality: float, quality_weight: float) -> float:
    return quality_weight * quality + (1.0 - quality_weight) * relevance


def stage_consistency(scores: Sequence[float]) -> float:
    """1 for agreeing stages, falling with their variance."""
    if len(scores) < 2:
        return 1.0
    mean = sum(scores) / len(scores)
    variance = sum((s - mean) ** 2 for s in scores) / len(scores)
    return max(0.0, 1.0 - 2.0 * variance)


def assessment_confidence(
    stage_scores: Sequence[float], final: float, factor_count: int
) -> float:
    consistency = stage_consistency(stage_scores)
    diversity = min(1.0, factor_count / 10.0)
    extremity = abs(final - 0.5) * 2.0
    return clamp01(0.5 * consistency + 0.3 * diversity + 0.2 * extremity)


# ---------- Heuristics ----------


def query_coverage(text: str, query: str | None) -> float:
    """Share of the query's content words found in the text; 0.5 without a query."""
    if not query or not query.strip():
        return 0.5
    wanted = set(content_words(query)) or set(words(query))
    if not wanted:
        return 0.5
    present = set(words(text))
    return len(wanted & present) / len(wanted)


def structural_importance(chunk: ChunkCandidate) -> float:
    text = chunk.text
    score = 0.5
    if text.lstrip().startswith("#"):
        score += 0.2
    if "```" in text:
        score += 0.15
    if text.count("|") > 3:
        score += 0.15
    if chunk.index < 3:
        score += 0.1
    return clamp01(score)


def edge_case_penalty(text: str) -> float:
    """Non-positive adjustment for very short, numbers-only or repetitive chunks."""
    penalty = 0.0
    if len(text.strip()) < 50:
        penalty -= 0.3
    toks = text.split()
    if toks:
        numeric = sum(1 for t in toks if all(c.isdigit() or c in ".,%" for c in t))
        if numeric / len(toks) > 0.8:
            penalty -= 0.2
    if len(toks) > 10 and len({t.lower() for t in toks}) / len(toks) < 0.3:
        penalty -= 0.2
    return penalty


def heuristic_factors(chunk: ChunkCandidate, query: str | None) -> list[AssessmentFactor]:
    coverage = query_coverage(chunk.text, query)
    density = information_density(chunk.text)
    structure = structural_importance(chunk)
    factors = [
        AssessmentFactor(
            "keyword density", coverage, f"query keyword coverage {coverage:.2f}"
        ),
        AssessmentFactor(
            "information density", density, f"distinct content words {density:.2f}"
        ),
        AssessmentFactor(
            "structural importance", structure * 0.3, f"structural markers {structure:.2f}"
        ),
    ]
    edge = edge_case_penalty(chunk.text)
    if edge < 0:
        factors.append(AssessmentFactor("edge case", edge, f"edge-case adjustment {edge:.2f}"))
    return factors


def heuristic_score(chunk: ChunkCandidate, query: str | None, quality: QualityMetrics) -> float:
    """Relevance estimate without any LLM: keyword coverage blended with quality."""
    coverage = query_coverage(chunk.text, query)
    return clamp01(0.6 * coverage + 0.4 * quality.overall_score + edge_case_penalty(chunk.text))


# ---------- Filter criteria ----------


def _keywords(value: str | tuple[str, ...]) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,) if value.strip() else ()
    return tuple(v for v in value if v.strip())


def evaluate_criterion(criterion: FilterCriterion, text: str, query: str | None) -> float:
    t = criterion.type
    if t is CriterionType.KEYWORD_PRESENCE:
        keys = _keywords(criterion.value)
        if not keys:
            return 0.5
        lowered = text.lower()
        return sum(1 for k in keys if k.lower() in lowered) / len(keys)
    if t is CriterionType.TOPIC_RELEVANCE:
        return clamp01(query_coverage(text, query) * 1.2)
    if t is CriterionType.INFORMATION_DENSITY:
        return information_density(text)
    if t is CriterionType.FACTUAL_CONTENT:
        return factual_content(text)
    if t is CriterionType.COMPLETENESS:
        return completeness(text)
    return 0.5


def evaluate_criteria(
    criteria: Sequence[FilterCriterion], text: str, query: str | None
) -> tuple[list[AssessmentFactor], list[str]]:
    """Return one factor per criterion and the names of failed mandatory ones."""
    factors: list[AssessmentFactor] = []
    failed: list[str] = []
    for c in criteria:
        score = evaluate_criterion(c, text, query)
        factors.append(
            AssessmentFactor(
                f"criterion:{c.type.value}",
                score * c.weight,
                f"{c.type.value} scored {score:.2f} (min {c.min_score:.2f})",
            )
        )
        if c.mandatory and score < c.min_score:
            failed.append(c.type.value)
    return factors, failed


# ---------- Reporting ----------


def suggestions(assessment: ChunkAssessment, quality: QualityMetrics | None = None) -> list[str]:
    out: list[str] = []
    if assessment.final_score < 0.5:
        out.append("refine chunk boundaries to capture more complete context")
    if (
        assessment.reflection_score is not None
        and abs(assessment.initial_score - assessment.reflection_score) > 0.3
    ):
        out.append("stages disagree strongly; consider re-chunking with a different strategy")
    density = assessment.factor("information density")
    if density is not None and density.contribution < 0.3:
        out.append("low information density; consider merging with adjacent chunks")
    edge = assessment.factor("edge case")
    if edge is not None and edge.contribution < -0.1:
        out.append("edge case detected; review chunk extraction")
    if quality is not None:
        out.extend(r for r in quality.recommendations if r not in out)
    return out


def filter_reason(
    assessment: ChunkAssessment,
    passed: bool,
    relevance_threshold: float,
    failed_mandatory: Sequence[str] = (),
) -> str:
    parts: list[str] = []
    if passed:
        parts.append(f"relevance {assessment.final_score:.2f}")
        top = max(assessment.factors, key=lambda f: abs(f.contribution), default=None)
        if top is not None:
            parts.append(f"key factor: {top.name}")
    else:
        if assessment.final_score < relevance_threshold:
            parts.append(
                f"relevance {assessment.final_score:.2f} below threshold {relevance_threshold:.2f}"
            )
        if failed_mandatory:
            parts.append("mandatory criteria failed: " + ", ".join(failed_mandatory))
        worst = min(assessment.factors, key=lambda f: f.contribution, default=None)
        if worst is not None:
            parts.append(f"issue: {worst.name}")
    if assessment.confidence < 0.5:
        parts.append("low confidence assessment")
    return ", ".join(parts)
