"""Quality Aggregator: signal-independent chunk metrics.

Pure functions of a chunk's text and its neighbours' text. No provider is
consulted, so these scores are always available as a fallback ranking
signal.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from boundary_engine.domain.models import ChunkCandidate, QualityMetrics
from boundary_engine.domain.similarity import clamp01, jaccard

STOPWORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
        "with", "by", "is", "are", "was", "were", "be", "been", "have", "has",
        "had", "do", "does", "did", "this", "that", "these", "those", "it", "its",
        "as", "from", "not", "no", "so", "if", "then", "than", "there", "their",
        "they", "we", "you", "he", "she", "which", "who", "what", "when", "where",
    }
)  # fmt: skip

_WORD = re.compile(r"\w+", re.UNICODE)
_TERMINAL = (".", "!", "?", ":", ";", '"', "'", ")", "]", "```", "|")
_TABLE_ROW = re.compile(r"^\s*\|.*\|\s*$")
_NUMERIC = re.compile(r"\d")

LOW_SCORE = 0.5


def words(text: str) -> list[str]:
    return _WORD.findall(text.lower())


def content_words(text: str) -> list[str]:
    """Words likely to carry content: longer than 3 chars and not a stopword."""
    return [w for w in words(text) if len(w) > 3 and w not in STOPWORDS]


# ---------- Sub-scores ----------


def completeness(text: str) -> float:
    """Does the chunk start and end cleanly instead of mid-sentence?"""
    body = text.strip()
    if not body:
        return 0.0
    score = 0.5
    if body.endswith(_TERMINAL):
        score += 0.3
    if body[0].isupper() or body[0].isdigit() or body[0] in "#-*|`":
        score += 0.2
    return clamp01(score)


def _internal_cohesion(text: str) -> float:
    toks = content_words(text)
    if len(toks) < 4:
        return 1.0
    half = len(toks) // 2
    first, second = set(toks[:half]), set(toks[half:])
    # overlap coefficient; jaccard punishes long chunks too hard
    return len(first & second) / min(len(first), len(second))


def boundary_sharpness(text: str, following: str | None) -> float:
    """Low lexical overlap with the next chunk, high overlap within itself."""
    external = 1.0
    if following is not None:
        external = 1.0 - jaccard(set(content_words(text)), set(content_words(following)))
    internal = min(1.0, 0.5 + _internal_cohesion(text))
    return clamp01(0.5 * external + 0.5 * internal)


def information_density(text: str) -> float:
    """Distinct content-bearing words over all words, damped for tiny chunks."""
    all_words = words(text)
    if not all_words:
        return 0.0
    distinct = len(set(content_words(text)))
    return clamp01(distinct / len(all_words) * min(1.0, len(all_words) / 10))


def truncated_structures(text: str, following: str | None = None) -> list[str]:
    """Structural markers opened by the chunk but not closed inside it."""
    issues: list[str] = []
    if text.count("```") % 2 == 1:
        issues.append("unclosed code fence")
    lowered = text.lower()
    if lowered.count("<table") > lowered.count("</table>"):
        issues.append("unclosed table")
    elif following is not None:
        last_line = text.rstrip().rsplit("\n", 1)[-1]
        next_line = following.lstrip().split("\n", 1)[0]
        if _TABLE_ROW.match(last_line) and _TABLE_ROW.match(next_line):
            issues.append("table split across chunks")
    return issues


def _size_ratio(length: int, target: int) -> float:
    if length <= 0:
        return 0.0
    return min(length, target) / max(length, target)


def structural_coherence(text: str, following: str | None, target_chars: int) -> float:
    size = _size_ratio(len(text), target_chars)
    markers = max(0.0, 1.0 - 0.5 * len(truncated_structures(text, following)))
    return clamp01(0.5 * size + 0.5 * markers)


def size_fitness(text: str, neighbours: Sequence[str], target_chars: int) -> float:
    """Fit of the chunk size within its neighbourhood (1 - coefficient of variation)."""
    sizes = [len(text)] + [len(n) for n in neighbours]
    if len(sizes) == 1:
        return _size_ratio(len(text), target_chars)
    mean = sum(sizes) / len(sizes)
    if mean == 0:
        return 0.0
    variance = sum((s - mean) ** 2 for s in sizes) / len(sizes)
    return clamp01(1.0 - variance**0.5 / mean)


def factual_content(text: str) -> float:
    """Share of tokens carrying figures (numbers, dates, percentages), saturating."""
    all_words = words(text)
    if not all_words:
        return 0.0
    numeric = sum(1 for w in all_words if _NUMERIC.search(w))
    return clamp01(numeric / len(all_words) * 10)


def redundancy_control(text: str, neighbours: Sequence[str]) -> float:
    """1 - the highest lexical overlap with any neighbour."""
    if not neighbours:
        return 1.0
    own = set(content_words(text))
    return clamp01(1.0 - max(jaccard(own, set(content_words(n))) for n in neighbours))


# ---------- Aggregate ----------

_ADVICE = {
    "completeness": "chunk starts or ends mid-sentence; move the boundary to a sentence end",
    "boundary_sharpness": "chunk overlaps heavily with its successor; consider merging them",
    "information_density": "chunk is mostly filler words; merge with a neighbour",
    "structural_coherence": "chunk size is off target or splits a table/code block",
    "size_fitness": "chunk size deviates strongly from its neighbours",
    "redundancy_control": "chunk repeats a neighbour's content",
}


def assess_quality(
    text: str,
    previous: str | None = None,
    following: str | None = None,
    target_chars: int = 1000,
) -> QualityMetrics:
    """Score one chunk given its immediate neighbours (either may be None).

    Identical inputs always give identical metrics.
    """
    neighbours = [n for n in (previous, following) if n is not None]
    scores = {
        "completeness": completeness(text),
        "boundary_sharpness": boundary_sharpness(text, following),
        "information_density": information_density(text),
        "structural_coherence": structural_coherence(text, following, target_chars),
        "size_fitness": size_fitness(text, neighbours, target_chars),
        "factual_content": factual_content(text),
        "redundancy_control": redundancy_control(text, neighbours),
    }
    recommendations = tuple(
        _ADVICE[name]
        for name, value in scores.items()
        # few figures is normal for prose
        if value < LOW_SCORE and name in _ADVICE
    )
    return QualityMetrics.from_scores(**scores, recommendations=recommendations)


def assess_chunks(
    chunks: Sequence[ChunkCandidate], target_chars: int = 1000
) -> list[QualityMetrics]:
    """Quality of every chunk in document order, each against its neighbours."""
    out: list[QualityMetrics] = []
    for i, chunk in enumerate(chunks):
        prev_text = chunks[i - 1].text if i > 0 else None
        next_text = chunks[i + 1].text if i + 1 < len(chunks) else None
        out.append(assess_quality(chunk.text, prev_text, next_text, target_chars))
    return out
