"""Pure similarity and normalisation functions.

Semantic boundary scoring and the document-level min-max calibration of
statistical scores both live on these; no I/O, no external libs.
"""

from collections.abc import Sequence
from math import sqrt

from .types import Score


def cosine(u: Sequence[float], v: Sequence[float]) -> Score:
    """Compute cosine similarity between two vectors.

    Args:
        u: First vector
        v: Second vector

    Returns:
        Cosine similarity score between -1 and 1. Zero vectors and
        mismatched dimensions yield 0.0.
    """
    if len(u) != len(v) or not u:
        return 0.0
    dot = sum(a * b for a, b in zip(u, v, strict=True))
    nu = sqrt(sum(a * a for a in u))
    nv = sqrt(sum(b * b for b in v))
    if nu == 0.0 or nv == 0.0:
        return 0.0
    # float error can push |dot| slightly past nu*nv
    return max(-1.0, min(1.0, dot / (nu * nv)))


def clamp01(x: float) -> float:
    return max(0.0, min(1.0, x))


def minmax_normalize(scores: Sequence[float]) -> list[float]:
    """Scale scores linearly to [0,1].

    Examples:
        >>> minmax_normalize([1.0, 2.0, 3.0])
        [0.0, 0.5, 1.0]
        >>> minmax_normalize([5.0, 5.0])
        [0.5, 0.5]
    """
    if not scores:
        return []
    lo, hi = min(scores), max(scores)
    if hi == lo:
        return [0.5] * len(scores)
    return [(s - lo) / (hi - lo) for s in scores]


def jaccard(a: set[str], b: set[str]) -> float:
    """Lexical overlap of two token sets; two empty sets are identical."""
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)
