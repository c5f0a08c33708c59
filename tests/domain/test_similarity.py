import math

from boundary_engine.domain.similarity import clamp01, cosine, jaccard, minmax_normalize


def test_cosine_identical_vectors():
    assert math.isclose(cosine([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]), 1.0)


def test_cosine_orthogonal_and_opposite():
    assert cosine([1.0, 0.0], [0.0, 1.0]) == 0.0
    assert math.isclose(cosine([1.0, 0.0], [-1.0, 0.0]), -1.0)


def test_cosine_zero_or_mismatched_vectors_yield_zero():
    assert cosine([0.0, 0.0], [1.0, 1.0]) == 0.0
    assert cosine([1.0], [1.0, 2.0]) == 0.0
    assert cosine([], []) == 0.0


def test_cosine_stays_within_bounds():
    v = [0.1, 0.2, 0.3]
    assert -1.0 <= cosine(v, [x * 3 for x in v]) <= 1.0


def test_clamp01():
    assert clamp01(-0.2) == 0.0
    assert clamp01(0.4) == 0.4
    assert clamp01(1.7) == 1.0


def test_minmax_normalize():
    assert minmax_normalize([1.0, 2.0, 3.0]) == [0.0, 0.5, 1.0]
    assert minmax_normalize([5.0, 5.0]) == [0.5, 0.5]
    assert minmax_normalize([]) == []


def test_jaccard():
    assert jaccard({"a", "b"}, {"b", "c"}) == 1 / 3
    assert jaccard(set(), set()) == 1.0
    assert jaccard({"a"}, set()) == 0.0
