"""Tests for EngineConfig validation."""

import pytest

from boundary_engine.domain.config import EngineConfig
from boundary_engine.domain.errors import InvalidInput


def test_defaults_are_valid():
    cfg = EngineConfig()
    assert cfg.alpha == 0.6
    assert cfg.boundary_threshold == 0.7
    assert cfg.statistical_normalization == "logistic"
    assert cfg.max_chunks is None


@pytest.mark.parametrize(
    "overrides",
    [
        {"alpha": 1.5},
        {"boundary_threshold": -0.1},
        {"relevance_threshold": float("nan")},
        {"adaptive_min_threshold": 0.8, "adaptive_max_threshold": 0.4},
        {"statistical_normalization": "zscore"},
        {"tie_epsilon": -0.01},
        {"merge_distance": -1},
        {"logistic_scale": 0.0},
        {"max_chunks": -1},
        {"provider_timeout_s": 0.0},
        {"max_concurrency": 0},
        {"target_chunk_chars": 0},
    ],
)
def test_out_of_range_settings_raise_invalid_input(overrides):
    with pytest.raises(InvalidInput):
        EngineConfig(**overrides)


def test_config_is_frozen():
    cfg = EngineConfig()
    with pytest.raises(AttributeError):
        cfg.alpha = 0.2  # type: ignore[misc]
