"""TrackingConfig defaults, validation and TRACKLINE_* overrides."""

import os

import pytest

import synthetic_frames  # noqa: F401
from trackline.config import TrackingConfig, DEFAULT_CONFIG
from trackline.errors import ConfigError


def _with_env(values):
    """Set TRACKLINE_* variables for the duration of a block."""
    class _Env:
        def __enter__(self):
            self.saved = {k: os.environ.get(k) for k in values}
            os.environ.update(values)

        def __exit__(self, *exc):
            for key, old in self.saved.items():
                if old is None:
                    os.environ.pop(key, None)
                else:
                    os.environ[key] = old
    return _Env()


def test_defaults():
    assert DEFAULT_CONFIG.max_features == 500
    assert DEFAULT_CONFIG.match_distance == 50.0
    assert DEFAULT_CONFIG.reprojection_threshold == 5.0
    assert DEFAULT_CONFIG.confidence_threshold == 0.7
    assert DEFAULT_CONFIG.search_multiplier == 2.0
    assert DEFAULT_CONFIG.cross_check is True
    assert DEFAULT_CONFIG.validate() is DEFAULT_CONFIG


def test_env_overrides():
    env = {
        "TRACKLINE_MATCH_DISTANCE": "40",
        "TRACKLINE_MAX_FEATURES": "250",
        "TRACKLINE_CROSS_CHECK": "false",
        "TRACKLINE_CHANNEL_ORDER": "RGB",
    }
    with _with_env(env):
        config = TrackingConfig.from_env(load_file=False)
    assert config.match_distance == 40.0
    assert config.max_features == 250
    assert config.cross_check is False
    assert config.channel_order == "RGB"


def test_explicit_overrides_win():
    with _with_env({"TRACKLINE_FPS": "25"}):
        config = TrackingConfig.from_env(load_file=False, fps=60.0)
    assert config.fps == 60.0


def test_unparseable_value_keeps_default():
    with _with_env({"TRACKLINE_CONFIDENCE_THRESHOLD": "very"}):
        config = TrackingConfig.from_env(load_file=False)
    assert config.confidence_threshold == 0.7


@pytest.mark.parametrize("bad", [
    {"max_features": 0},
    {"confidence_threshold": 1.5},
    {"min_correspondences": 3},
    {"fps": 0.0},
    {"channel_order": "YUV"},
])
def test_out_of_range_values_rejected(bad):
    with pytest.raises(ConfigError):
        TrackingConfig(**bad).validate()
