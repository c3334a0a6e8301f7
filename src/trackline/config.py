"""
TrackLine Configuration - Tuning Knobs

All thresholds are empirically chosen defaults, not correctness
requirements. They can be overridden in code, or through TRACKLINE_*
environment variables (optionally loaded from a .env file):

    TRACKLINE_MATCH_DISTANCE=40
    TRACKLINE_CONFIDENCE_THRESHOLD=0.75
    TRACKLINE_CHANNEL_ORDER=RGB
"""

import os
import logging
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigError


ENV_PREFIX = "TRACKLINE_"
CHANNEL_ORDERS = ("BGR", "RGB")

logger = logging.getLogger("TrackingConfig")


def load_env_file() -> Optional[str]:
    """Load environment variables from the first .env file found."""
    possible_paths = [
        Path(__file__).resolve().parents[2] / ".env",  # src/trackline/../../.env
        Path.cwd() / ".env",
        Path.home() / ".env",
    ]

    for env_path in possible_paths:
        if env_path.exists():
            load_dotenv(env_path, override=False)
            return str(env_path)
    return None


@dataclass(frozen=True)
class TrackingConfig:
    """Tuning knobs shared by the motion estimator and the object tracker."""

    # Feature correspondence
    max_features: int = 500           # ORB keypoint cap
    match_distance: float = 50.0      # Hamming units, keep match if distance < this
    cross_check: bool = True          # mutual nearest neighbour only
    min_correspondences: int = 4      # a homography needs 4 points

    # Robust fitting
    reprojection_threshold: float = 5.0  # RANSAC inlier threshold (pixels)
    singular_epsilon: float = 1e-10

    # Template tracking
    confidence_threshold: float = 0.7
    search_multiplier: float = 2.0
    default_box_size: int = 60

    # Frame source / render loop
    fps: float = 30.0
    channel_order: str = "BGR"        # colour frames: BGR(A) or RGB(A)
    readiness_timeout: float = 30.0

    def validate(self) -> "TrackingConfig":
        """Raise ConfigError if any knob is out of range."""
        if self.max_features <= 0:
            raise ConfigError(f"max_features must be positive, got {self.max_features}")
        if self.match_distance <= 0:
            raise ConfigError(f"match_distance must be positive, got {self.match_distance}")
        if self.min_correspondences < 4:
            raise ConfigError(
                f"min_correspondences must be at least 4, got {self.min_correspondences}"
            )
        if self.reprojection_threshold <= 0:
            raise ConfigError(
                f"reprojection_threshold must be positive, got {self.reprojection_threshold}"
            )
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ConfigError(
                f"confidence_threshold must be within [0, 1], got {self.confidence_threshold}"
            )
        if self.search_multiplier <= 0:
            raise ConfigError(f"search_multiplier must be positive, got {self.search_multiplier}")
        if self.default_box_size <= 0:
            raise ConfigError(f"default_box_size must be positive, got {self.default_box_size}")
        if self.fps <= 0:
            raise ConfigError(f"fps must be positive, got {self.fps}")
        if self.readiness_timeout < 0:
            raise ConfigError(f"readiness_timeout must be >= 0, got {self.readiness_timeout}")
        if self.channel_order.upper() not in CHANNEL_ORDERS:
            raise ConfigError(
                f"channel_order must be one of {CHANNEL_ORDERS}, got {self.channel_order!r}"
            )
        return self

    @classmethod
    def from_env(cls, load_file: bool = True, **overrides) -> "TrackingConfig":
        """
        Build a config from TRACKLINE_* environment variables.

        Args:
            load_file: Also load a .env file first (existing env vars win)
            **overrides: Explicit values, applied last

        Returns:
            Validated TrackingConfig
        """
        if load_file:
            env_path = load_env_file()
            if env_path:
                logger.debug(f"Loaded environment from {env_path}")

        config = cls()
        values = {}
        for f in fields(cls):
            raw = os.environ.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            default = getattr(config, f.name)
            try:
                values[f.name] = _parse_value(raw, default)
            except ValueError:
                logger.warning(
                    f"Ignoring {ENV_PREFIX}{f.name.upper()}={raw!r}, keeping default {default!r}"
                )

        values.update(overrides)
        return replace(config, **values).validate()


def _parse_value(raw: str, default):
    if isinstance(default, bool):
        lowered = raw.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ValueError(raw)
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return raw.strip()


DEFAULT_CONFIG = TrackingConfig()
