"""
TrackLine Errors

Only genuinely fatal conditions are exceptions. Everything the per-frame
engines can recover from is reported as a FallbackReason instead.
"""

from enum import Enum


class TrackLineError(Exception):
    """Base class for TrackLine errors."""


class FrameFormatError(TrackLineError):
    """Pixel buffer has an unusable rank, channel count or dtype."""


class ConfigError(TrackLineError):
    """A tuning knob is outside its valid range."""


class BackendNotReadyError(TrackLineError):
    """The vision backend never became ready."""


class FallbackReason(Enum):
    """Why a frame fell back to identity / last-valid / unchanged output."""
    INSUFFICIENT_FEATURES = "insufficient_features"              # < 4 keypoints
    INSUFFICIENT_CORRESPONDENCE = "insufficient_correspondence"  # < 4 good matches
    DEGENERATE_FIT = "degenerate_fit"                            # empty / singular model
    SINGULAR_TRANSFORM = "singular_transform"                    # |det| < eps on inversion
    LOW_CONFIDENCE_MATCH = "low_confidence_match"                # NCC score below threshold
    UNINITIALIZED_TEMPLATE = "uninitialized_template"            # object has no template
    WINDOW_TOO_SMALL = "window_too_small"                        # clipped window < template
    BACKEND_NOT_READY = "backend_not_ready"
    INTERNAL_ERROR = "internal_error"
