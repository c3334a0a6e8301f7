"""
TrackLine Homography - Scene Motion Estimator

Keeps a track line drawn on one paused frame glued to the scene while
the camera pans, tilts or zooms.

Algorithm:
1. User locks the track line on a reference frame
2. ORB features (≤ 500) are extracted from the reference frame ONCE
3. For every later frame:
   - Extract ORB features from the current frame
   - Match current → reference descriptors (Hamming distance < 50)
   - Fit a homography with RANSAC (5px reprojection threshold)
   - Cache it under the frame index
4. Render: map reference points into the current frame with H^-1

The homography H for frame N maps current → reference:
    p_ref = H * p_current
    p_current = H^-1 * p_ref

Fallback (never crash, never freeze):
┌──────────────────────────┬───────────────────────────────────────┐
│ frame == reference       │ identity                               │
│ no reference descriptors │ identity                               │
│ backend not ready        │ identity                               │
│ < 4 keypoints            │ last cached H before this frame        │
│ < 4 good matches         │ last cached H before this frame        │
│ degenerate / singular H  │ last cached H before this frame        │
│ nothing cached before    │ identity                               │
└──────────────────────────┴───────────────────────────────────────┘
A single good estimate therefore plateaus until a new one replaces it.
"""

import logging
from enum import Enum
from typing import Optional, Dict, List, Sequence

import numpy as np

from .config import TrackingConfig, DEFAULT_CONFIG
from .errors import FallbackReason
from .features import VisionBackend, OpenCVBackend, FeatureSet, to_grayscale
from .geometry import (
    Point2D,
    identity_homography,
    invert_homography,
    apply_homography,
    apply_homography_to_points,
    is_well_formed,
)
from .readiness import ReadinessSignal


class HomographySource(Enum):
    """How the cached homography of a frame was obtained."""
    IDENTITY = "identity"
    FITTED = "fitted"
    FALLBACK = "fallback"


class SceneMotionEstimator:
    """
    Per-frame camera motion compensation via feature-matched homographies.

    Owns the reference frame features and the frame-index → homography
    cache. Nothing else mutates them.

    State machine:
        Uninitialized ──set_reference_frame──→ ReferenceSet
        ReferenceSet ──compute_homography──→ per frame: IDENTITY | FITTED | FALLBACK
        any ──clear──→ Uninitialized
    """

    def __init__(
        self,
        backend: Optional[VisionBackend] = None,
        config: Optional[TrackingConfig] = None,
        readiness: Optional[ReadinessSignal] = None
    ):
        """
        Args:
            backend: Feature extraction / matching / fitting capability
            config: Tuning knobs (match distance, RANSAC threshold...)
            readiness: Optional backend readiness signal; while it is not
                READY no features are extracted and identity is returned
        """
        self.config = config or DEFAULT_CONFIG
        self.backend = backend or OpenCVBackend(self.config)
        self.readiness = readiness
        self.logger = logging.getLogger("SceneMotionEstimator")

        self._homographies: Dict[int, np.ndarray] = {}
        self._sources: Dict[int, HomographySource] = {}
        self._reference_index: Optional[int] = None
        self._reference: FeatureSet = FeatureSet.empty()
        self._last_fallback: Optional[FallbackReason] = None

    # =========================================================================
    # REFERENCE FRAME
    # =========================================================================

    def set_reference_frame(self, frame_index: int, frame: np.ndarray) -> int:
        """
        Lock the reference frame and extract its features.

        Overwrites any previous reference. On extraction failure (or an
        unready backend) the reference stays empty and every later frame
        resolves to identity.

        Returns:
            Number of reference features extracted

        Raises:
            FrameFormatError: malformed frame; the previous reference is kept
        """
        to_grayscale(frame, self.config.channel_order)

        if not self._backend_ready():
            self.logger.warning("Vision backend not ready, cannot extract reference features")
            self._reference_index = frame_index
            self._reference = FeatureSet.empty()
            return 0

        reference = self.backend.extract(frame)
        self._reference_index = frame_index
        self._reference = reference
        self.logger.info(
            f"Reference frame set to index {frame_index}, features: {len(self._reference)}"
        )
        return len(self._reference)

    # =========================================================================
    # PER-FRAME ESTIMATION
    # =========================================================================

    def compute_homography(self, frame_index: int, frame: np.ndarray) -> np.ndarray:
        """
        Compute (and cache) the current → reference homography for a frame.

        Args:
            frame_index: Frame number supplied by the render loop
            frame: Current frame pixels

        Returns:
            3x3 homography (float64)
        """
        if frame_index == self._reference_index:
            return self._store(frame_index, identity_homography(), HomographySource.IDENTITY)

        if not self._backend_ready():
            self._last_fallback = FallbackReason.BACKEND_NOT_READY
            return self._store(frame_index, identity_homography(), HomographySource.IDENTITY)

        if self._reference.is_empty:
            return self._store(frame_index, identity_homography(), HomographySource.IDENTITY)

        current = self.backend.extract(frame)
        if len(current) < self.config.min_correspondences:
            self.logger.warning(f"Not enough keypoints in frame {frame_index} ({len(current)})")
            return self._fallback(frame_index, FallbackReason.INSUFFICIENT_FEATURES)

        current_pts, reference_pts = self.backend.match(
            current, self._reference, self.config.match_distance
        )
        if len(current_pts) < self.config.min_correspondences:
            self.logger.warning(
                f"Only {len(current_pts)} good matches in frame {frame_index}, "
                f"need at least {self.config.min_correspondences}"
            )
            return self._fallback(frame_index, FallbackReason.INSUFFICIENT_CORRESPONDENCE)

        H = self.backend.fit_robust_homography(
            current_pts, reference_pts, self.config.reprojection_threshold
        )
        if not is_well_formed(H, self.config.singular_epsilon):
            self.logger.warning(f"Homography computation failed for frame {frame_index}")
            return self._fallback(frame_index, FallbackReason.DEGENERATE_FIT)

        self.logger.debug(f"Frame {frame_index}: fitted from {len(current_pts)} matches")
        return self._store(frame_index, H, HomographySource.FITTED)

    def _fallback(self, frame_index: int, reason: FallbackReason) -> np.ndarray:
        """Re-use the nearest earlier cached homography, else identity."""
        self._last_fallback = reason
        for i in range(frame_index - 1, -1, -1):
            H = self._homographies.get(i)
            if H is not None:
                return self._store(frame_index, H.copy(), HomographySource.FALLBACK)
        return self._store(frame_index, identity_homography(), HomographySource.FALLBACK)

    def _store(self, frame_index: int, H: np.ndarray, source: HomographySource) -> np.ndarray:
        self._homographies[frame_index] = H
        self._sources[frame_index] = source
        return H.copy()

    def _backend_ready(self) -> bool:
        if self.readiness is not None and not self.readiness.is_ready:
            return False
        return self.backend.is_ready

    # =========================================================================
    # LOOKUPS & TRANSFORMS
    # =========================================================================

    def get_homography(self, frame_index: int) -> Optional[np.ndarray]:
        """Cached homography for a frame, or None."""
        H = self._homographies.get(frame_index)
        return None if H is None else H.copy()

    def get_source(self, frame_index: int) -> Optional[HomographySource]:
        return self._sources.get(frame_index)

    def map_to_reference(self, point: Point2D, frame_index: int) -> Optional[Point2D]:
        """Current-frame point → reference coordinates (None if uncached)."""
        H = self._homographies.get(frame_index)
        if H is None:
            return None
        return apply_homography(point, H, self.config.singular_epsilon)

    def map_to_current(self, point: Point2D, frame_index: int) -> Optional[Point2D]:
        """Reference point → current-frame coordinates (None if uncached or singular)."""
        H_inv = self._inverse_for(frame_index)
        if H_inv is None:
            return None
        return apply_homography(point, H_inv, self.config.singular_epsilon)

    def transform_track_line(self, points: Sequence[Point2D], frame_index: int) -> List[Point2D]:
        """
        Map a reference-frame polyline into the given frame.

        Never drops points. With no cached homography, or a singular one,
        the input points are returned unchanged.
        """
        H_inv = self._inverse_for(frame_index)
        if H_inv is None:
            return list(points)
        return apply_homography_to_points(points, H_inv, self.config.singular_epsilon)

    def _inverse_for(self, frame_index: int) -> Optional[np.ndarray]:
        H = self._homographies.get(frame_index)
        if H is None:
            return None
        H_inv = self.invert(H)
        if H_inv is None:
            self._last_fallback = FallbackReason.SINGULAR_TRANSFORM
            self.logger.debug(f"Homography for frame {frame_index} is singular")
        return H_inv

    def invert(self, H: np.ndarray) -> Optional[np.ndarray]:
        return invert_homography(H, self.config.singular_epsilon)

    def apply_transform(self, point: Point2D, H: np.ndarray) -> Point2D:
        return apply_homography(point, H, self.config.singular_epsilon)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def clear(self) -> None:
        """Drop the reference and every cached homography."""
        self._homographies.clear()
        self._sources.clear()
        self._reference_index = None
        self._reference = FeatureSet.empty()
        self._last_fallback = None

    @property
    def reference_frame_index(self) -> Optional[int]:
        return self._reference_index

    @property
    def reference_feature_count(self) -> int:
        return len(self._reference)

    @property
    def has_reference(self) -> bool:
        return self._reference_index is not None

    @property
    def cached_frames(self) -> List[int]:
        return sorted(self._homographies)

    @property
    def last_fallback_reason(self) -> Optional[FallbackReason]:
        return self._last_fallback
