"""
TrackLine Features - Feature Correspondence Layer

The capability interface the motion estimator and the object tracker
depend on, plus the OpenCV implementation:

┌──────────────────────────────────────────────────────────────────┐
│                      VisionBackend                                │
├──────────────────────────────────────────────────────────────────┤
│  extract(frame)                 → FeatureSet (≤ 500 ORB points)   │
│  match(current, reference)      → (current_pts, reference_pts)    │
│  fit_robust_homography(src,dst) → 3x3 or None (RANSAC, 5px)       │
│  match_template(search, tpl)    → (best NCC score, best top-left) │
└──────────────────────────────────────────────────────────────────┘

ORB (Oriented FAST and Rotated BRIEF) gives rotation-invariant keypoints
with 256-bit binary descriptors, compared by Hamming distance.

Degenerate frames (solid colour, too small) produce an EMPTY FeatureSet,
never an exception. A malformed pixel buffer raises FrameFormatError.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np
import cv2

from .config import TrackingConfig, DEFAULT_CONFIG
from .errors import FrameFormatError
from .geometry import as_homography


@dataclass
class FeatureSet:
    """Keypoint locations and their descriptors, in the same order."""
    points: np.ndarray = field(default_factory=lambda: np.empty((0, 2), dtype=np.float32))
    descriptors: np.ndarray = field(default_factory=lambda: np.empty((0, 32), dtype=np.uint8))

    def __len__(self) -> int:
        return int(self.points.shape[0])

    @property
    def is_empty(self) -> bool:
        return len(self) == 0 or self.descriptors.shape[0] == 0

    @classmethod
    def empty(cls) -> "FeatureSet":
        return cls()


def to_grayscale(frame: np.ndarray, channel_order: str = "BGR") -> np.ndarray:
    """
    Convert a captured frame to a single-channel uint8 image.

    Accepts grayscale (H, W) / (H, W, 1), colour (H, W, 3) and
    colour+alpha (H, W, 4) buffers. channel_order tells whether colour
    frames come from OpenCV (BGR) or from a canvas-like source (RGB).

    Raises:
        FrameFormatError: wrong type, rank, channel count or dtype
    """
    if not isinstance(frame, np.ndarray):
        raise FrameFormatError(f"Frame must be a numpy array, got {type(frame).__name__}")
    if frame.dtype != np.uint8:
        raise FrameFormatError(f"Frame must be uint8, got {frame.dtype}")

    if frame.ndim == 2:
        return frame
    if frame.ndim != 3:
        raise FrameFormatError(f"Frame must be 2D or 3D, got shape {frame.shape}")

    channels = frame.shape[2]
    if channels == 1:
        return frame[:, :, 0]
    if frame.shape[0] == 0 or frame.shape[1] == 0:
        return np.empty(frame.shape[:2], dtype=np.uint8)

    rgb = channel_order.upper() == "RGB"
    if channels == 3:
        code = cv2.COLOR_RGB2GRAY if rgb else cv2.COLOR_BGR2GRAY
    elif channels == 4:
        code = cv2.COLOR_RGBA2GRAY if rgb else cv2.COLOR_BGRA2GRAY
    else:
        raise FrameFormatError(f"Unsupported channel count {channels} (shape {frame.shape})")
    return cv2.cvtColor(frame, code)


class VisionBackend(ABC):
    """Feature extraction, matching and robust fitting capability."""

    @abstractmethod
    def extract(self, frame: np.ndarray) -> FeatureSet:
        """Keypoints + descriptors for a frame; empty when degenerate."""

    @abstractmethod
    def match(
        self,
        current: FeatureSet,
        reference: FeatureSet,
        max_distance: float
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Nearest-reference matches for each current descriptor.

        Returns:
            (current_points, reference_points), both (N, 2) float32,
            keeping only matches with distance < max_distance
        """

    @abstractmethod
    def fit_robust_homography(
        self,
        src_points: np.ndarray,
        dst_points: np.ndarray,
        reprojection_threshold: float
    ) -> Optional[np.ndarray]:
        """Outlier-tolerant src → dst homography, or None if degenerate."""

    @abstractmethod
    def match_template(
        self,
        search: np.ndarray,
        template: np.ndarray
    ) -> Tuple[float, Tuple[int, int]]:
        """
        Normalized cross-correlation search of template inside search.

        Returns:
            (best_score, (x, y)) with (x, y) the best top-left offset
        """

    @property
    def is_ready(self) -> bool:
        return True


class OpenCVBackend(VisionBackend):
    """
    OpenCV implementation: ORB + brute-force Hamming matcher + RANSAC.

    The detector and matcher are created once and reused; every buffer
    produced while processing a frame is local to that call.
    """

    def __init__(self, config: Optional[TrackingConfig] = None):
        self.config = config or DEFAULT_CONFIG
        self.logger = logging.getLogger("FeatureExtractor")

        self._orb = cv2.ORB_create(nfeatures=self.config.max_features)
        self._matcher = cv2.BFMatcher(cv2.NORM_HAMMING, crossCheck=self.config.cross_check)

    def extract(self, frame: np.ndarray) -> FeatureSet:
        gray = to_grayscale(frame, self.config.channel_order)
        if gray.size == 0:
            return FeatureSet.empty()

        try:
            keypoints, descriptors = self._orb.detectAndCompute(gray, None)
        except cv2.error as e:
            self.logger.debug(f"ORB failed on {gray.shape} frame: {e}")
            return FeatureSet.empty()

        if not keypoints or descriptors is None or len(descriptors) == 0:
            return FeatureSet.empty()

        # ORB may keep response ties past nfeatures
        if len(keypoints) > self.config.max_features:
            order = sorted(range(len(keypoints)), key=lambda i: keypoints[i].response, reverse=True)
            order = order[:self.config.max_features]
            keypoints = [keypoints[i] for i in order]
            descriptors = descriptors[order]

        points = np.float32([kp.pt for kp in keypoints]).reshape(-1, 2)
        return FeatureSet(points=points, descriptors=np.ascontiguousarray(descriptors))

    def match(
        self,
        current: FeatureSet,
        reference: FeatureSet,
        max_distance: float
    ) -> Tuple[np.ndarray, np.ndarray]:
        empty = np.empty((0, 2), dtype=np.float32)
        if current.is_empty or reference.is_empty:
            return empty, empty

        try:
            matches = self._matcher.match(current.descriptors, reference.descriptors)
        except cv2.error as e:
            self.logger.debug(f"Descriptor matching failed: {e}")
            return empty, empty

        good = [m for m in matches if m.distance < max_distance]
        if not good:
            return empty, empty

        current_pts = np.float32([current.points[m.queryIdx] for m in good]).reshape(-1, 2)
        reference_pts = np.float32([reference.points[m.trainIdx] for m in good]).reshape(-1, 2)
        return current_pts, reference_pts

    def fit_robust_homography(
        self,
        src_points: np.ndarray,
        dst_points: np.ndarray,
        reprojection_threshold: float
    ) -> Optional[np.ndarray]:
        if len(src_points) < 4 or len(src_points) != len(dst_points):
            return None

        src = np.float32(src_points).reshape(-1, 1, 2)
        dst = np.float32(dst_points).reshape(-1, 1, 2)
        try:
            H, mask = cv2.findHomography(src, dst, cv2.RANSAC, reprojection_threshold)
        except cv2.error as e:
            self.logger.debug(f"findHomography failed: {e}")
            return None

        if H is None or H.size == 0:
            return None
        if mask is not None:
            self.logger.debug(f"RANSAC inliers: {int(mask.sum())}/{len(src_points)}")
        return as_homography(H)

    def match_template(
        self,
        search: np.ndarray,
        template: np.ndarray
    ) -> Tuple[float, Tuple[int, int]]:
        result = cv2.matchTemplate(search, template, cv2.TM_CCOEFF_NORMED)
        _, max_val, _, max_loc = cv2.minMaxLoc(result)
        return float(max_val), (int(max_loc[0]), int(max_loc[1]))
