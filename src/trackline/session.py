"""
TrackLine Session - One Annotation Session

Bundles the two engines with the user's one-time inputs:

- the track line (polyline in REFERENCE-frame coordinates) and an
  optional start/finish index into it
- the marked objects, with unique, monotonically assigned ids

Each session owns its own estimator and tracker, so independent sessions
(e.g. two videos side by side) never share cached state.

Usage:
    session = AnnotationSession()
    session.lock_track_line(frame_index=0, frame=frame0, points=line)
    session.add_object(320, 240)
    session.start_tracking(frame0)

    result = session.process_frame(frame_index, frame)
    draw(result.track_line, result.objects)
"""

import uuid
import logging
from enum import Enum
from dataclasses import dataclass
from typing import Optional, List, Sequence

import numpy as np

from .config import TrackingConfig, DEFAULT_CONFIG
from .errors import FrameFormatError
from .features import VisionBackend, OpenCVBackend
from .geometry import Point2D, BBox, bbox_center
from .homography import SceneMotionEstimator, HomographySource
from .readiness import ReadinessSignal
from .template_tracker import LocalTracker, TrackedObject


class SessionMode(Enum):
    """Lifecycle of a session."""
    NORMAL = "normal"        # nothing locked yet
    LOCKED = "locked"        # track line locked on a reference frame
    TRACKING = "tracking"    # locked + object templates captured


@dataclass
class FrameResult:
    """Pure-data output of one tick, handed to the overlay renderer."""
    frame_index: int
    track_line: List[Point2D]
    objects: List[TrackedObject]
    homography: Optional[np.ndarray] = None
    homography_source: Optional[HomographySource] = None
    skipped: bool = False
    error: Optional[str] = None
    start_index: Optional[int] = None


def _check_start_index(start_index: Optional[int], line_length: int) -> None:
    if start_index is not None and not 0 <= start_index < line_length:
        raise ValueError(
            f"start_index {start_index} outside track line of {line_length} points"
        )


class AnnotationSession:
    """A track line + marked objects kept in place across a moving-camera video."""

    def __init__(
        self,
        config: Optional[TrackingConfig] = None,
        backend: Optional[VisionBackend] = None,
        readiness: Optional[ReadinessSignal] = None,
        session_id: Optional[str] = None
    ):
        self.config = (config or DEFAULT_CONFIG).validate()
        self.session_id = session_id or str(uuid.uuid4())[:8]
        self.logger = logging.getLogger(f"AnnotationSession-{self.session_id}")

        backend = backend or OpenCVBackend(self.config)
        self.estimator = SceneMotionEstimator(backend, self.config, readiness)
        self.tracker = LocalTracker(backend, self.config)

        self._mode = SessionMode.NORMAL
        self._track_line: List[Point2D] = []
        self._start_index: Optional[int] = None
        self._objects: List[TrackedObject] = []
        self._next_id = 1
        self._last_line: List[Point2D] = []

    # =========================================================================
    # TRACK LINE
    # =========================================================================

    def lock_track_line(
        self,
        frame_index: int,
        frame: np.ndarray,
        points: Sequence[Point2D],
        start_index: Optional[int] = None
    ) -> int:
        """
        Lock the polyline drawn on frame_index as the reference geometry.

        A rejected frame or start_index leaves the previous lock in place.

        Returns:
            Number of reference features extracted

        Raises:
            ValueError: no points, or start_index outside the new line
            FrameFormatError: the reference frame buffer is malformed
        """
        if len(points) < 1:
            raise ValueError("Track line needs at least one point")
        line = [(float(x), float(y)) for x, y in points]
        _check_start_index(start_index, len(line))

        if self.estimator.readiness is not None:
            self.estimator.readiness.wait(self.config.readiness_timeout)
        count = self.estimator.set_reference_frame(frame_index, frame)

        self._track_line = line
        self._last_line = list(line)
        self._start_index = start_index
        if self._mode == SessionMode.NORMAL:
            self._mode = SessionMode.LOCKED
        self.logger.info(
            f"Track line locked at frame {frame_index}: "
            f"{len(self._track_line)} points, {count} features"
        )
        return count

    def set_start_index(self, start_index: Optional[int]) -> None:
        """Mark which track line vertex is the start/finish point."""
        _check_start_index(start_index, len(self._track_line))
        self._start_index = start_index

    # =========================================================================
    # OBJECTS
    # =========================================================================

    def add_object(
        self,
        x: float,
        y: float,
        box_size: Optional[float] = None,
        label: str = "",
        object_id: Optional[int] = None
    ) -> TrackedObject:
        """Seed an object with a square box centred on (x, y)."""
        size = box_size or self.config.default_box_size
        obj = TrackedObject.from_point(self._allocate_id(object_id), x, y, size, label)
        self._objects.append(obj)
        return obj

    def add_object_box(self, bbox: BBox, label: str = "", object_id: Optional[int] = None) -> TrackedObject:
        """Seed an object from an explicit (x, y, w, h) box."""
        x, y, w, h = (float(v) for v in bbox)
        if w <= 0 or h <= 0:
            raise ValueError(f"Object box must have positive size, got {bbox}")
        obj = TrackedObject(
            id=self._allocate_id(object_id),
            center=bbox_center((x, y, w, h)),
            bbox=(x, y, w, h),
            label=label,
        )
        self._objects.append(obj)
        return obj

    def _allocate_id(self, object_id: Optional[int]) -> int:
        if object_id is None:
            object_id = self._next_id
        elif any(o.id == object_id for o in self._objects):
            raise ValueError(f"Object id {object_id} already in use")
        self._next_id = max(self._next_id, object_id + 1)
        return object_id

    def remove_object(self, object_id: int) -> bool:
        before = len(self._objects)
        self._objects = [o for o in self._objects if o.id != object_id]
        self.tracker.remove_template(object_id)
        return len(self._objects) != before

    def object_at(self, point: Point2D) -> Optional[TrackedObject]:
        """Topmost (most recently added) object whose box contains point."""
        for obj in reversed(self._objects):
            if obj.contains(point):
                return obj
        return None

    def start_tracking(self, base_frame: np.ndarray) -> int:
        """Capture templates for every marked object from base_frame."""
        count = self.tracker.initialize_templates(base_frame, self._objects)
        if count > 0:
            self._mode = SessionMode.TRACKING
        return count

    # =========================================================================
    # PER FRAME
    # =========================================================================

    def process_frame(self, frame_index: int, frame: np.ndarray) -> FrameResult:
        """
        Run one tick: motion compensation, then object re-localization.

        A malformed frame skips this tick's geometry update; the previous
        outputs are re-emitted with skipped=True.
        """
        try:
            homography = None
            source = None
            line = list(self._track_line)
            if self._mode != SessionMode.NORMAL:
                homography = self.estimator.compute_homography(frame_index, frame)
                source = self.estimator.get_source(frame_index)
                line = self.estimator.transform_track_line(self._track_line, frame_index)

            if self._mode == SessionMode.TRACKING:
                self._objects = self.tracker.update_tracked_positions(frame, self._objects)
        except FrameFormatError as e:
            self.logger.warning(f"Skipping geometry update for frame {frame_index}: {e}")
            return FrameResult(
                frame_index=frame_index,
                track_line=list(self._last_line),
                objects=list(self._objects),
                skipped=True,
                error=str(e),
                start_index=self._start_index,
            )

        self._last_line = line
        return FrameResult(
            frame_index=frame_index,
            track_line=line,
            objects=list(self._objects),
            homography=homography,
            homography_source=source,
            start_index=self._start_index,
        )

    def reset(self) -> None:
        """Back to a freshly constructed session."""
        self.estimator.clear()
        self.tracker.clear_templates()
        self._mode = SessionMode.NORMAL
        self._track_line = []
        self._last_line = []
        self._start_index = None
        self._objects = []
        self._next_id = 1
        self.logger.info("Session reset")

    @property
    def mode(self) -> SessionMode:
        return self._mode

    @property
    def track_line(self) -> List[Point2D]:
        return list(self._track_line)

    @property
    def start_index(self) -> Optional[int]:
        return self._start_index

    @property
    def objects(self) -> List[TrackedObject]:
        return list(self._objects)
