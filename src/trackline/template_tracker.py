"""
TrackLine Template Tracker - Local Re-localization

Keeps manually marked objects attached as they move across frames.

Per object:
1. On initialization, cut a grayscale TEMPLATE out of the object's box
   (captured ONCE, never re-learned: no drift from template updates)
2. Every frame, search a window of template_size × 2.0 centred on the
   last known center
3. Normalized cross-correlation (TM_CCOEFF_NORMED) scores each offset
4. Accept the best offset only if score ≥ 0.7, else keep the old state

┌────────────────────────────────────┐
│ frame                              │
│        ┌──────────────┐            │
│        │ search window│  2x tpl    │
│        │   ┌─────┐    │            │
│        │   │ tpl │    │            │
│        │   └─────┘    │            │
│        └──────────────┘            │
└────────────────────────────────────┘

A failure while updating one object never aborts the batch; that object
is passed through unchanged.
"""

import math
import logging
from dataclasses import dataclass, replace
from typing import Optional, Dict, List, Sequence, Tuple

import numpy as np

from .config import TrackingConfig, DEFAULT_CONFIG
from .errors import FallbackReason
from .features import VisionBackend, OpenCVBackend, to_grayscale
from .geometry import Point2D, BBox, Rect, clip_rect


def _round(value: float) -> int:
    """Round half up (pixel grid snapping)."""
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class TrackedObject:
    """A user-marked object: unique id, center and (x, y, w, h) box."""
    id: int
    center: Point2D
    bbox: BBox
    label: str = ""

    @classmethod
    def from_point(cls, object_id: int, x: float, y: float, box_size: float, label: str = "") -> "TrackedObject":
        """Square seed box of box_size centred on a click."""
        half = box_size / 2.0
        return cls(
            id=object_id,
            center=(float(x), float(y)),
            bbox=(float(x) - half, float(y) - half, float(box_size), float(box_size)),
            label=label,
        )

    def contains(self, point: Point2D) -> bool:
        x, y, w, h = self.bbox
        return x <= point[0] <= x + w and y <= point[1] <= y + h

    @property
    def display_label(self) -> str:
        return self.label or f"Object {self.id}"


class LocalTracker:
    """
    Template-based per-object re-localization.

    Owns one grayscale template per object id. Nothing else mutates them.
    """

    def __init__(
        self,
        backend: Optional[VisionBackend] = None,
        config: Optional[TrackingConfig] = None
    ):
        self.config = config or DEFAULT_CONFIG
        self.backend = backend or OpenCVBackend(self.config)
        self.logger = logging.getLogger("LocalTracker")

        self._templates: Dict[int, np.ndarray] = {}
        self._outcomes: Dict[int, Optional[FallbackReason]] = {}
        self._scores: Dict[int, float] = {}

    def initialize_templates(self, base_frame: np.ndarray, objects: Sequence[TrackedObject]) -> int:
        """
        Capture one template per object from base_frame.

        Previously held templates are released first. Objects whose box
        does not overlap the frame are skipped with a warning.

        Returns:
            Number of templates captured
        """
        self.clear_templates()
        gray = to_grayscale(base_frame, self.config.channel_order)
        frame_h, frame_w = gray.shape[:2]

        for obj in objects:
            x, y, w, h = obj.bbox
            x1, y1, x2, y2 = clip_rect(
                _round(x), _round(y), _round(x + w), _round(y + h), frame_w, frame_h
            )
            if x2 <= x1 or y2 <= y1:
                self.logger.warning(f"Invalid ROI for object {obj.id}: bbox={obj.bbox}")
                continue
            self._templates[obj.id] = gray[y1:y2, x1:x2].copy()

        self.logger.info(f"Initialized {len(self._templates)} tracking templates")
        return len(self._templates)

    def update_tracked_positions(
        self,
        frame: np.ndarray,
        objects: Sequence[TrackedObject]
    ) -> List[TrackedObject]:
        """
        Re-localize every object in the current frame.

        Returns:
            Same length, ids and order as the input. Objects that were not
            confidently re-found are returned as the very same instances.

        Raises:
            FrameFormatError: the frame buffer itself is malformed
        """
        if not self._templates:
            return list(objects)

        gray = to_grayscale(frame, self.config.channel_order)

        updated = []
        for obj in objects:
            try:
                updated.append(self._update_one(gray, obj))
            except Exception as e:
                self.logger.error(f"Tracking update failed for object {obj.id}: {e}")
                self._outcomes[obj.id] = FallbackReason.INTERNAL_ERROR
                updated.append(obj)
        return updated

    def _update_one(self, gray: np.ndarray, obj: TrackedObject) -> TrackedObject:
        template = self._templates.get(obj.id)
        if template is None:
            self._outcomes[obj.id] = FallbackReason.UNINITIALIZED_TEMPLATE
            return obj

        tpl_h, tpl_w = template.shape[:2]
        x0, y0, x1, y1 = self.search_window(obj.center, (tpl_w, tpl_h), gray.shape[1], gray.shape[0])
        if (x1 - x0) < tpl_w or (y1 - y0) < tpl_h:
            self._outcomes[obj.id] = FallbackReason.WINDOW_TOO_SMALL
            return obj

        score, (mx, my) = self.backend.match_template(gray[y0:y1, x0:x1], template)
        self._scores[obj.id] = score
        if not math.isfinite(score) or score < self.config.confidence_threshold:
            self.logger.debug(f"Object {obj.id}: low confidence {score:.3f}, keeping position")
            self._outcomes[obj.id] = FallbackReason.LOW_CONFIDENCE_MATCH
            return obj

        left = float(x0 + mx)
        top = float(y0 + my)
        self._outcomes[obj.id] = None
        return replace(
            obj,
            center=(left + tpl_w / 2.0, top + tpl_h / 2.0),
            bbox=(left, top, float(tpl_w), float(tpl_h)),
        )

    def search_window(
        self,
        center: Point2D,
        template_size: Tuple[int, int],
        frame_w: int,
        frame_h: int
    ) -> Rect:
        """template_size × search_multiplier rectangle around center, clipped."""
        search_w = _round(template_size[0] * self.config.search_multiplier)
        search_h = _round(template_size[1] * self.config.search_multiplier)
        x0 = _round(center[0] - search_w / 2.0)
        y0 = _round(center[1] - search_h / 2.0)
        return clip_rect(x0, y0, x0 + search_w, y0 + search_h, frame_w, frame_h)

    def clear_templates(self) -> None:
        """Release every template. Safe when already empty."""
        self._templates.clear()
        self._outcomes.clear()
        self._scores.clear()

    def remove_template(self, object_id: int) -> bool:
        if object_id not in self._templates:
            return False
        del self._templates[object_id]
        self._outcomes.pop(object_id, None)
        self._scores.pop(object_id, None)
        return True

    def has_template(self, object_id: int) -> bool:
        return object_id in self._templates

    def template_shape(self, object_id: int) -> Optional[Tuple[int, int]]:
        template = self._templates.get(object_id)
        return None if template is None else template.shape[:2]

    def last_outcome(self, object_id: int) -> Optional[FallbackReason]:
        """None after a successful update, else why the object was kept."""
        return self._outcomes.get(object_id)

    def last_score(self, object_id: int) -> Optional[float]:
        return self._scores.get(object_id)

    @property
    def template_count(self) -> int:
        return len(self._templates)
