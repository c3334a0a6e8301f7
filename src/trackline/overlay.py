"""
TrackLine Overlay - OpenCV Scene Renderer

Consumer of FrameResult data. Draws onto a BGR frame:
- the (stabilized) track line as an anti-aliased cyan polyline
- the start/finish vertex as a red dot
- every tracked object as a green box, centroid and "Object <id>" label
- a small HUD with frame index, homography source and tick time
"""

from dataclasses import dataclass
from typing import Optional, Tuple, Sequence

import numpy as np
import cv2

from .geometry import Point2D
from .homography import HomographySource
from .session import FrameResult
from .template_tracker import TrackedObject


@dataclass
class ColorScheme:
    """BGR colors for the overlay."""
    track_line: Tuple[int, int, int] = (255, 255, 0)   # Cyan
    start_point: Tuple[int, int, int] = (0, 0, 255)    # Red
    objects: Tuple[int, int, int] = (0, 255, 0)        # Green
    fallback: Tuple[int, int, int] = (0, 165, 255)     # Orange
    text: Tuple[int, int, int] = (255, 255, 255)       # White
    background: Tuple[int, int, int] = (0, 0, 0)       # Black


class OverlayRenderer:
    """Draws track lines and tracked objects onto video frames."""

    def __init__(
        self,
        colors: Optional[ColorScheme] = None,
        font: int = cv2.FONT_HERSHEY_SIMPLEX,
        font_scale: float = 0.5,
        thickness: int = 3
    ):
        self.colors = colors or ColorScheme()
        self.font = font
        self.font_scale = font_scale
        self.thickness = thickness

    def render_track_line(
        self,
        frame: np.ndarray,
        line: Sequence[Point2D],
        start_index: Optional[int] = None,
        color: Optional[Tuple[int, int, int]] = None
    ) -> np.ndarray:
        """Polyline plus start/finish marker. Needs at least 2 points."""
        if len(line) < 2:
            return frame

        pts = np.array([[int(round(x)), int(round(y))] for x, y in line], dtype=np.int32)
        cv2.polylines(
            frame, [pts.reshape(-1, 1, 2)], False,
            color or self.colors.track_line, self.thickness, cv2.LINE_AA
        )

        if start_index is not None and 0 <= start_index < len(line):
            sx, sy = pts[start_index]
            cv2.circle(frame, (int(sx), int(sy)), 8, self.colors.start_point, -1, cv2.LINE_AA)
        return frame

    def render_objects(self, frame: np.ndarray, objects: Sequence[TrackedObject]) -> np.ndarray:
        """Bounding box, centroid and label per object."""
        color = self.colors.objects
        for obj in objects:
            x, y, w, h = obj.bbox
            top_left = (int(round(x)), int(round(y)))
            bottom_right = (int(round(x + w)), int(round(y + h)))
            cv2.rectangle(frame, top_left, bottom_right, color, self.thickness, cv2.LINE_AA)

            cx, cy = obj.center
            cv2.circle(frame, (int(round(cx)), int(round(cy))), 5, color, -1, cv2.LINE_AA)

            cv2.putText(
                frame, obj.display_label, (top_left[0], top_left[1] - 8),
                self.font, self.font_scale, color, 1, cv2.LINE_AA
            )
        return frame

    def render_hud(self, frame: np.ndarray, result: FrameResult, tick_ms: float = 0.0) -> np.ndarray:
        """Frame index, homography source and latency in the top-left corner."""
        overlay = frame.copy()
        cv2.rectangle(overlay, (5, 5), (260, 60), self.colors.background, -1)
        cv2.addWeighted(overlay, 0.6, frame, 0.4, 0, frame)

        source = result.homography_source
        status = "skipped" if result.skipped else (source.value if source else "unlocked")
        status_color = self.colors.text
        if result.skipped or source == HomographySource.FALLBACK:
            status_color = self.colors.fallback

        cv2.putText(
            frame, f"Frame {result.frame_index} | {status}", (10, 28),
            self.font, 0.6, status_color, 1, cv2.LINE_AA
        )
        cv2.putText(
            frame, f"Tick: {tick_ms:.1f}ms | Objects: {len(result.objects)}", (10, 50),
            self.font, 0.5, (200, 200, 200), 1, cv2.LINE_AA
        )
        return frame

    def render_scene(self, frame: np.ndarray, result: FrameResult, tick_ms: Optional[float] = None) -> np.ndarray:
        """Track line, objects and (optionally) the HUD for one tick."""
        self.render_track_line(frame, result.track_line, result.start_index)
        self.render_objects(frame, result.objects)
        if tick_ms is not None:
            self.render_hud(frame, result, tick_ms)
        return frame
