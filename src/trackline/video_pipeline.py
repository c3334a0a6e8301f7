"""
TrackLine Video Pipeline - Frame Capture Adapters

Supplies the pixel buffer for the current tick on demand. The render loop
pulls one frame per tick and only asks for the next one after the whole
tick (capture + estimate + update + render) has completed, so capture is
synchronous here: no background thread, no frame dropping.

The frame index is derived from playback time:
    frame_index = floor(seconds × fps)
"""

import math
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Tuple, Sequence

import cv2
import numpy as np


def frame_index_at(seconds: float, fps: float) -> int:
    """Frame number shown at a playback time."""
    if fps <= 0:
        raise ValueError(f"fps must be positive, got {fps}")
    return int(math.floor(seconds * fps + 1e-9))


@dataclass
class FrameMetadata:
    """Metadata for a captured frame."""
    timestamp: float      # playback position (seconds)
    frame_number: int     # frames delivered so far by this source
    width: int
    height: int
    fps: float


class FrameSource(ABC):
    """Anything that can hand the render loop its next frame."""

    @abstractmethod
    def capture(self) -> Optional[np.ndarray]:
        """Next frame, or None at end of stream."""

    @property
    @abstractmethod
    def position_seconds(self) -> float:
        """Playback time of the frame last returned by capture()."""

    @property
    @abstractmethod
    def fps(self) -> float:
        ...

    def open(self) -> bool:
        return True

    def close(self) -> None:
        pass

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class VideoFileSource(FrameSource):
    """
    Video file (or camera index) reader backed by cv2.VideoCapture.

    Usage:
        with VideoFileSource("race.mp4") as video:
            frame = video.capture()
            index = frame_index_at(video.position_seconds, video.fps)
    """

    def __init__(self, source: int | str, fps_override: Optional[float] = None, loop: bool = False):
        """
        Args:
            source: File path / URL, or camera index
            fps_override: Use this frame rate instead of the container's
            loop: Rewind to the first frame at end of file
        """
        self.source = source
        self.loop = loop
        self._fps_override = fps_override

        self._cap: Optional[cv2.VideoCapture] = None
        self._native_fps = 0.0
        self._width = 0
        self._height = 0
        self._total_frames = 0
        self._frame_count = 0
        self._position = 0.0

        self.logger = logging.getLogger("VideoFileSource")

    def open(self) -> bool:
        if self._cap is not None:
            return True

        self._cap = cv2.VideoCapture(self.source)
        if not self._cap.isOpened():
            self.logger.error(f"Failed to open video source: {self.source}")
            self._cap = None
            return False

        self._width = int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        self._height = int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        self._native_fps = self._cap.get(cv2.CAP_PROP_FPS) or 30.0
        self._total_frames = int(self._cap.get(cv2.CAP_PROP_FRAME_COUNT))

        self.logger.info(
            f"Video source opened: {self._width}x{self._height} @ {self._native_fps:.1f}fps, "
            f"{self._total_frames} frames"
        )
        return True

    def capture(self) -> Optional[np.ndarray]:
        if self._cap is None and not self.open():
            return None

        ret, frame = self._cap.read()
        if not ret and self.loop and self._frame_count > 0:
            self.seek(0)
            ret, frame = self._cap.read()
        if not ret:
            self.logger.info("End of video reached")
            return None

        # POS_FRAMES points at the next frame to decode
        next_index = int(self._cap.get(cv2.CAP_PROP_POS_FRAMES))
        self._position = max(0, next_index - 1) / self._native_fps
        self._frame_count += 1
        return frame

    def seek(self, frame_number: int) -> None:
        if self._cap is not None:
            self._cap.set(cv2.CAP_PROP_POS_FRAMES, frame_number)

    def seek_time(self, seconds: float) -> None:
        self.seek(frame_index_at(seconds, self._native_fps))

    def close(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            self.logger.info("Video source closed")

    @property
    def position_seconds(self) -> float:
        return self._position

    @property
    def fps(self) -> float:
        return self._fps_override or self._native_fps or 30.0

    @property
    def frame_size(self) -> Tuple[int, int]:
        return (self._width, self._height)

    @property
    def total_frames(self) -> int:
        return self._total_frames

    @property
    def metadata(self) -> FrameMetadata:
        return FrameMetadata(
            timestamp=self._position,
            frame_number=self._frame_count,
            width=self._width,
            height=self._height,
            fps=self.fps,
        )


class ArrayFrameSource(FrameSource):
    """In-memory frames played back at a fixed rate (tests, replays)."""

    def __init__(self, frames: Sequence[np.ndarray], fps: float = 30.0, start_index: int = 0):
        self._frames = list(frames)
        self._fps = fps
        self._next = start_index
        self._position = start_index / fps

    def capture(self) -> Optional[np.ndarray]:
        if self._next >= len(self._frames):
            return None
        frame = self._frames[self._next]
        self._position = self._next / self._fps
        self._next += 1
        return frame

    def seek(self, frame_number: int) -> None:
        self._next = max(0, frame_number)

    @property
    def position_seconds(self) -> float:
        return self._position

    @property
    def fps(self) -> float:
        return self._fps

    def __len__(self) -> int:
        return len(self._frames)
