"""
TrackLine Render Loop - Tick Driver

One tick = capture → motion estimate → object update → hand off to the
renderer. The next tick is requested only when the current one has
completed, so a slow tick simply delays the next one (natural
backpressure) and no two ticks ever overlap.

Usage:
    loop = RenderLoop(session, VideoFileSource("race.mp4"))
    loop.run(on_frame=lambda frame, result: renderer.render_scene(frame, result))
"""

import time
import logging
from typing import Callable, Optional

import numpy as np

from .session import AnnotationSession, FrameResult
from .video_pipeline import FrameSource, frame_index_at


FrameCallback = Callable[[np.ndarray, FrameResult], Optional[bool]]


class RenderLoop:
    """Synchronous per-frame driver for an AnnotationSession."""

    def __init__(
        self,
        session: AnnotationSession,
        source: FrameSource,
        fps: Optional[float] = None
    ):
        """
        Args:
            session: Engines + user inputs to drive
            source: Frame capture adapter
            fps: Frame rate used to derive frame indices
                (default: session config fps)
        """
        self.session = session
        self.source = source
        self.fps = fps or session.config.fps
        self.logger = logging.getLogger("RenderLoop")

        self._running = False
        self._tick_count = 0
        self._skipped_count = 0
        self._last_tick_ms = 0.0
        self._last_frame: Optional[np.ndarray] = None
        self._last_result: Optional[FrameResult] = None

    def tick(self) -> Optional[FrameResult]:
        """
        Process the next frame.

        Returns:
            FrameResult, or None when the source has no more frames
        """
        frame = self.source.capture()
        if frame is None:
            return None

        start = time.perf_counter()
        frame_index = frame_index_at(self.source.position_seconds, self.fps)
        result = self.session.process_frame(frame_index, frame)
        self._last_tick_ms = (time.perf_counter() - start) * 1000

        self._tick_count += 1
        if result.skipped:
            self._skipped_count += 1
        self._last_frame = frame
        self._last_result = result
        return result

    def run(self, on_frame: Optional[FrameCallback] = None, max_ticks: Optional[int] = None) -> int:
        """
        Tick until the source ends, stop() is called, max_ticks is reached
        or on_frame returns False.

        Returns:
            Number of ticks processed
        """
        self._running = True
        processed = 0
        self.logger.info("Render loop started")

        try:
            while self._running:
                if max_ticks is not None and processed >= max_ticks:
                    break

                result = self.tick()
                if result is None:
                    self.logger.info("Frame source exhausted")
                    break
                processed += 1

                if on_frame is not None and on_frame(self._last_frame, result) is False:
                    break
        finally:
            self._running = False
            self.logger.info(
                f"Render loop stopped after {processed} ticks ({self._skipped_count} skipped)"
            )
        return processed

    def stop(self) -> None:
        """Stop scheduling further ticks. The in-flight tick completes."""
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def skipped_count(self) -> int:
        return self._skipped_count

    @property
    def last_tick_ms(self) -> float:
        return self._last_tick_ms

    @property
    def last_result(self) -> Optional[FrameResult]:
        return self._last_result
