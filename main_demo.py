#!/usr/bin/env python3
"""
TrackLine - Proof of Concept Demo

Plays a moving-camera video and keeps annotations in place:
1. Seeks to the reference frame and locks the track line there
2. Seeds object boxes (explicit boxes or clicks-as-points)
3. Every frame: re-estimates camera motion, re-projects the track line,
   re-localizes the objects, and draws the overlay

Usage:
    python main_demo.py race.mp4 --line "100,400;300,350;500,380" --point 320,240
    python main_demo.py race.mp4 --line "..." --box 290,210,60,60 --output out.mp4 --no-display

Controls (display window):
    SPACE   Pause/resume
    Q/ESC   Quit
"""

import sys
import logging
import argparse
from pathlib import Path
from typing import List, Optional, Tuple

import cv2  # pyright: ignore[reportMissingImports]

sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from trackline import (
    AnnotationSession,
    OverlayRenderer,
    RenderLoop,
    TrackingConfig,
    VideoFileSource,
    frame_index_at,
)


class TrackLineDemo:
    """Runs one annotation session over a video file."""

    WINDOW_NAME = "TrackLine Demo"

    def __init__(
            self,
            source: str,
            track_line: List[Tuple[float, float]],
            points: List[Tuple[float, float]],
            boxes: List[Tuple[float, float, float, float]],
            config: TrackingConfig,
            reference_frame: int = 0,
            start_index: Optional[int] = None,
            fps: Optional[float] = None,
            output: Optional[str] = None,
            display: bool = True
    ):
        self.source = source
        self.track_line = track_line
        self.points = points
        self.boxes = boxes
        self.config = config
        self.reference_frame = reference_frame
        self.start_index = start_index
        self.output = output
        self.display = display

        self.session = AnnotationSession(config)
        self.renderer = OverlayRenderer()
        self.video = VideoFileSource(source, fps_override=fps)
        self._writer = None
        self._paused = False

        self.logger = logging.getLogger("TrackLineDemo")

    def _setup(self) -> bool:
        if not self.video.open():
            return False

        self.video.seek(self.reference_frame)
        frame = self.video.capture()
        if frame is None:
            self.logger.error(f"Cannot read reference frame {self.reference_frame}")
            return False

        frame_index = frame_index_at(self.video.position_seconds, self.video.fps)
        if self.track_line:
            self.session.lock_track_line(frame_index, frame, self.track_line, self.start_index)
        for x, y in self.points:
            self.session.add_object(x, y)
        for bbox in self.boxes:
            self.session.add_object_box(bbox)
        if self.session.objects:
            self.session.start_tracking(frame)

        # Replay from the reference frame so it is processed too
        self.video.seek(self.reference_frame)

        if self.output:
            w, h = frame.shape[1], frame.shape[0]
            fourcc = cv2.VideoWriter_fourcc(*"mp4v")
            self._writer = cv2.VideoWriter(self.output, fourcc, self.video.fps, (w, h))
        return True

    def _on_frame(self, frame, result) -> bool:
        output = self.renderer.render_scene(frame.copy(), result, tick_ms=self._loop.last_tick_ms)

        if self._writer is not None:
            self._writer.write(output)

        if not self.display:
            return True

        cv2.imshow(self.WINDOW_NAME, output)
        while True:
            key = cv2.waitKey(50 if self._paused else 1) & 0xFF
            if key in (ord('q'), 27):
                return False
            if key == ord(' '):
                self._paused = not self._paused
            if not self._paused:
                return True

    def run(self) -> int:
        if not self._setup():
            return 1

        self._loop = RenderLoop(self.session, self.video, fps=self.video.fps)
        try:
            ticks = self._loop.run(on_frame=self._on_frame)
            self.logger.info(f"Processed {ticks} frames ({self._loop.skipped_count} skipped)")
        except KeyboardInterrupt:
            self.logger.info("Interrupted by user")
        finally:
            self._loop.stop()
            self.video.close()
            if self._writer is not None:
                self._writer.release()
            if self.display:
                cv2.destroyAllWindows()
            self.logger.info("Demo stopped.")
        return 0


def parse_points(text: str) -> List[Tuple[float, float]]:
    """'x,y;x,y;...' → [(x, y), ...]"""
    points = []
    for chunk in text.split(";"):
        chunk = chunk.strip()
        if not chunk:
            continue
        x, y = chunk.split(",")
        points.append((float(x), float(y)))
    return points


def parse_box(text: str) -> Tuple[float, float, float, float]:
    x, y, w, h = (float(v) for v in text.split(","))
    return (x, y, w, h)


def parse_point(text: str) -> Tuple[float, float]:
    x, y = (float(v) for v in text.split(","))
    return (x, y)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="TrackLine motion-compensated annotation demo",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Tuning knobs can also be set with TRACKLINE_* environment variables
(or a .env file), e.g.:
    TRACKLINE_MATCH_DISTANCE=40
    TRACKLINE_CONFIDENCE_THRESHOLD=0.75

Examples:
  python main_demo.py race.mp4 --line "100,400;300,350;500,380" --start 0
  python main_demo.py race.mp4 --line "100,400;500,380" --point 320,240 --point 400,260
  python main_demo.py race.mp4 --box 290,210,60,60 --output tracked.mp4 --no-display
        """
    )

    parser.add_argument("source", help="Video file path")
    parser.add_argument(
        "--line", "-l",
        type=parse_points,
        default=[],
        help="Track line as 'x,y;x,y;...' in reference frame pixels"
    )
    parser.add_argument(
        "--start",
        type=int,
        default=None,
        help="Index of the start/finish vertex on the track line"
    )
    parser.add_argument(
        "--point", "-p",
        type=parse_point,
        action="append",
        default=[],
        help="Object seed click 'x,y' (default-size box), repeatable"
    )
    parser.add_argument(
        "--box", "-b",
        type=parse_box,
        action="append",
        default=[],
        help="Object seed box 'x,y,w,h', repeatable"
    )
    parser.add_argument(
        "--reference-frame", "-r",
        type=int,
        default=0,
        help="Frame index the annotations were drawn on"
    )
    parser.add_argument(
        "--fps",
        type=float,
        default=None,
        help="Frame rate used to derive frame indices (default: the video's own)"
    )
    parser.add_argument(
        "--output", "-o",
        default=None,
        help="Write the annotated video to this path"
    )
    parser.add_argument(
        "--no-display",
        action="store_true",
        help="Do not open a preview window"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level"
    )

    args = parser.parse_args()

    # Setup logging
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    overrides = {"fps": args.fps} if args.fps else {}
    config = TrackingConfig.from_env(**overrides)

    if not args.line and not args.point and not args.box:
        parser.error("nothing to track: give --line, --point or --box")

    print("\n" + "=" * 60)
    print("  TrackLine - Motion-Compensated Annotation")
    print("=" * 60)
    print(f"  Source: {args.source}")
    print(f"  Reference frame: {args.reference_frame}")
    print(f"  Track line points: {len(args.line)}")
    print(f"  Objects: {len(args.point) + len(args.box)}")
    print("=" * 60 + "\n")

    demo = TrackLineDemo(
        source=args.source,
        track_line=args.line,
        points=args.point,
        boxes=args.box,
        config=config,
        reference_frame=args.reference_frame,
        start_index=args.start,
        fps=args.fps,
        output=args.output,
        display=not args.no_display
    )
    return demo.run()


if __name__ == "__main__":
    sys.exit(main())
