"""
TrackLine - Motion-Compensated Track Line & Object Re-localization

Frame-accurate annotation of moving-camera video:
- Draw a track line on one paused frame; it stays glued to the scene as
  the camera moves (ORB features + RANSAC homography per frame)
- Mark objects with boxes; each is re-found every frame by template
  matching in a small window around its last position
- Degrades gracefully: weak or missing correspondence falls back to the
  last good estimate instead of crashing or freezing the render loop

Quick Start:
    from trackline import AnnotationSession, RenderLoop, VideoFileSource, OverlayRenderer

    session = AnnotationSession()
    video = VideoFileSource("race.mp4")
    frame0 = video.capture()

    session.lock_track_line(0, frame0, [(100, 400), (300, 350), (500, 380)])
    session.add_object(320, 240)
    session.start_tracking(frame0)

    renderer = OverlayRenderer()
    loop = RenderLoop(session, video)
    loop.run(on_frame=lambda frame, result: renderer.render_scene(frame, result))
"""

__version__ = "1.0.0"

# Geometry
from .geometry import (
    Point2D,
    BBox,
    identity_homography,
    invert_homography,
    apply_homography,
    is_well_formed,
)

# Configuration & errors
from .config import TrackingConfig, DEFAULT_CONFIG
from .errors import (
    TrackLineError,
    FrameFormatError,
    ConfigError,
    BackendNotReadyError,
    FallbackReason,
)

# Engines
from .features import FeatureSet, VisionBackend, OpenCVBackend, to_grayscale
from .readiness import ReadinessSignal, ReadinessState
from .homography import SceneMotionEstimator, HomographySource
from .template_tracker import LocalTracker, TrackedObject

# Session & loop
from .session import AnnotationSession, SessionMode, FrameResult
from .video_pipeline import (
    FrameSource,
    VideoFileSource,
    ArrayFrameSource,
    FrameMetadata,
    frame_index_at,
)
from .render_loop import RenderLoop
from .overlay import OverlayRenderer, ColorScheme

__all__ = [
    # Version
    "__version__",

    # Geometry
    "Point2D",
    "BBox",
    "identity_homography",
    "invert_homography",
    "apply_homography",
    "is_well_formed",

    # Config & errors
    "TrackingConfig",
    "DEFAULT_CONFIG",
    "TrackLineError",
    "FrameFormatError",
    "ConfigError",
    "BackendNotReadyError",
    "FallbackReason",

    # Engines
    "FeatureSet",
    "VisionBackend",
    "OpenCVBackend",
    "to_grayscale",
    "ReadinessSignal",
    "ReadinessState",
    "SceneMotionEstimator",
    "HomographySource",
    "LocalTracker",
    "TrackedObject",

    # Session & loop
    "AnnotationSession",
    "SessionMode",
    "FrameResult",
    "FrameSource",
    "VideoFileSource",
    "ArrayFrameSource",
    "FrameMetadata",
    "frame_index_at",
    "RenderLoop",

    # Rendering
    "OverlayRenderer",
    "ColorScheme",
]
