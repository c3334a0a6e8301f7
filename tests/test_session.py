"""
AnnotationSession and RenderLoop scenarios.

Frames are served from memory by ArrayFrameSource so the whole tick
(capture → estimate → update) runs without a video file.
"""

import threading

import numpy as np
import pytest

from synthetic_frames import make_textured_frame, translate
from trackline.config import TrackingConfig
from trackline.errors import FrameFormatError
from trackline.homography import HomographySource
from trackline.readiness import ReadinessSignal, ReadinessState
from trackline.overlay import OverlayRenderer
from trackline.render_loop import RenderLoop
from trackline.session import AnnotationSession, SessionMode
from trackline.video_pipeline import ArrayFrameSource, frame_index_at


LINE = [(100.0, 400.0), (300.0, 350.0), (500.0, 380.0)]


def test_frame_index_from_playback_time():
    assert frame_index_at(0.0, 30.0) == 0
    assert frame_index_at(1.0, 30.0) == 30
    assert frame_index_at(0.999, 30.0) == 29
    assert frame_index_at(0.1, 30.0) == 3
    with pytest.raises(ValueError):
        frame_index_at(1.0, 0.0)


def test_object_ids_are_unique_and_monotonic():
    session = AnnotationSession()
    a = session.add_object(100, 100)
    b = session.add_object_box((200, 200, 40, 30), label="car")
    assert (a.id, b.id) == (1, 2)
    assert a.bbox == (70.0, 70.0, 60.0, 60.0)
    assert b.center == (220.0, 215.0)
    assert b.display_label == "car" and a.display_label == "Object 1"

    session.remove_object(1)
    c = session.add_object(50, 50)
    assert c.id == 3

    with pytest.raises(ValueError):
        session.add_object(10, 10, object_id=2)
    with pytest.raises(ValueError):
        session.add_object_box((0, 0, 0, 10))


def test_object_at_prefers_topmost():
    session = AnnotationSession()
    session.add_object(100, 100)
    top = session.add_object(110, 110)
    assert session.object_at((105, 105)) == top
    assert session.object_at((500, 500)) is None


def test_lock_requires_points_and_valid_start():
    session = AnnotationSession()
    frame = make_textured_frame()
    with pytest.raises(ValueError):
        session.lock_track_line(0, frame, [])
    with pytest.raises(ValueError):
        session.lock_track_line(0, frame, LINE, start_index=3)

    session.lock_track_line(0, frame, LINE, start_index=1)
    assert session.mode == SessionMode.LOCKED
    assert session.start_index == 1


def test_failed_relock_keeps_previous_lock():
    """
    Scenario: line locked on frame 0, then a relock arrives with a float buffer
    Assertions:
    - FrameFormatError reaches the caller
    - old line, start index and reference survive
    - the next frame is still motion compensated
    """
    reference = make_textured_frame()
    session = AnnotationSession()
    session.lock_track_line(0, reference, LINE, start_index=2)

    new_line = [(10.0, 10.0), (20.0, 20.0)]
    with pytest.raises(FrameFormatError):
        session.lock_track_line(5, reference.astype(np.float32), new_line, start_index=0)

    assert session.track_line == LINE
    assert session.start_index == 2
    assert session.estimator.reference_frame_index == 0

    result = session.process_frame(1, translate(reference, 6.0, 0.0))
    assert result.homography_source == HomographySource.FITTED
    assert abs(result.track_line[0][0] - (LINE[0][0] + 6.0)) < 1.5


def test_rejected_start_index_keeps_previous_lock():
    reference = make_textured_frame()
    session = AnnotationSession()
    session.lock_track_line(0, reference, LINE, start_index=1)

    with pytest.raises(ValueError):
        session.lock_track_line(3, reference, [(1.0, 1.0)], start_index=4)

    assert session.track_line == LINE
    assert session.start_index == 1
    assert session.estimator.reference_frame_index == 0


def test_lock_waits_for_backend_readiness():
    """
    Scenario: backend loader finishes shortly after the lock is requested
    Assertions:
    - the lock blocks until READY, then extracts reference features
    """
    release = threading.Event()
    readiness = ReadinessSignal("late-backend").start(lambda: release.wait(5.0))
    session = AnnotationSession(config=TrackingConfig(readiness_timeout=5.0), readiness=readiness)

    timer = threading.Timer(0.05, release.set)
    timer.start()
    count = session.lock_track_line(0, make_textured_frame(), LINE)
    timer.join()

    assert readiness.state == ReadinessState.READY
    assert count > 0


def test_lock_gives_up_after_readiness_timeout():
    """
    Scenario: backend never loads; readiness_timeout is 50ms
    Assertions:
    - the lock returns after the deadline with no features
    - the signal is FAILED and frames resolve to identity
    """
    readiness = ReadinessSignal("dead-backend")
    session = AnnotationSession(config=TrackingConfig(readiness_timeout=0.05), readiness=readiness)

    assert session.lock_track_line(0, make_textured_frame(), LINE) == 0
    assert readiness.state == ReadinessState.FAILED

    result = session.process_frame(1, make_textured_frame())
    assert result.homography_source == HomographySource.IDENTITY
    assert result.track_line == LINE


def test_unlocked_session_passes_line_through():
    session = AnnotationSession()
    result = session.process_frame(0, make_textured_frame())
    assert result.track_line == []
    assert result.homography_source is None
    assert not result.skipped


def test_render_loop_follows_camera_pan():
    """
    Scenario: 5 frames, camera pans 4px right per frame, one object marked
    Assertions:
    - frame indices come from playback time
    - frame 0 is identity, the rest are fitted
    - the line and the object move with the scene
    """
    reference = make_textured_frame()
    frames = [translate(reference, 4.0 * i, 0.0) for i in range(5)]

    session = AnnotationSession()
    session.lock_track_line(0, reference, LINE, start_index=0)
    session.add_object(320, 240)
    assert session.start_tracking(reference) == 1
    assert session.mode == SessionMode.TRACKING

    results = []
    loop = RenderLoop(session, ArrayFrameSource(frames, fps=30.0))
    ticks = loop.run(on_frame=lambda frame, result: results.append(result))

    assert ticks == 5
    assert [r.frame_index for r in results] == [0, 1, 2, 3, 4]
    assert results[0].homography_source == HomographySource.IDENTITY
    assert all(r.homography_source == HomographySource.FITTED for r in results[1:])

    last = results[-1]
    assert len(last.track_line) == len(LINE)
    assert abs(last.track_line[0][0] - (LINE[0][0] + 16.0)) < 1.5
    assert abs(last.objects[0].center[0] - 336.0) <= 1.0
    assert abs(last.objects[0].center[1] - 240.0) <= 1.0
    assert last.start_index == 0


def test_malformed_frame_skips_tick():
    """
    Scenario: one frame in the stream is a float buffer
    Assertions:
    - that tick is skipped, previous line and objects re-emitted
    - the loop keeps going
    """
    reference = make_textured_frame()
    frames = [
        reference,
        translate(reference, 5.0, 0.0),
        np.zeros((480, 640, 3), dtype=np.float32),
        translate(reference, 10.0, 0.0),
    ]

    session = AnnotationSession()
    session.lock_track_line(0, reference, LINE)
    session.add_object(320, 240)
    session.start_tracking(reference)

    loop = RenderLoop(session, ArrayFrameSource(frames))
    results = []
    loop.run(on_frame=lambda frame, result: results.append(result))

    assert len(results) == 4
    assert results[2].skipped and results[2].error
    assert results[2].track_line == results[1].track_line
    assert results[2].objects == results[1].objects
    assert not results[3].skipped
    assert loop.skipped_count == 1


def test_callback_can_stop_loop():
    reference = make_textured_frame()
    session = AnnotationSession()
    loop = RenderLoop(session, ArrayFrameSource([reference] * 10))
    ticks = loop.run(on_frame=lambda frame, result: result.frame_index < 2)
    assert ticks == 3
    assert not loop.is_running

    assert loop.run(max_ticks=2) == 2
    assert loop.tick_count == 5


def test_overlay_draws_on_frame():
    reference = make_textured_frame()
    session = AnnotationSession()
    session.lock_track_line(0, reference, LINE, start_index=0)
    session.add_object(320, 240)
    session.start_tracking(reference)
    result = session.process_frame(0, reference)

    canvas = np.zeros_like(reference)
    OverlayRenderer().render_scene(canvas, result, tick_ms=3.2)
    assert canvas.any()


def test_reset_clears_everything():
    reference = make_textured_frame()
    session = AnnotationSession()
    session.lock_track_line(0, reference, LINE)
    session.add_object(320, 240)
    session.start_tracking(reference)
    session.reset()

    assert session.mode == SessionMode.NORMAL
    assert session.objects == [] and session.track_line == []
    assert session.add_object(1, 1).id == 1
    assert session.estimator.cached_frames == []
