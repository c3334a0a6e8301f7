"""
LocalTracker scenarios.

White-noise frames make every patch unique, so the best NCC offset is
known exactly when the frame is shifted with np.roll.
"""

import numpy as np
import pytest

from synthetic_frames import noise_gray
from trackline.config import TrackingConfig
from trackline.errors import FallbackReason, FrameFormatError
from trackline.features import OpenCVBackend
from trackline.template_tracker import LocalTracker, TrackedObject


def _object(object_id=1, x=40.0, y=40.0, w=10.0, h=10.0):
    return TrackedObject(id=object_id, center=(x + w / 2, y + h / 2), bbox=(x, y, w, h))


class FixedScoreBackend(OpenCVBackend):
    """Template matcher that always reports the same score at (0, 0)."""

    def __init__(self, score):
        super().__init__()
        self.score = score

    def match_template(self, search, template):
        return self.score, (0, 0)


class ExplodingBackend(OpenCVBackend):
    """Template matcher that fails for one object's template size."""

    def __init__(self, bad_width):
        super().__init__()
        self.bad_width = bad_width

    def match_template(self, search, template):
        if template.shape[1] == self.bad_width:
            raise RuntimeError("matcher crashed")
        return super().match_template(search, template)


def test_object_follows_three_pixel_shift():
    """
    Scenario: 10x10 object at (40, 40); the next frame moves everything +3, +3
    Assertions:
    - new center is exactly (48, 48), box is (43, 43, 10, 10)
    - id and label are untouched
    """
    frame0 = noise_gray()
    frame1 = np.roll(frame0, shift=(3, 3), axis=(0, 1))
    obj = TrackedObject(id=7, center=(45.0, 45.0), bbox=(40.0, 40.0, 10.0, 10.0), label="kart")

    tracker = LocalTracker()
    assert tracker.initialize_templates(frame0, [obj]) == 1

    (moved,) = tracker.update_tracked_positions(frame1, [obj])
    print(f"  center {obj.center} → {moved.center}, score {tracker.last_score(7):.3f}")
    assert moved.center == (48.0, 48.0)
    assert moved.bbox == (43.0, 43.0, 10.0, 10.0)
    assert moved.id == 7 and moved.label == "kart"
    assert tracker.last_outcome(7) is None


def test_static_frame_keeps_position():
    frame = noise_gray()
    obj = _object()
    tracker = LocalTracker()
    tracker.initialize_templates(frame, [obj])
    (same,) = tracker.update_tracked_positions(frame, [obj])
    assert same.center == obj.center
    assert same.bbox == obj.bbox


def test_low_confidence_keeps_previous_state():
    """
    Scenario: best score is 0.69, just below the 0.7 threshold
    Assertions:
    - the very same object instance comes back
    - outcome is LOW_CONFIDENCE_MATCH
    """
    frame = noise_gray()
    obj = _object()
    tracker = LocalTracker(backend=FixedScoreBackend(0.69))
    tracker.initialize_templates(frame, [obj])

    (result,) = tracker.update_tracked_positions(frame, [obj])
    assert result is obj
    assert tracker.last_outcome(obj.id) == FallbackReason.LOW_CONFIDENCE_MATCH


def test_threshold_score_is_accepted():
    frame = noise_gray()
    obj = _object()
    tracker = LocalTracker(backend=FixedScoreBackend(0.7))
    tracker.initialize_templates(frame, [obj])

    (result,) = tracker.update_tracked_positions(frame, [obj])
    # Window of 20x20 starts at (35, 35); offset (0, 0) is its top-left
    assert result.bbox == (35.0, 35.0, 10.0, 10.0)
    assert result.center == (40.0, 40.0)


def test_nan_score_is_rejected():
    frame = noise_gray()
    obj = _object()
    tracker = LocalTracker(backend=FixedScoreBackend(float("nan")))
    tracker.initialize_templates(frame, [obj])
    (result,) = tracker.update_tracked_positions(frame, [obj])
    assert result is obj


def test_window_smaller_than_template_keeps_object():
    """
    Scenario: search multiplier 0.5 makes the window smaller than the template
    Assertions:
    - object unchanged, outcome WINDOW_TOO_SMALL
    """
    frame = noise_gray()
    obj = _object()
    tracker = LocalTracker(config=TrackingConfig(search_multiplier=0.5))
    tracker.initialize_templates(frame, [obj])

    (result,) = tracker.update_tracked_positions(frame, [obj])
    assert result is obj
    assert tracker.last_outcome(obj.id) == FallbackReason.WINDOW_TOO_SMALL


def test_search_window_clipped_to_frame():
    tracker = LocalTracker()
    assert tracker.search_window((5.0, 5.0), (10, 10), 100, 100) == (0, 0, 15, 15)
    assert tracker.search_window((95.0, 50.0), (10, 10), 100, 100) == (85, 40, 100, 60)
    assert tracker.search_window((50.0, 50.0), (10, 10), 100, 100) == (40, 40, 60, 60)


def test_object_near_edge_still_tracked():
    """
    Scenario: object hugging the left edge moves right by 2px
    Assertions:
    - clipped window still contains the match
    """
    frame0 = noise_gray()
    frame1 = np.roll(frame0, shift=2, axis=1)
    obj = _object(x=1.0, y=50.0)

    tracker = LocalTracker()
    tracker.initialize_templates(frame0, [obj])
    (moved,) = tracker.update_tracked_positions(frame1, [obj])
    assert moved.bbox == (3.0, 50.0, 10.0, 10.0)


def test_one_failure_does_not_abort_the_batch():
    """
    Scenario: matcher raises for the first object only
    Assertions:
    - output keeps length, ids and order
    - failed object passed through, second object updated
    """
    frame0 = noise_gray()
    frame1 = np.roll(frame0, shift=(3, 3), axis=(0, 1))
    bad = _object(object_id=1, x=10.0, y=10.0, w=12.0, h=12.0)
    good = _object(object_id=2, x=60.0, y=60.0)

    tracker = LocalTracker(backend=ExplodingBackend(bad_width=12))
    tracker.initialize_templates(frame0, [bad, good])
    result = tracker.update_tracked_positions(frame1, [bad, good])

    assert [o.id for o in result] == [1, 2]
    assert result[0] is bad
    assert tracker.last_outcome(1) == FallbackReason.INTERNAL_ERROR
    assert result[1].center == (68.0, 68.0)


def test_objects_without_template_pass_through():
    frame = noise_gray()
    tracked = _object(object_id=1)
    newcomer = _object(object_id=2, x=70.0, y=70.0)

    tracker = LocalTracker()
    tracker.initialize_templates(frame, [tracked])
    result = tracker.update_tracked_positions(frame, [tracked, newcomer])

    assert len(result) == 2
    assert result[1] is newcomer
    assert tracker.last_outcome(2) == FallbackReason.UNINITIALIZED_TEMPLATE


def test_no_templates_returns_input_unchanged():
    tracker = LocalTracker()
    objects = [_object(1), _object(2, x=70.0, y=70.0)]
    result = tracker.update_tracked_positions(noise_gray(), objects)
    assert result == objects
    assert result is not objects


def test_box_outside_frame_is_skipped():
    """
    Scenario: one box lies completely outside the frame
    Assertions:
    - only the valid object gets a template
    """
    frame = noise_gray()
    inside = _object(object_id=1)
    outside = _object(object_id=2, x=500.0, y=500.0)

    tracker = LocalTracker()
    assert tracker.initialize_templates(frame, [inside, outside]) == 1
    assert tracker.has_template(1)
    assert not tracker.has_template(2)


def test_partially_visible_box_is_clipped():
    frame = noise_gray()
    obj = _object(x=95.0, y=20.0, w=10.0, h=10.0)
    tracker = LocalTracker()
    tracker.initialize_templates(frame, [obj])
    assert tracker.template_shape(1) == (10, 5)


def test_reinitialize_releases_previous_templates():
    frame = noise_gray()
    tracker = LocalTracker()
    tracker.initialize_templates(frame, [_object(1), _object(2, x=70.0, y=70.0)])
    assert tracker.template_count == 2

    tracker.initialize_templates(frame, [_object(3, x=20.0, y=20.0)])
    assert tracker.template_count == 1
    assert not tracker.has_template(1)
    assert tracker.has_template(3)

    tracker.clear_templates()
    tracker.clear_templates()
    assert tracker.template_count == 0


def test_template_is_not_relearned():
    """
    Scenario: the scene drifts +3px per frame for three frames
    Assertions:
    - template stays the frame-0 patch; object follows the cumulative motion
    """
    frame0 = noise_gray()
    obj = _object()
    tracker = LocalTracker()
    tracker.initialize_templates(frame0, [obj])
    original = tracker._templates[obj.id].copy()

    objects = [obj]
    for step in range(1, 4):
        frame = np.roll(frame0, shift=(3 * step, 3 * step), axis=(0, 1))
        objects = tracker.update_tracked_positions(frame, objects)

    assert np.array_equal(tracker._templates[obj.id], original)
    assert objects[0].center == (54.0, 54.0)


def test_malformed_frame_raises():
    frame = noise_gray()
    obj = _object()
    tracker = LocalTracker()
    tracker.initialize_templates(frame, [obj])

    with pytest.raises(FrameFormatError):
        tracker.update_tracked_positions(frame.astype(np.float32), [obj])
