"""Backend readiness signal: bounded waits and terminal failure."""

import threading

import pytest

import synthetic_frames  # noqa: F401
from trackline.errors import BackendNotReadyError
from trackline.readiness import ReadinessSignal, ReadinessState


def test_loader_success_marks_ready():
    signal = ReadinessSignal("ok").start(lambda: None)
    assert signal.wait(timeout=5.0)
    assert signal.state == ReadinessState.READY
    assert signal.failure_reason is None


def test_loader_exception_marks_failed():
    def loader():
        raise ImportError("no native runtime")

    signal = ReadinessSignal("broken").start(loader)
    assert not signal.wait(timeout=5.0)
    assert signal.state == ReadinessState.FAILED
    assert "no native runtime" in signal.failure_reason


def test_wait_deadline_is_terminal():
    """
    Scenario: backend still loading when the deadline passes
    Assertions:
    - wait returns False and the signal is FAILED
    - a late success does not revive it
    """
    release = threading.Event()
    signal = ReadinessSignal("slow").start(lambda: release.wait(5.0))

    assert not signal.wait(timeout=0.05)
    assert signal.state == ReadinessState.FAILED

    release.set()
    assert not signal.mark_ready()
    assert signal.state == ReadinessState.FAILED


def test_require_raises_when_not_ready():
    signal = ReadinessSignal("never")
    with pytest.raises(BackendNotReadyError):
        signal.require(timeout=0.01)


def test_ready_signal_is_ready_immediately():
    signal = ReadinessSignal.ready()
    assert signal.is_ready
    signal.require(timeout=0.0)
    assert not signal.mark_failed("too late")
    assert signal.is_ready
