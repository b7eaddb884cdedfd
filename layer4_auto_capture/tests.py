"""
Tests for stability tracking and the capture/review session.
"""
import time

import pytest

from error_handlers import NoCaptureError
from layer1_capture import StillFrameSource
from layer2_detection import BoundingBox, DetectionResult, DetectionStatus, DocumentType
from layer3_channel import DetectionChannel
from layer4_auto_capture import (
    CaptureConfig,
    CaptureResult,
    CaptureSession,
    StabilityController,
    StabilityState,
)

BOX = BoundingBox(100, 140, 360, 227, corners=((100, 140), (459, 140), (459, 366), (100, 366)))
CENTERED = DetectionResult(status=DetectionStatus.CENTERED, document_type=DocumentType.ID_CARD, box=BOX)
DETECTED = DetectionResult(status=DetectionStatus.DETECTED, document_type=DocumentType.ID_CARD, box=BOX)
SEARCHING = DetectionResult.searching()


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class TestStabilityController:
    """Test the stable-frame state machine."""

    def test_starts_idle(self):
        """Test initial state."""
        controller = StabilityController()
        assert controller.state == StabilityState.IDLE
        assert controller.count == 0
        assert controller.progress == 0.0

    def test_eleven_centered_capture_once(self):
        """Test 11 centered results trigger exactly one capture."""
        fired = []
        controller = StabilityController(on_capture=fired.append)
        triggers = [controller.update(CENTERED) for _ in range(11)]
        assert triggers.index(True) == 9
        assert triggers.count(True) == 1
        assert fired == [CENTERED]
        assert controller.captures == 1
        assert controller.state == StabilityState.TRIGGERED

    def test_interrupted_streak_restarts(self):
        """Test a non-centered result restarts the count."""
        controller = StabilityController()
        for _ in range(9):
            assert controller.update(CENTERED) is False
        assert controller.state == StabilityState.ACCUMULATING
        assert controller.update(DETECTED) is False
        assert controller.count == 0
        assert controller.state == StabilityState.IDLE

        triggers = [controller.update(CENTERED) for _ in range(10)]
        assert triggers == [False] * 9 + [True]
        assert controller.captures == 1

    def test_searching_resets(self):
        """Test losing the document resets the count."""
        controller = StabilityController()
        controller.update(CENTERED)
        controller.update(CENTERED)
        controller.update(SEARCHING)
        assert controller.count == 0

    def test_ignores_results_after_trigger(self):
        """Test further results are ignored until reset."""
        controller = StabilityController(required_frames=2)
        controller.update(CENTERED)
        controller.update(CENTERED)
        assert controller.update(SEARCHING) is False
        assert controller.state == StabilityState.TRIGGERED
        assert controller.count == 2

    def test_reset_allows_new_capture(self):
        """Test retake resets and a fresh streak captures again."""
        fired = []
        controller = StabilityController(required_frames=3, on_capture=fired.append)
        for _ in range(3):
            controller.update(CENTERED)
        controller.reset()
        assert controller.state == StabilityState.IDLE
        assert controller.count == 0
        for _ in range(3):
            controller.update(CENTERED)
        assert len(fired) == 2

    def test_progress(self):
        """Test progress toward the required streak."""
        controller = StabilityController(required_frames=4)
        controller.update(CENTERED)
        assert controller.progress == pytest.approx(0.25)
        for _ in range(3):
            controller.update(CENTERED)
        assert controller.progress == 1.0

    def test_to_dict(self):
        """Test status serialization."""
        controller = StabilityController(required_frames=5)
        controller.update(CENTERED)
        data = controller.to_dict()
        assert data['state'] == 'accumulating'
        assert data['stable_count'] == 1
        assert data['stable_required'] == 5

    def test_invalid_required_frames(self):
        """Test required frames must be positive."""
        with pytest.raises(ValueError):
            StabilityController(required_frames=0)


class TestCaptureResult:
    """Test capture serialization."""

    def test_to_dict(self, card_frame):
        """Test size and corners are reported, not pixels."""
        capture = CaptureResult(
            success=True,
            image=card_frame,
            document_type=DocumentType.ID_CARD,
            corners=[(100.04, 140.0), (459.0, 140.0), (459.0, 366.0), (100.0, 366.0)],
            timestamp="20240101_120000",
        )
        data = capture.to_dict()
        assert data['size'] == [640, 480]
        assert data['documentType'] == 'ID Card'
        assert data['corners'][0] == [100.0, 140.0]
        assert 'image' not in data


@pytest.fixture
def session_factory(ready_runtime):
    sessions = []

    def factory(frames, **config):
        defaults = dict(frame_interval_s=0.005, detection_interval_s=0.0, required_stable_frames=3)
        defaults.update(config)
        session = CaptureSession(
            StillFrameSource(frames),
            channel=DetectionChannel(runtime=ready_runtime),
            config=CaptureConfig(**defaults),
        )
        sessions.append(session)
        return session

    yield factory
    for session in sessions:
        session.stop()


class TestCaptureSession:
    """Test the capture and review flow."""

    def test_step_submits_downsampled_frame(self, session_factory, card_frame):
        """Test one step reads a frame and submits it."""
        session = session_factory([card_frame])
        session.camera.initialize()
        session.channel.start()
        assert session.step(now=100.0) is True
        assert session.frames_read == 1
        assert wait_for(lambda: session.latest_result is not None)
        assert session.latest_result.status == DetectionStatus.CENTERED
        # Detection ran on the half-size frame
        assert session.latest_result.box.x == pytest.approx(50, abs=2)

    def test_detection_cadence(self, session_factory, card_frame):
        """Test frames are only submitted once per detection interval."""
        session = session_factory([card_frame], detection_interval_s=0.2)
        session.camera.initialize()
        session.channel.start()
        assert session.step(now=100.0) is True
        assert session.step(now=100.1) is False
        assert wait_for(lambda: not session.channel.in_flight)
        assert session.step(now=100.25) is True
        assert session.frames_read == 3

    def test_failed_read_is_skipped(self, session_factory, card_frame):
        """Test a failed frame read is counted and skipped."""
        session = session_factory([None, card_frame])
        session.camera.initialize()
        session.channel.start()
        assert session.step(now=100.0) is False
        assert session.read_failures == 1
        assert session.step(now=101.0) is True

    def test_auto_capture(self, session_factory, card_frame):
        """Test a steady centered card is captured at full resolution."""
        session = session_factory([card_frame])
        captured = []
        session.on_capture(captured.append)
        session.start()
        assert wait_for(lambda: session.review is not None)

        capture = session.review
        assert capture.success
        assert capture.document_type == DocumentType.ID_CARD
        assert capture.image.shape == card_frame.shape
        assert capture.corners[0] == pytest.approx((100, 140), abs=4)
        assert capture.corners[2] == pytest.approx((459, 366), abs=4)
        assert captured == [capture]

    def test_no_detection_while_reviewing(self, session_factory, card_frame):
        """Test frames are not submitted while a capture awaits review."""
        session = session_factory([card_frame])
        session.start()
        assert wait_for(lambda: session.review is not None)
        time.sleep(0.05)
        submitted = session.channel.stats['submitted']
        time.sleep(0.1)
        assert session.channel.stats['submitted'] == submitted
        assert session.stability.state == StabilityState.TRIGGERED

    def test_retake(self, session_factory, card_frame):
        """Test retake discards the capture and captures again."""
        session = session_factory([card_frame])
        session.start()
        assert wait_for(lambda: session.review is not None)
        first = session.review

        session.retake()
        assert wait_for(lambda: session.review is not None and session.review is not first)
        assert session.stability.captures == 2

    def test_confirm(self, session_factory, card_frame):
        """Test confirm returns the capture and clears the review."""
        session = session_factory([card_frame])
        session.start()
        assert wait_for(lambda: session.review is not None)
        session.stop()

        capture = session.confirm()
        assert capture.metadata['confirmed'] is True
        assert session.review is None
        with pytest.raises(NoCaptureError):
            session.confirm()

    def test_confirm_without_capture(self, session_factory, card_frame):
        """Test confirm with nothing captured raises NoCaptureError."""
        session = session_factory([card_frame])
        with pytest.raises(NoCaptureError):
            session.confirm()

    def test_off_center_never_captures(self, session_factory, off_center_frame):
        """Test a detected but uncentered card is not captured."""
        session = session_factory([off_center_frame])
        session.start()
        assert wait_for(lambda: session.channel.stats['processed'] >= 5)
        assert session.review is None
        assert session.latest_result.status == DetectionStatus.DETECTED

    def test_preview_and_snapshot(self, session_factory, card_frame):
        """Test preview frames and status snapshot."""
        session = session_factory([card_frame])
        assert session.preview_frame() is None
        session.start()
        assert wait_for(lambda: session.latest_result is not None)

        preview = session.preview_frame()
        assert preview.shape == card_frame.shape
        snapshot = session.snapshot()
        assert snapshot['running'] is True
        assert snapshot['vision_ready'] is True
        assert 'stability' in snapshot
