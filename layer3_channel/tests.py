"""
Tests for the vision runtime and the detection channel.
"""
import threading
import time

import numpy as np
import pytest

from error_handlers import FrameProcessingError, VisionInitError
from layer2_detection import DetectionResult, DetectionStatus, FrameDetector
from layer3_channel import DetectionChannel, VisionRuntime, get_runtime


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def tagged_frame(tag):
    return np.full((4, 4, 3), tag, dtype=np.uint8)


class EchoDetector:
    """Returns the frame tag as the result source."""

    def detect(self, frame):
        return DetectionResult(source=str(int(frame[0, 0, 0])))


class BlockingDetector(EchoDetector):
    """Holds each frame until released."""

    def __init__(self):
        self.started = threading.Event()
        self.release = threading.Event()

    def detect(self, frame):
        self.started.set()
        self.release.wait(5.0)
        return super().detect(frame)


class FailingDetector:
    def __init__(self, error):
        self.error = error

    def detect(self, frame):
        raise self.error


@pytest.fixture
def results():
    return []


def make_channel(detector, runtime, results):
    channel = DetectionChannel(detector=detector, runtime=runtime)
    channel.subscribe(results.append)
    return channel


class TestVisionRuntime:
    """Test one-time loading of the vision library."""

    def test_loads_opencv(self):
        """Test the runtime becomes ready."""
        runtime = VisionRuntime()
        assert not runtime.is_ready
        assert runtime.load(timeout=10)
        assert runtime.is_ready
        assert runtime.error is None
        assert runtime.version

    def test_load_async_is_idempotent(self):
        """Test repeated loads share one loader thread."""
        runtime = VisionRuntime()
        assert runtime.load_async() is runtime.load_async()
        assert runtime.wait_ready(10)

    def test_failed_load(self):
        """Test a missing library reports VisionInitError and stays not ready."""
        runtime = VisionRuntime(module_name='no_such_vision_module')
        assert runtime.load(timeout=10) is False
        assert not runtime.is_ready
        assert isinstance(runtime.error, VisionInitError)
        assert runtime.error.error_code == 'VISION_INIT_FAILED'

    def test_listener_after_completion(self):
        """Test late listeners are called immediately with the outcome."""
        runtime = VisionRuntime(module_name='no_such_vision_module')
        runtime.load(timeout=10)
        seen = []
        runtime.add_listener(seen.append)
        assert len(seen) == 1
        assert isinstance(seen[0], VisionInitError)

    def test_listener_before_completion(self):
        """Test listeners registered early are told about success."""
        runtime = VisionRuntime()
        seen = []
        runtime.add_listener(seen.append)
        runtime.load(timeout=10)
        assert wait_for(lambda: seen == [None])

    def test_shared_runtime(self):
        """Test the process-wide runtime is a singleton."""
        assert get_runtime() is get_runtime()


class TestDetectionChannel:
    """Test submit-or-drop detection on the worker thread."""

    def test_rejected_before_ready(self, results):
        """Test frames are refused until the vision library is loaded."""
        channel = make_channel(EchoDetector(), VisionRuntime(), results)
        channel.start()
        try:
            assert channel.submit(tagged_frame(1)) is False
            assert channel.stats['rejected'] == 1
        finally:
            channel.stop()
        assert results == []

    def test_rejected_when_not_started(self, ready_runtime, results):
        """Test frames are refused while the worker is not running."""
        channel = make_channel(EchoDetector(), ready_runtime, results)
        assert channel.submit(tagged_frame(1)) is False
        assert channel.stats['rejected'] == 1

    def test_single_frame(self, ready_runtime, results):
        """Test one accepted frame yields exactly one result."""
        channel = make_channel(EchoDetector(), ready_runtime, results)
        channel.start()
        try:
            assert channel.submit(tagged_frame(7)) is True
            assert wait_for(lambda: len(results) == 1)
        finally:
            channel.stop()
        assert results[0].source == '7'
        assert channel.stats['processed'] == 1

    def test_drops_while_busy(self, ready_runtime, results):
        """Test submissions during an in-flight detection are dropped."""
        detector = BlockingDetector()
        channel = make_channel(detector, ready_runtime, results)
        channel.start()
        try:
            assert channel.submit(tagged_frame(1)) is True
            assert detector.started.wait(5.0)
            assert channel.in_flight
            assert channel.submit(tagged_frame(2)) is False
            assert channel.submit(tagged_frame(3)) is False
            assert channel.stats['dropped'] == 2

            detector.release.set()
            assert wait_for(lambda: len(results) == 1 and not channel.in_flight)
            assert channel.submit(tagged_frame(4)) is True
            assert wait_for(lambda: len(results) == 2)
        finally:
            detector.release.set()
            channel.stop()
        assert [r.source for r in results] == ['1', '4']

    def test_results_in_submission_order(self, ready_runtime, results):
        """Test results come out in the order frames were accepted."""
        channel = make_channel(EchoDetector(), ready_runtime, results)
        channel.start()
        accepted = []
        try:
            for tag in range(1, 30):
                if channel.submit(tagged_frame(tag)):
                    accepted.append(str(tag))
                wait_for(lambda: not channel.in_flight, timeout=1.0)
            assert wait_for(lambda: len(results) == len(accepted))
        finally:
            channel.stop()
        assert [r.source for r in results] == accepted

    def test_processing_error(self, ready_runtime, results):
        """Test a failing frame publishes no result and frees the channel."""
        error = FrameProcessingError("bad frame")
        channel = make_channel(FailingDetector(error), ready_runtime, results)
        errors = []
        channel.on_error(lambda seq, err: errors.append((seq, err)))
        channel.start()
        try:
            assert channel.submit(tagged_frame(1)) is True
            assert wait_for(lambda: errors and not channel.in_flight)
        finally:
            channel.stop()
        assert results == []
        assert errors == [(1, error)]
        assert channel.stats['failed'] == 1

    def test_unexpected_error_is_wrapped(self, ready_runtime, results):
        """Test unexpected exceptions become FrameProcessingError."""
        channel = make_channel(FailingDetector(RuntimeError("boom")), ready_runtime, results)
        errors = []
        channel.on_error(lambda seq, err: errors.append(err))
        channel.start()
        try:
            channel.submit(tagged_frame(1))
            assert wait_for(lambda: errors and not channel.in_flight)
            assert channel.submit(tagged_frame(2)) is True
            assert wait_for(lambda: len(errors) == 2)
        finally:
            channel.stop()
        assert all(isinstance(e, FrameProcessingError) for e in errors)
        assert results == []

    def test_failing_subscriber_does_not_stop_worker(self, ready_runtime, results):
        """Test one broken subscriber does not starve the others."""
        channel = DetectionChannel(detector=EchoDetector(), runtime=ready_runtime)

        def broken(result):
            raise ValueError("subscriber bug")

        channel.subscribe(broken)
        channel.subscribe(results.append)
        channel.start()
        try:
            channel.submit(tagged_frame(5))
            assert wait_for(lambda: len(results) == 1)
        finally:
            channel.stop()

    def test_unsubscribe(self, ready_runtime, results):
        """Test unsubscribed callbacks stop receiving results."""
        channel = make_channel(EchoDetector(), ready_runtime, results)
        channel.unsubscribe(results.append)
        channel.start()
        try:
            channel.submit(tagged_frame(1))
            assert wait_for(lambda: channel.stats['processed'] == 1)
        finally:
            channel.stop()
        assert results == []

    def test_stop(self, ready_runtime, results):
        """Test a stopped channel refuses frames."""
        channel = make_channel(EchoDetector(), ready_runtime, results)
        channel.start()
        channel.stop()
        assert not channel.is_running
        assert channel.submit(tagged_frame(1)) is False
        assert channel.stats['rejected'] == 1
        assert not channel.in_flight
        assert channel._slot.empty()

    def test_submit_racing_stop_leaves_no_frame(self, ready_runtime, results):
        """Test frames submitted while stopping never strand the in-flight flag."""
        channel = make_channel(EchoDetector(), ready_runtime, results)
        channel.start()
        done = threading.Event()

        def feed():
            tag = 0
            while not done.is_set():
                tag = (tag + 1) % 250
                channel.submit(tagged_frame(tag))

        feeder = threading.Thread(target=feed, daemon=True)
        feeder.start()
        time.sleep(0.05)
        channel.stop()
        time.sleep(0.05)
        done.set()
        feeder.join(5.0)

        assert not channel.in_flight
        assert channel._slot.empty()
        assert channel.stats['rejected'] > 0

    def test_real_detector(self, ready_runtime, results, card_frame):
        """Test the channel with the OpenCV detector."""
        channel = make_channel(FrameDetector(), ready_runtime, results)
        channel.start()
        try:
            assert channel.submit(card_frame) is True
            assert wait_for(lambda: len(results) == 1)
        finally:
            channel.stop()
        assert results[0].status == DetectionStatus.CENTERED
