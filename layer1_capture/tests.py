"""
Tests for camera acquisition and frame sampling.
"""
import numpy as np
import pytest

from error_handlers import CameraError, CameraNotInitializedError, FrameCaptureError
from layer1_capture import CameraHandler, StillFrameSource, downsample


class TestDownsample:
    """Test frame downsampling before detection."""

    def test_half_scale(self, card_frame):
        """Test a 0.5 scale halves both sides."""
        small = downsample(card_frame, 0.5)
        assert small.shape == (240, 320, 3)

    def test_full_scale_copies(self, card_frame):
        """Test scale 1.0 returns an independent copy."""
        copy = downsample(card_frame, 1.0)
        assert np.array_equal(copy, card_frame)
        copy[0, 0] = 0
        assert card_frame[0, 0, 0] == 30

    @pytest.mark.parametrize('scale', [0.0, -0.5, 1.5])
    def test_invalid_scale(self, card_frame, scale):
        """Test scales outside (0, 1] are rejected."""
        with pytest.raises(ValueError):
            downsample(card_frame, scale)


class TestStillFrameSource:
    """Test the replaying frame source."""

    def test_requires_initialize(self, card_frame):
        """Test reads before initialize fail."""
        source = StillFrameSource([card_frame])
        with pytest.raises(CameraNotInitializedError):
            source.get_frame()

    def test_loops(self, card_frame, blank_frame):
        """Test frames repeat in order."""
        source = StillFrameSource([card_frame, blank_frame])
        source.initialize()
        frames = [source.get_frame() for _ in range(4)]
        assert np.array_equal(frames[0], card_frame)
        assert np.array_equal(frames[1], blank_frame)
        assert np.array_equal(frames[2], card_frame)
        assert source.reads == 4

    def test_returns_copies(self, card_frame):
        """Test callers cannot mutate the stored frame."""
        source = StillFrameSource([card_frame])
        source.initialize()
        frame = source.get_frame()
        frame[:] = 0
        assert np.array_equal(source.get_frame(), card_frame)

    def test_failed_read(self, card_frame):
        """Test a None entry simulates a failed read."""
        source = StillFrameSource([None, card_frame])
        source.initialize()
        with pytest.raises(FrameCaptureError) as exc:
            source.get_frame()
        assert exc.value.error_code == 'FRAME_READ_FAILED'
        assert source.get_frame() is not None

    def test_no_loop_runs_out(self, card_frame):
        """Test a non-looping source fails once exhausted."""
        source = StillFrameSource([card_frame], loop=False)
        source.initialize()
        source.get_frame()
        with pytest.raises(FrameCaptureError):
            source.get_frame()

    def test_release(self, card_frame):
        """Test release closes the source."""
        source = StillFrameSource([card_frame])
        source.initialize()
        assert source.is_opened()
        source.release()
        assert not source.is_opened()


class TestCameraHandler:
    """Test camera handler without hardware."""

    def test_config_merge(self):
        """Test config overrides merge over defaults."""
        camera = CameraHandler(camera_index=3, config={'width': 1280})
        assert camera.config['width'] == 1280
        assert camera.config['codec'] == 'MJPG'

    def test_get_frame_before_initialize(self):
        """Test reading before initialize raises."""
        with pytest.raises(CameraNotInitializedError):
            CameraHandler().get_frame()

    def test_missing_device(self):
        """Test an absent device raises a camera error."""
        camera = CameraHandler(camera_index=99)
        with pytest.raises(CameraError):
            camera.initialize()
        assert not camera.is_opened()

    def test_release_without_initialize(self):
        """Test release is safe on an unopened camera."""
        camera = CameraHandler()
        camera.release()
        assert not camera.is_opened()
