"""
Layer 1 — Camera Handler
Low-level camera initialization and frame capture with OpenCV.
The handheld/kiosk camera is an external collaborator: this module only
exposes readiness, frame reads and release.
"""
import cv2
import logging
import os
import sys
from typing import Optional
import numpy as np

from error_handlers import (
    CameraInitError,
    CameraNotFoundError,
    CameraNotInitializedError,
    FrameCaptureError,
)

logger = logging.getLogger(__name__)


class CameraHandler:
    """
    USB camera handler. V4L2 backend on Linux, OpenCV default elsewhere.
    """

    # Default camera configuration
    DEFAULT_CONFIG = {
        'width': 1920,
        'height': 1080,
        'fps': 30,
        'codec': 'MJPG',
        'buffer_size': 1,  # Minimal buffer for low latency
    }

    def __init__(
        self,
        camera_index: int = 0,
        config: Optional[dict] = None
    ):
        """
        Initialize camera handler.

        Args:
            camera_index: Device index (e.g., 2 for /dev/video2)
            config: Optional configuration override
        """
        self.camera_index = camera_index
        self.config = {**self.DEFAULT_CONFIG, **(config or {})}
        self.camera: Optional[cv2.VideoCapture] = None
        self._is_initialized = False

        # Actual resolution (may differ from requested)
        self.actual_width = 0
        self.actual_height = 0
        self.actual_fps = 0.0

        logger.info(f"CameraHandler created for camera index {camera_index}")

    def _check_device_exists(self) -> bool:
        """Check if camera device file exists (Linux only)."""
        if not sys.platform.startswith('linux'):
            return True
        device_path = f"/dev/video{self.camera_index}"
        exists = os.path.exists(device_path)
        if not exists:
            logger.error(f"Camera device not found: {device_path}")
        return exists

    def initialize(self) -> bool:
        """
        Initialize and configure the camera.

        Returns:
            bool: True once the stream is available

        Raises:
            CameraNotFoundError: If camera device doesn't exist
            CameraInitError: If camera fails to initialize
        """
        if self._is_initialized and self.camera is not None:
            logger.debug("Camera already initialized")
            return True

        if not self._check_device_exists():
            raise CameraNotFoundError(self.camera_index)

        logger.info(f"Initializing camera {self.camera_index}")

        try:
            if sys.platform.startswith('linux'):
                self.camera = cv2.VideoCapture(self.camera_index, cv2.CAP_V4L2)
            else:
                self.camera = cv2.VideoCapture(self.camera_index)
        except cv2.error as e:
            logger.error(f"Camera initialization failed: {e}")
            raise CameraInitError(self.camera_index, reason=str(e)) from e

        if not self.camera.isOpened():
            self.camera.release()
            self.camera = None
            raise CameraInitError(
                self.camera_index,
                reason="Failed to open camera device"
            )

        self._configure_camera()

        # Read actual values
        self.actual_width = int(self.camera.get(cv2.CAP_PROP_FRAME_WIDTH))
        self.actual_height = int(self.camera.get(cv2.CAP_PROP_FRAME_HEIGHT))
        self.actual_fps = self.camera.get(cv2.CAP_PROP_FPS)

        self._is_initialized = True

        logger.info(f"Camera initialized: {self.actual_width}x{self.actual_height} @ {self.actual_fps}fps")
        return True

    def _configure_camera(self):
        """Apply camera configuration settings."""
        cfg = self.config

        # Set codec (MJPG for high FPS)
        fourcc = cv2.VideoWriter_fourcc(*cfg['codec'])
        self.camera.set(cv2.CAP_PROP_FOURCC, fourcc)

        self.camera.set(cv2.CAP_PROP_FRAME_WIDTH, cfg['width'])
        self.camera.set(cv2.CAP_PROP_FRAME_HEIGHT, cfg['height'])
        self.camera.set(cv2.CAP_PROP_FPS, cfg['fps'])
        self.camera.set(cv2.CAP_PROP_BUFFERSIZE, cfg['buffer_size'])

        logger.debug(f"Camera configured: {cfg['width']}x{cfg['height']} @ {cfg['fps']}fps")

    def get_frame(self) -> np.ndarray:
        """
        Capture a single frame from the camera.

        Returns:
            numpy.ndarray: Raw BGR frame

        Raises:
            CameraNotInitializedError: If camera not initialized
            FrameCaptureError: If pixel data could not be read
        """
        if not self._is_initialized or self.camera is None:
            raise CameraNotInitializedError()

        ret, frame = self.camera.read()

        if not ret or frame is None:
            raise FrameCaptureError(reason="read() returned no frame")

        return frame

    def is_opened(self) -> bool:
        """Check if camera is currently open and initialized."""
        return self._is_initialized and self.camera is not None and self.camera.isOpened()

    def release(self):
        """Release camera resources."""
        if self.camera is not None:
            self.camera.release()
            self.camera = None
        self._is_initialized = False
        logger.info("Camera released")

    def __enter__(self):
        """Context manager entry."""
        self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.release()
        return False
