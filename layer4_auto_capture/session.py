"""
Layer 4 — Capture Session
Orchestrates acquisition, detection and stability tracking, and holds the
captured still for review.

Flow:
    camera frame -> downsample -> DetectionChannel (submit or drop)
    -> DetectionResult -> StabilityController -> capture trigger
    -> review (retake / confirm)
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from error_handlers import CameraNotInitializedError, FrameCaptureError, NoCaptureError, ScannerError
from layer1_capture import downsample
from layer2_detection import DetectionResult, DocumentType, draw_overlay
from layer2_detection.result import corners_list
from layer3_channel import DetectionChannel
from .stability import REQUIRED_STABLE_FRAMES, StabilityController

logger = logging.getLogger(__name__)


@dataclass
class CaptureConfig:
    """Configuration for the capture session."""
    # Acquisition pacing
    frame_interval_s: float = 1.0 / 30     # Preview/acquisition rate
    detection_interval_s: float = 0.2      # 5 detections per second

    # Frames are downscaled before detection for speed
    detection_scale: float = 0.5

    # Stability settings
    required_stable_frames: int = REQUIRED_STABLE_FRAMES

    # Review image encoding
    jpeg_quality: int = 90


@dataclass
class CaptureResult:
    """A captured still awaiting review."""
    success: bool
    image: Optional[np.ndarray] = None
    document_type: DocumentType = DocumentType.UNKNOWN
    corners: Optional[List[Tuple[float, float]]] = None
    timestamp: str = ""
    error: Optional[str] = None
    metadata: Dict = field(default_factory=dict)

    def to_dict(self) -> Dict:
        """Convert to dictionary for API response."""
        result = {
            'success': self.success,
            'documentType': self.document_type.value,
            'timestamp': self.timestamp,
            'error': self.error,
            'metadata': self.metadata
        }
        if self.image is not None:
            h, w = self.image.shape[:2]
            result['size'] = [w, h]
        if self.corners:
            result['corners'] = [[round(x, 1), round(y, 1)] for x, y in self.corners]
        return result


class CaptureSession:
    """
    Auto-capture session around one camera.

    Frames are read on an acquisition thread, detection runs on the channel
    worker, and the stability controller decides when to capture. The
    captured frame is the raw full-resolution frame, kept in memory only.
    """

    def __init__(
        self,
        camera,
        channel: Optional[DetectionChannel] = None,
        stability: Optional[StabilityController] = None,
        config: Optional[CaptureConfig] = None,
    ):
        """
        Initialize capture session.

        Args:
            camera: Frame source with initialize / get_frame / is_opened / release
            channel: Detection channel (created with defaults if not provided)
            stability: Stability controller (created from config if not provided)
            config: Session configuration (uses defaults if not provided)
        """
        self.config = config or CaptureConfig()
        self.camera = camera
        self.channel = channel or DetectionChannel()
        self.stability = stability or StabilityController(self.config.required_stable_frames)
        self.stability.on_capture = self._on_trigger

        self.channel.subscribe(self._on_result)
        self.channel.on_error(self._on_detection_error)

        self._lock = threading.Lock()
        self._latest_frame: Optional[np.ndarray] = None
        self._latest_result: Optional[DetectionResult] = None
        self._review: Optional[CaptureResult] = None
        self._capture_listeners: List[Callable[[CaptureResult], None]] = []

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_submit = 0.0

        self.frames_read = 0
        self.read_failures = 0

        logger.info("CaptureSession initialized")
        logger.debug(f"Config: {self.config}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """
        Open the camera, start loading the vision library and begin acquisition.

        Returns:
            bool: True when running

        Raises:
            CameraError: If the camera cannot be opened
        """
        if self.is_running:
            return True

        self.camera.initialize()
        self.channel.runtime.load_async()
        self.channel.start()

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._acquisition_loop, name="acquisition", daemon=True)
        self._thread.start()
        logger.info("Capture session started")
        return True

    def stop(self):
        """Stop acquisition and detection and release the camera."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None
        self.channel.stop()
        self.camera.release()
        logger.info(f"Capture session stopped ({self.frames_read} frames read, "
                    f"{self.read_failures} read failures)")

    def _acquisition_loop(self):
        while not self._stop_event.is_set():
            started = time.monotonic()
            try:
                self.step(now=started)
            except CameraNotInitializedError:
                logger.warning("Camera closed, acquisition loop exiting")
                break
            elapsed = time.monotonic() - started
            self._stop_event.wait(max(0.0, self.config.frame_interval_s - elapsed))

    def step(self, now: Optional[float] = None) -> bool:
        """
        Read one frame and submit it for detection when the cadence allows.

        Args:
            now: Monotonic timestamp (defaults to time.monotonic())

        Returns:
            bool: True if a frame was accepted by the detection channel
        """
        try:
            frame = self.camera.get_frame()
        except FrameCaptureError as e:
            self.read_failures += 1
            logger.warning(f"{e.error_code}: frame skipped ({self.read_failures} so far)")
            return False

        self.frames_read += 1
        with self._lock:
            self._latest_frame = frame
            reviewing = self._review is not None

        if reviewing:
            return False

        if now is None:
            now = time.monotonic()
        if now - self._last_submit < self.config.detection_interval_s:
            return False
        self._last_submit = now

        small = downsample(frame, self.config.detection_scale)
        return self.channel.submit(small)

    # ------------------------------------------------------------------
    # Detection results
    # ------------------------------------------------------------------

    def _on_result(self, result: DetectionResult):
        with self._lock:
            self._latest_result = result
            if self._review is not None:
                return
        self.stability.update(result)

    def _on_detection_error(self, sequence: int, error: ScannerError):
        logger.debug(f"Detection error on frame {sequence}: {error.error_code}")

    def _on_trigger(self, result: DetectionResult):
        scale = self.config.detection_scale
        with self._lock:
            frame = self._latest_frame
            if frame is None or self._review is not None:
                return
            capture = CaptureResult(
                success=True,
                image=frame,
                document_type=result.document_type,
                corners=[(x / scale, y / scale) for x, y in corners_list(result.box)],
                timestamp=datetime.now().strftime("%Y%m%d_%H%M%S"),
                metadata={
                    'source': result.source,
                    'stable_frames': self.stability.required_frames,
                    'detection_scale': scale,
                }
            )
            self._review = capture

        logger.info(f"Captured {capture.document_type.value} at {capture.timestamp}")
        for listener in list(self._capture_listeners):
            try:
                listener(capture)
            except Exception:
                logger.exception("Capture listener failed")

    def on_capture(self, listener: Callable[[CaptureResult], None]):
        """Register a callback fired once per auto-capture."""
        self._capture_listeners.append(listener)
        return listener

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    @property
    def latest_result(self) -> Optional[DetectionResult]:
        return self._latest_result

    @property
    def review(self) -> Optional[CaptureResult]:
        return self._review

    def retake(self):
        """Discard the pending capture and start counting again."""
        with self._lock:
            self._review = None
            self._latest_result = None
        self.stability.reset()
        logger.info("Retake requested, stability reset")

    def confirm(self) -> CaptureResult:
        """
        Accept the pending capture.

        Returns:
            CaptureResult: The confirmed capture

        Raises:
            NoCaptureError: If nothing has been captured
        """
        with self._lock:
            capture = self._review
            if capture is None:
                raise NoCaptureError()
            self._review = None
            self._latest_result = None
        capture.metadata['confirmed'] = True
        self.stability.reset()
        logger.info(f"Capture confirmed: {capture.document_type.value} ({capture.timestamp})")
        return capture

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def preview_frame(self, overlay: bool = True) -> Optional[np.ndarray]:
        """Latest full-resolution frame, optionally with the guide overlay."""
        with self._lock:
            frame = self._latest_frame
            result = self._latest_result
        if frame is None:
            return None
        if not overlay:
            return frame.copy()
        return draw_overlay(frame, result, self.stability.progress, scale=1.0 / self.config.detection_scale)

    def snapshot(self) -> Dict:
        """Session state for status endpoints."""
        result = self._latest_result
        review = self._review
        runtime = self.channel.runtime
        return {
            'running': self.is_running,
            'vision_ready': runtime.is_ready,
            'vision_error': runtime.error.message if runtime.error else None,
            'detection': result.to_dict() if result else None,
            'stability': self.stability.to_dict(),
            'review': review.to_dict() if review else None,
            'channel': dict(self.channel.stats),
            'frames_read': self.frames_read,
            'read_failures': self.read_failures,
        }
