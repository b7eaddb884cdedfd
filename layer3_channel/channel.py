"""
Layer 3 — Detection Channel
Decouples the fixed-rate acquisition loop from variable-latency detection.

A single worker thread receives frames through a one-slot queue. While a
frame is being detected every further submission is dropped, so at most one
frame buffer is ever held by the worker and results come out in submission
order.
"""
import logging
import queue
import threading
from typing import Callable, Dict, List, Optional

import numpy as np

from error_handlers import FrameProcessingError, ScannerError
from layer2_detection import DetectionResult, FrameDetector
from .runtime import VisionRuntime, get_runtime

logger = logging.getLogger(__name__)

ResultCallback = Callable[[DetectionResult], None]
ErrorCallback = Callable[[int, ScannerError], None]

_STOP = object()


class DetectionChannel:
    """
    Submit-or-drop pipeline between frame acquisition and the frame detector.
    """

    def __init__(
        self,
        detector: Optional[FrameDetector] = None,
        runtime: Optional[VisionRuntime] = None,
        name: str = "detection-worker",
    ):
        """
        Initialize detection channel

        Args:
            detector: Frame detector run on the worker thread
            runtime: Vision runtime whose readiness gates submissions
            name: Worker thread name
        """
        self.detector = detector or FrameDetector()
        self.runtime = runtime or get_runtime()
        self.name = name

        self._slot: "queue.Queue" = queue.Queue(maxsize=1)
        self._lock = threading.Lock()
        self._in_flight = False
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._sequence = 0

        self._subscribers: List[ResultCallback] = []
        self._error_subscribers: List[ErrorCallback] = []

        self.stats: Dict[str, int] = {
            'submitted': 0,
            'dropped': 0,
            'rejected': 0,
            'processed': 0,
            'failed': 0,
        }

        logger.info(f"DetectionChannel '{name}' created")

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, callback: ResultCallback) -> ResultCallback:
        """Receive every published DetectionResult (called on the worker thread)."""
        self._subscribers.append(callback)
        return callback

    def unsubscribe(self, callback: ResultCallback):
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def on_error(self, callback: ErrorCallback) -> ErrorCallback:
        """Receive (frame sequence, error) for every abandoned frame."""
        self._error_subscribers.append(callback)
        return callback

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def start(self):
        """Start the worker thread (no-op if already running)."""
        with self._lock:
            if self._running:
                return
            self._running = True
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()
        logger.info(f"DetectionChannel '{self.name}' started")

    def stop(self, timeout: float = 5.0):
        """
        Stop the worker. A detection already in flight finishes first.
        """
        with self._lock:
            if not self._running:
                return
            self._running = False
            thread = self._thread

        # Slot may still hold an unprocessed frame, the sentinel waits behind it
        self._slot.put(_STOP)
        if thread is not None:
            thread.join(timeout)
            if thread.is_alive():
                logger.warning(f"DetectionChannel '{self.name}' worker did not stop within {timeout}s")
        self._thread = None
        logger.info(f"DetectionChannel '{self.name}' stopped - stats: {self.stats}")

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, frame: np.ndarray) -> bool:
        """
        Hand a frame to the detector without blocking.

        The caller gives up the frame buffer: it must not be reused or
        mutated after a successful submit.

        Args:
            frame: Frame to detect

        Returns:
            bool: True if accepted, False if rejected (not ready) or dropped (busy)
        """
        if not self.runtime.is_ready:
            self.stats['rejected'] += 1
            logger.debug("Frame rejected: detection not ready")
            return False

        # Same lock as stop(), a stopped channel never receives a frame
        with self._lock:
            if not self._running:
                self.stats['rejected'] += 1
                logger.debug("Frame rejected: channel stopped")
                return False
            if self._in_flight:
                self.stats['dropped'] += 1
                return False
            self._sequence += 1
            try:
                self._slot.put_nowait((self._sequence, frame))
            except queue.Full:
                # Sentinel left behind by a stop() whose worker never drained it
                self.stats['dropped'] += 1
                return False
            self._in_flight = True
            self.stats['submitted'] += 1
        return True

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _run(self):
        logger.debug(f"Worker '{self.name}' running")
        while True:
            item = self._slot.get()
            if item is _STOP:
                break

            sequence, frame = item
            try:
                result = self.detector.detect(frame)
            except ScannerError as e:
                self.stats['failed'] += 1
                logger.warning(f"Frame {sequence} abandoned - {e.error_code}: {e.message}")
                self._notify_error(sequence, e)
            except Exception as e:
                self.stats['failed'] += 1
                error = FrameProcessingError(e, frame_shape=getattr(frame, 'shape', None))
                logger.exception(f"Frame {sequence} abandoned - unexpected detection error")
                self._notify_error(sequence, error)
            else:
                self.stats['processed'] += 1
                self._publish(result)
            finally:
                del frame
                with self._lock:
                    self._in_flight = False

        logger.debug(f"Worker '{self.name}' exiting")

    def _publish(self, result: DetectionResult):
        for callback in list(self._subscribers):
            try:
                callback(result)
            except Exception:
                logger.exception("Detection subscriber failed")

    def _notify_error(self, sequence: int, error: ScannerError):
        for callback in list(self._error_subscribers):
            try:
                callback(sequence, error)
            except Exception:
                logger.exception("Detection error subscriber failed")
