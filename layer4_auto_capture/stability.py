"""
Layer 4 — Stability Controller
Counts consecutive centered detections and fires the capture trigger once the
document has been held steady long enough.

At the fixed 5 results/second detection cadence, the frame count is a direct
proxy for wall-clock time: 10 frames ≈ 2 seconds.
"""
import logging
import threading
from enum import Enum
from typing import Callable, Optional

from layer2_detection import DetectionResult

logger = logging.getLogger(__name__)

REQUIRED_STABLE_FRAMES = 10


class StabilityState(str, Enum):
    """States of the auto-capture state machine."""
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    TRIGGERED = "triggered"


class StabilityController:
    """
    Run-length counter over the detection result stream.

    The counter and state are only advanced by update() and reset().
    """

    def __init__(
        self,
        required_frames: int = REQUIRED_STABLE_FRAMES,
        on_capture: Optional[Callable[[DetectionResult], None]] = None,
    ):
        """
        Initialize stability controller

        Args:
            required_frames: Consecutive centered results needed to trigger
            on_capture: Called once, with the triggering result, per session
        """
        if required_frames < 1:
            raise ValueError("required_frames must be at least 1")
        self.required_frames = required_frames
        self.on_capture = on_capture

        self._lock = threading.Lock()
        self._count = 0
        self._state = StabilityState.IDLE
        self.captures = 0

    @property
    def count(self) -> int:
        return self._count

    @property
    def state(self) -> StabilityState:
        return self._state

    @property
    def progress(self) -> float:
        """Fraction of the required streak reached (0.0-1.0)."""
        if self._state == StabilityState.TRIGGERED:
            return 1.0
        return min(1.0, self._count / self.required_frames)

    def update(self, result: DetectionResult) -> bool:
        """
        Feed one detection result.

        Args:
            result: Latest detection result, in time order

        Returns:
            bool: True only for the update that triggered the capture
        """
        with self._lock:
            if self._state == StabilityState.TRIGGERED:
                return False

            if not result.is_centered:
                if self._count:
                    logger.debug(f"Stability lost after {self._count} frame(s) ({result.status.value})")
                self._count = 0
                self._state = StabilityState.IDLE
                return False

            self._count += 1
            if self._count < self.required_frames:
                self._state = StabilityState.ACCUMULATING
                return False

            self._state = StabilityState.TRIGGERED
            self.captures += 1

        logger.info(f"Document stable for {self.required_frames} frames, triggering capture")
        if self.on_capture is not None:
            self.on_capture(result)
        return True

    def reset(self):
        """Clear the counter and return to idle (issued on retake)."""
        with self._lock:
            previous = self._state
            self._count = 0
            self._state = StabilityState.IDLE
        logger.debug(f"Stability reset from {previous.value}")

    def to_dict(self):
        return {
            'state': self._state.value,
            'stable_count': self._count,
            'stable_required': self.required_frames,
            'progress': round(self.progress, 2),
        }
