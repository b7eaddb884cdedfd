"""
Layer 1 — Frame Sampling
Downsampling of full-resolution frames before detection and a frame source
that serves still images, used for uploads and offline runs.
"""
import cv2
import logging
from typing import Iterable, Iterator, List, Optional

import numpy as np

from error_handlers import CameraNotInitializedError, FrameCaptureError

logger = logging.getLogger(__name__)


def downsample(frame: np.ndarray, scale: float) -> np.ndarray:
    """
    Shrink a frame for detection.

    Always returns a new buffer, so the result can be handed to the detection
    worker while the caller keeps the original.

    Args:
        frame: Full-resolution frame
        scale: Scale factor in (0, 1]

    Returns:
        numpy.ndarray: Downsampled frame
    """
    if not 0.0 < scale <= 1.0:
        raise ValueError(f"Scale must be in (0, 1], got {scale}")
    if scale == 1.0:
        return frame.copy()
    height, width = frame.shape[:2]
    size = (max(1, int(width * scale)), max(1, int(height * scale)))
    return cv2.resize(frame, size, interpolation=cv2.INTER_AREA)


class StillFrameSource:
    """
    Camera stand-in that replays a fixed list of frames.

    Exposes the same interface as CameraHandler (initialize / get_frame /
    is_opened / release). A None entry simulates a failed read.
    """

    def __init__(self, frames: Iterable[Optional[np.ndarray]], loop: bool = True):
        self._frames: List[Optional[np.ndarray]] = list(frames)
        self.loop = loop
        self._iterator: Optional[Iterator] = None
        self._opened = False
        self.reads = 0

    def initialize(self) -> bool:
        self._iterator = self._cycle()
        self._opened = True
        logger.info(f"StillFrameSource initialized with {len(self._frames)} frame(s)")
        return True

    def _cycle(self):
        while True:
            for frame in self._frames:
                yield frame
            if not self.loop:
                return

    def get_frame(self) -> np.ndarray:
        if not self._opened or self._iterator is None:
            raise CameraNotInitializedError()
        self.reads += 1
        frame = next(self._iterator, None)
        if frame is None:
            raise FrameCaptureError(reason="no pixel data for this frame")
        return frame.copy()

    def is_opened(self) -> bool:
        return self._opened

    def release(self):
        self._opened = False
        self._iterator = None
