"""
Layer 2 — Preview Overlay
Guide shape, colour and status text derived from the latest detection result,
plus OpenCV rendering for the live MJPEG preview.
"""
import cv2
import numpy as np
from dataclasses import dataclass
from typing import Optional, Tuple

from .result import A4_DOCUMENT_TYPES, DetectionResult, DetectionStatus, DocumentType
from .strategy import A4_ASPECT_RATIO, ID1_ASPECT_RATIO

# BGR colours
COLOR_IDLE = (255, 255, 255)
COLOR_DETECTED = (0, 255, 255)
COLOR_CENTERED = (0, 255, 0)

IDLE_TEXT = "Align card within frame"
DETECTED_TEXT = "Scanning..."
CENTERED_TEXT = "Hold Still - Capturing..."


@dataclass(frozen=True)
class OverlayState:
    """What the guide overlay should show for one detection result."""
    guide_aspect: float          # width / height of the guide box
    guide_width_ratio: float     # guide width as a fraction of the preview width
    color: Tuple[int, int, int]
    message: str
    document_label: Optional[str] = None

    @classmethod
    def from_result(cls, result: Optional[DetectionResult]) -> "OverlayState":
        is_a4 = result is not None and result.document_type in A4_DOCUMENT_TYPES
        aspect = 1.0 / A4_ASPECT_RATIO if is_a4 else ID1_ASPECT_RATIO
        width_ratio = 0.85 if is_a4 else 0.95

        if result is None:
            return cls(aspect, width_ratio, COLOR_IDLE, IDLE_TEXT)

        if result.status == DetectionStatus.SEARCHING:
            color, text = COLOR_IDLE, IDLE_TEXT
        elif result.status == DetectionStatus.CENTERED:
            color, text = COLOR_CENTERED, CENTERED_TEXT
        else:
            color, text = COLOR_DETECTED, DETECTED_TEXT

        label = None
        if result.document_type != DocumentType.UNKNOWN:
            label = f"Detected: {result.document_type.value}"
        # The detector's own message wins over the fixed guide text
        return cls(aspect, width_ratio, color, result.message or text, label)

    def guide_rect(self, frame_width: int, frame_height: int) -> Tuple[int, int, int, int]:
        """Centered guide box (x, y, w, h) that fits inside the frame."""
        w = frame_width * self.guide_width_ratio
        h = w / self.guide_aspect
        if h > frame_height * 0.95:
            h = frame_height * 0.95
            w = h * self.guide_aspect
        x = (frame_width - w) / 2.0
        y = (frame_height - h) / 2.0
        return int(x), int(y), int(w), int(h)


def draw_overlay(
    frame: np.ndarray,
    result: Optional[DetectionResult],
    progress: float = 0.0,
    scale: float = 1.0,
) -> np.ndarray:
    """
    Render the guide, detection box and stability progress onto a copy of the frame.

    Args:
        frame: BGR preview frame
        result: Latest detection result (None before the first one)
        progress: Stability progress 0.0-1.0
        scale: Factor mapping detection coordinates to preview coordinates

    Returns:
        numpy.ndarray: Annotated copy of the frame
    """
    overlay_frame = frame.copy()
    state = OverlayState.from_result(result)
    height, width = overlay_frame.shape[:2]

    # Dim everything outside the guide
    gx, gy, gw, gh = state.guide_rect(width, height)
    dimmed = (overlay_frame * 0.5).astype(np.uint8)
    dimmed[gy:gy + gh, gx:gx + gw] = overlay_frame[gy:gy + gh, gx:gx + gw]
    overlay_frame = dimmed
    cv2.rectangle(overlay_frame, (gx, gy), (gx + gw, gy + gh), state.color, 3, cv2.LINE_AA)

    if result is not None and result.box is not None:
        pts = np.array(result.box.corners, dtype=np.float32) * scale
        cv2.polylines(overlay_frame, [pts.astype(np.int32)], True, state.color, 2, cv2.LINE_AA)

    # Status text with background
    text_size = cv2.getTextSize(state.message, cv2.FONT_HERSHEY_SIMPLEX, 0.8, 2)[0]
    tx = max(10, (width - text_size[0]) // 2)
    ty = int(height * 0.85)
    cv2.rectangle(overlay_frame, (tx - 10, ty - text_size[1] - 10), (tx + text_size[0] + 10, ty + 10),
                  (50, 50, 50), -1)
    cv2.putText(overlay_frame, state.message, (tx, ty), cv2.FONT_HERSHEY_SIMPLEX, 0.8, state.color, 2)

    if state.document_label:
        cv2.putText(overlay_frame, state.document_label, (20, 40), cv2.FONT_HERSHEY_SIMPLEX, 0.7,
                    state.color, 2)

    # Draw progress bar if stabilizing
    if 0.0 < progress < 1.0:
        bar_w, bar_h = 200, 8
        bar_x = (width - bar_w) // 2
        bar_y = height - 30
        cv2.rectangle(overlay_frame, (bar_x, bar_y), (bar_x + bar_w, bar_y + bar_h), (100, 100, 100), -1)
        cv2.rectangle(overlay_frame, (bar_x, bar_y), (bar_x + int(bar_w * progress), bar_y + bar_h),
                      state.color, -1)

    return overlay_frame
