"""
Layer 2 — Document Detection
Per-frame document detection: candidate geometry and scoring, configurable
detection strategies, the frame detector and preview overlay state.
"""
from .result import BoundingBox, DetectionResult, DetectionStatus, DocumentType
from .geometry import Candidate, RotatedRect, order_corners, select_best
from .strategy import AspectBand, DetectionStrategy, STRATEGIES, get_strategy
from .detector import FrameDetector
from .overlay import OverlayState, draw_overlay

__all__ = [
    'BoundingBox',
    'DetectionResult',
    'DetectionStatus',
    'DocumentType',
    'Candidate',
    'RotatedRect',
    'order_corners',
    'select_best',
    'AspectBand',
    'DetectionStrategy',
    'STRATEGIES',
    'get_strategy',
    'FrameDetector',
    'OverlayState',
    'draw_overlay',
]
