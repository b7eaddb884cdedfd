"""
Layer 4 — Auto-Capture
Stability tracking over the detection stream and the capture/review session
that returns the single captured still.
"""
from .stability import StabilityController, StabilityState, REQUIRED_STABLE_FRAMES
from .session import CaptureConfig, CaptureResult, CaptureSession

__all__ = [
    'StabilityController',
    'StabilityState',
    'REQUIRED_STABLE_FRAMES',
    'CaptureConfig',
    'CaptureResult',
    'CaptureSession',
]
