"""
Layer 3 — Detection Channel
Vision library readiness and the single-in-flight detection worker.
"""
from .runtime import VisionRuntime, get_runtime
from .channel import DetectionChannel

__all__ = ['VisionRuntime', 'get_runtime', 'DetectionChannel']
