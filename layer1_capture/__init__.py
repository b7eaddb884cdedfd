"""
Layer 1 — Capture
Camera acquisition and frame sampling for detection.
"""
from .camera import CameraHandler
from .frames import StillFrameSource, downsample

__all__ = ['CameraHandler', 'StillFrameSource', 'downsample']
