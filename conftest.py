"""
Pytest configuration and fixtures for document capture tests.
"""
import pytest
import os
import sys

import cv2
import numpy as np

# Add the project root to the path
sys.path.insert(0, os.path.dirname(__file__))

FRAME_WIDTH = 640
FRAME_HEIGHT = 480
BACKGROUND = 30
DOCUMENT = 220


def make_frame(*rects, width=FRAME_WIDTH, height=FRAME_HEIGHT):
    """
    Dark BGR frame with bright filled rectangles.

    Args:
        rects: (x, y, w, h) tuples drawn at intensity DOCUMENT
    """
    frame = np.full((height, width, 3), BACKGROUND, dtype=np.uint8)
    for x, y, w, h in rects:
        cv2.rectangle(frame, (x, y), (x + w - 1, y + h - 1), (DOCUMENT, DOCUMENT, DOCUMENT), -1)
    return frame


@pytest.fixture
def app():
    """Create Flask test application."""
    from app import app as flask_app
    flask_app.config['TESTING'] = True
    return flask_app


@pytest.fixture
def client(app):
    """Create Flask test client."""
    return app.test_client()


@pytest.fixture
def card_frame():
    """640x480 frame with a centered ID-1 shaped card at (100, 140, 360, 227)."""
    return make_frame((100, 140, 360, 227))


@pytest.fixture
def blank_frame():
    """640x480 frame with nothing on it."""
    return make_frame()


@pytest.fixture
def off_center_frame():
    """Card-shaped document well away from the frame center."""
    return make_frame((330, 250, 240, 151))


@pytest.fixture
def card_png(card_frame):
    """The card frame encoded as PNG bytes, for upload tests."""
    ret, buffer = cv2.imencode('.png', card_frame)
    assert ret
    return buffer.tobytes()


@pytest.fixture
def ready_runtime():
    """A vision runtime that has finished loading."""
    from layer3_channel import VisionRuntime
    runtime = VisionRuntime()
    assert runtime.load(timeout=10)
    return runtime
