"""
Tests for the document capture Flask application.
"""
import io
import json
import time

import pytest

import app as app_module
from layer1_capture import CameraHandler, StillFrameSource
from layer3_channel import DetectionChannel, get_runtime
from layer4_auto_capture import CaptureConfig, CaptureSession


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def vision_ready():
    assert get_runtime().load(timeout=10)


@pytest.fixture
def still_session(monkeypatch, ready_runtime, card_frame):
    """Swap the app session for one replaying the card frame."""
    session = CaptureSession(
        StillFrameSource([card_frame]),
        channel=DetectionChannel(runtime=ready_runtime),
        config=CaptureConfig(frame_interval_s=0.005, detection_interval_s=0.0, required_stable_frames=3),
    )
    monkeypatch.setattr(app_module, 'session', session)
    yield session
    session.stop()


@pytest.fixture
def captured_session(still_session):
    """Still-image session that has auto-captured the card."""
    still_session.start()
    assert wait_for(lambda: still_session.review is not None)
    return still_session


class TestHealthEndpoint:
    """Test health check endpoint."""

    def test_health_returns_ok(self, client):
        """Test /health returns OK status."""
        response = client.get('/health')
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['status'] == 'healthy'
        assert data['service'] == 'document-capture'


class TestStatusEndpoint:
    """Test service status endpoint."""

    def test_status_lists_endpoints(self, client):
        """Test /api/status reports capabilities."""
        response = client.get('/api/status')
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['success'] is True
        assert data['strategy'] == 'card'
        assert data['required_stable_frames'] == 10
        assert data['endpoints']['detect'] == '/api/detect'

    def test_cors_headers(self, client):
        """Test cross-origin requests are allowed."""
        response = client.get('/api/status', headers={'Origin': 'http://kiosk.local'})
        assert response.headers.get('Access-Control-Allow-Origin') in ('*', 'http://kiosk.local')


class TestDetectEndpoint:
    """Test document detection on uploaded images."""

    def test_detect_requires_image(self, client, vision_ready):
        """Test /api/detect requires an image file."""
        response = client.post('/api/detect', data={}, content_type='multipart/form-data')
        assert response.status_code == 400
        data = json.loads(response.data)
        assert data['error_code'] == 'NO_IMAGE'

    def test_detect_rejects_unreadable_image(self, client, vision_ready):
        """Test /api/detect rejects files OpenCV cannot decode."""
        response = client.post(
            '/api/detect',
            data={'image': (io.BytesIO(b'not an image'), 'card.png')},
            content_type='multipart/form-data'
        )
        assert response.status_code == 400
        assert json.loads(response.data)['error_code'] == 'INVALID_IMAGE'

    def test_detect_card(self, client, vision_ready, card_png):
        """Test /api/detect finds a centered card."""
        response = client.post(
            '/api/detect',
            data={'image': (io.BytesIO(card_png), 'card.png')},
            content_type='multipart/form-data'
        )
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['success'] is True
        assert data['size'] == [640, 480]
        detection = data['detection']
        assert detection['status'] == 'centered'
        assert detection['documentType'] == 'ID Card'
        assert detection['message'] == 'Hold Still...'
        assert detection['box']['x'] == 100
        assert detection['box']['width'] == 360


class TestCameraEndpoints:
    """Test capture session control."""

    def test_start_missing_camera(self, client, monkeypatch, ready_runtime):
        """Test starting with a missing camera reports the camera error."""
        session = CaptureSession(CameraHandler(camera_index=99), channel=DetectionChannel(runtime=ready_runtime))
        monkeypatch.setattr(app_module, 'session', session)
        response = client.post('/start_camera')
        assert response.status_code == 503
        data = json.loads(response.data)
        assert data['success'] is False
        assert data['error_code'] in ('CAMERA_NOT_FOUND', 'CAMERA_INIT_FAILED')

    def test_start_and_stop(self, client, still_session):
        """Test the session can be started and stopped."""
        response = client.post('/start_camera')
        assert json.loads(response.data)['success'] is True
        assert still_session.is_running

        response = client.post('/stop_camera')
        assert json.loads(response.data)['success'] is True
        assert not still_session.is_running

    def test_detection_status(self, client, still_session):
        """Test /detection_status reports the latest result."""
        still_session.start()
        assert wait_for(lambda: still_session.latest_result is not None)
        data = json.loads(client.get('/detection_status').data)
        assert data['success'] is True
        assert data['running'] is True
        assert data['detection']['status'] == 'centered'
        assert 'stability' in data


class TestReviewEndpoints:
    """Test review, retake and confirm."""

    def test_review_without_capture(self, client, still_session):
        """Test /review is 404 before anything was captured."""
        response = client.get('/review')
        assert response.status_code == 404
        assert json.loads(response.data)['error_code'] == 'NO_CAPTURE'
        assert client.get('/review/image').status_code == 404

    def test_confirm_without_capture(self, client, still_session):
        """Test /confirm is 404 before anything was captured."""
        response = client.post('/confirm')
        assert response.status_code == 404

    def test_review_after_capture(self, client, captured_session):
        """Test the captured document is available for review."""
        data = json.loads(client.get('/review').data)
        assert data['success'] is True
        assert data['capture']['documentType'] == 'ID Card'
        assert data['capture']['size'] == [640, 480]

    def test_review_image_is_jpeg(self, client, captured_session):
        """Test /review/image returns a JPEG."""
        response = client.get('/review/image')
        assert response.status_code == 200
        assert response.content_type == 'image/jpeg'
        assert response.data[:2] == b'\xff\xd8'

    def test_retake(self, client, captured_session):
        """Test /retake discards the capture."""
        captured_session.stop()
        response = client.post('/retake')
        assert json.loads(response.data)['success'] is True
        assert captured_session.review is None
        assert client.get('/review').status_code == 404

    def test_confirm(self, client, captured_session):
        """Test /confirm returns the capture once."""
        captured_session.stop()
        response = client.post('/confirm')
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['capture']['metadata']['confirmed'] is True
        assert client.post('/confirm').status_code == 404
