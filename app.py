"""
Document Capture Web Application
Thin coordinator for the layered ID document auto-capture system.

Provides REST API for:
- Camera preview with live detection overlay
- Auto-capture status, review, retake and confirm
- One-shot detection on uploaded images
"""
from flask import Flask, Response, jsonify, request
from flask_cors import CORS
import cv2
import numpy as np
import time
import logging
import os

# Import layers
from layer1_capture import CameraHandler, StillFrameSource
from layer2_detection import FrameDetector, get_strategy
from layer3_channel import DetectionChannel, get_runtime
from layer4_auto_capture import CaptureConfig, CaptureSession

# Import error handling
from error_handlers import (
    ScannerError,
    CameraError,
    NoCaptureError,
    VisionNotReadyError,
    handle_error
)

# Configuration
CAMERA_INDEX = int(os.environ.get('CAMERA_INDEX', 0))
CAMERA_IMAGE = os.environ.get('CAMERA_IMAGE')  # Replay a still image instead of a camera
DETECTION_STRATEGY = os.environ.get('DETECTION_STRATEGY', 'card')
REQUIRED_STABLE_FRAMES = int(os.environ.get('REQUIRED_STABLE_FRAMES', 10))
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

# Setup logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)

app = Flask(__name__)

# Enable CORS for cross-origin requests from the kiosk front end
CORS(app, origins=["*"])


def create_camera():
    """Camera for the capture session, or a still-image source when CAMERA_IMAGE is set."""
    if CAMERA_IMAGE:
        frame = cv2.imread(CAMERA_IMAGE)
        if frame is None:
            raise ValueError(f"Could not read CAMERA_IMAGE: {CAMERA_IMAGE}")
        logger.info(f"Using still image source: {CAMERA_IMAGE}")
        return StillFrameSource([frame])
    return CameraHandler(camera_index=CAMERA_INDEX)


def create_session():
    """Wire the layers into a capture session."""
    strategy = get_strategy(DETECTION_STRATEGY)
    config = CaptureConfig(required_stable_frames=REQUIRED_STABLE_FRAMES)
    channel = DetectionChannel(detector=FrameDetector(strategy), runtime=get_runtime())
    return CaptureSession(create_camera(), channel=channel, config=config)


# Initialize capture session
logger.info("Starting application initialization")
session = create_session()

# Vision library loads in the background; detection is refused until it is ready
get_runtime().load_async()

# Upload detection runs on the request thread, outside the channel
upload_detector = FrameDetector(get_strategy(DETECTION_STRATEGY))


def no_capture_response():
    return jsonify(handle_error(NoCaptureError())), 404


# Flask Routes

@app.route('/video_feed')
def video_feed():
    """Video streaming route with real-time detection overlay"""
    logger.info("Video feed with overlay requested")

    def generate():
        logger.info("Starting video stream generator with overlay")
        frame_count = 0
        while session.is_running:
            frame = session.preview_frame()

            if frame is not None:
                ret, buffer = cv2.imencode('.jpg', frame)
                if not ret:
                    continue
                frame_count += 1
                if frame_count % 30 == 0:
                    logger.debug(f"Video stream: {frame_count} frames sent")

                yield (b'--frame\r\n'
                       b'Content-Type: image/jpeg\r\n\r\n' + buffer.tobytes() + b'\r\n')
            time.sleep(session.config.frame_interval_s)
        logger.info(f"Video stream ended after {frame_count} frames")

    return Response(generate(), mimetype='multipart/x-mixed-replace; boundary=frame')


@app.route('/detection_status', methods=['GET'])
def detection_status():
    """Current detection result, stability progress and review state"""
    return jsonify({
        "success": True,
        **session.snapshot()
    })


@app.route('/start_camera', methods=['POST'])
def start_camera():
    """Start the capture session"""
    logger.info("Start camera request received")

    try:
        success = session.start()
        logger.info(f"Camera start result: {success}")
        return jsonify({"success": success})
    except CameraError as e:
        return jsonify(handle_error(e)), 503


@app.route('/stop_camera', methods=['POST'])
def stop_camera():
    """Stop the capture session"""
    logger.info("Stop camera request received")
    session.stop()
    return jsonify({"success": True})


@app.route('/review', methods=['GET'])
def review():
    """Metadata of the capture awaiting review"""
    capture = session.review
    if capture is None:
        return no_capture_response()
    return jsonify({"success": True, "capture": capture.to_dict()})


@app.route('/review/image', methods=['GET'])
def review_image():
    """Capture awaiting review, as JPEG"""
    capture = session.review
    if capture is None or capture.image is None:
        return no_capture_response()

    quality = session.config.jpeg_quality
    ret, buffer = cv2.imencode('.jpg', capture.image, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
    if not ret:
        logger.error("Review image JPEG encoding failed")
        return jsonify({
            "success": False,
            "error": "Could not encode capture",
            "error_code": "ENCODING_FAILED"
        }), 500
    return Response(buffer.tobytes(), mimetype='image/jpeg')


@app.route('/retake', methods=['POST'])
def retake():
    """Discard the capture and resume detection"""
    logger.info("Retake request received")
    session.retake()
    return jsonify({"success": True})


@app.route('/confirm', methods=['POST'])
def confirm():
    """Accept the capture awaiting review"""
    logger.info("Confirm request received")
    try:
        capture = session.confirm()
    except NoCaptureError:
        return no_capture_response()
    return jsonify({"success": True, "capture": capture.to_dict()})


# ============================================================================
# API Endpoints for Microservice Communication
# ============================================================================

@app.route("/health", methods=["GET"])
def health_check():
    """Health check endpoint for service discovery and load balancers"""
    return jsonify({
        "status": "healthy",
        "service": "document-capture",
        "version": "1.0.0"
    })


@app.route("/api/detect", methods=["POST"])
def api_detect():
    """
    Detect an ID document in an uploaded image.

    Request:
        - multipart/form-data with 'image' field containing the photo

    Response:
        {
            "success": true,
            "detection": { "status": "centered", "documentType": "ID Card", ... }
        }
    """
    logger.info("API detect request received")

    if not get_runtime().is_ready:
        return jsonify(handle_error(VisionNotReadyError())), 503

    if 'image' not in request.files:
        return jsonify({
            "success": False,
            "error": "No image file provided",
            "error_code": "NO_IMAGE"
        }), 400

    image_file = request.files['image']

    if image_file.filename == '':
        return jsonify({
            "success": False,
            "error": "Empty filename",
            "error_code": "EMPTY_FILENAME"
        }), 400

    data = np.frombuffer(image_file.read(), dtype=np.uint8)
    frame = cv2.imdecode(data, cv2.IMREAD_COLOR) if data.size else None
    if frame is None:
        return jsonify({
            "success": False,
            "error": "Could not read image file",
            "error_code": "INVALID_IMAGE"
        }), 400

    try:
        result = upload_detector.detect(frame)
    except ScannerError as e:
        return jsonify(handle_error(e)), 422

    logger.info(f"API detection: {result.status.value} ({result.document_type.value})")
    return jsonify({
        "success": True,
        "detection": result.to_dict(),
        "size": [frame.shape[1], frame.shape[0]]
    })


@app.route("/api/status", methods=["GET"])
def api_status():
    """Get service status and capabilities"""
    runtime = session.channel.runtime
    return jsonify({
        "success": True,
        "camera_running": session.is_running,
        "vision_ready": runtime.is_ready,
        "vision_error": runtime.error.to_dict() if runtime.error else None,
        "strategy": session.channel.detector.strategy.name,
        "required_stable_frames": session.stability.required_frames,
        "endpoints": {
            "health": "/health",
            "detect": "/api/detect",
            "video_feed": "/video_feed",
            "detection_status": "/detection_status",
            "review": "/review",
            "retake": "/retake",
            "confirm": "/confirm"
        }
    })


# ============================================================================
# Main Entry Point
# ============================================================================

if __name__ == '__main__':
    print("\n" + "=" * 60)
    print("DOCUMENT CAPTURE WEB SERVER")
    print("=" * 60)
    print("\n📁 Project Structure:")
    print("  layer1_capture/       - Camera handling and frame sampling")
    print("  layer2_detection/     - Document detection + overlay")
    print("  layer3_channel/       - Background detection worker")
    print("  layer4_auto_capture/  - Stability tracking + review")
    print("\n🌐 Server Info:")
    print("  URL: http://localhost:5000")
    print(f"  Logging Level: {LOG_LEVEL}")
    print("\n🎥 Camera:")
    print(f"  Source: {CAMERA_IMAGE or f'/dev/video{CAMERA_INDEX}'}")
    print(f"  Strategy: {DETECTION_STRATEGY}")
    print(f"  Stable frames: {REQUIRED_STABLE_FRAMES}")
    print("\n" + "=" * 60)
    print("Server starting... Press Ctrl+C to stop")
    print("=" * 60 + "\n")

    logger.info("Flask server starting")
    app.run(host='0.0.0.0', port=5000, threaded=True)
