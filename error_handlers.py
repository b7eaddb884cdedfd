"""
Error Handling System
Provides consistent error responses across all layers
"""
import logging

logger = logging.getLogger(__name__)


class ScannerError(Exception):
    """Base exception for scanner errors"""
    def __init__(self, message, error_code, details=None):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self):
        """Convert error to JSON-serializable dict"""
        return {
            "success": False,
            "error": self.message,
            "error_code": self.error_code,
            "details": self.details
        }


# Layer 1 Errors - Camera
class CameraError(ScannerError):
    """Camera-related errors"""
    pass


class CameraNotFoundError(CameraError):
    """Camera device not found"""
    def __init__(self, camera_index):
        super().__init__(
            message=f"Camera not found at /dev/video{camera_index}",
            error_code="CAMERA_NOT_FOUND",
            details={
                "camera_index": camera_index,
                "suggestion": "Check camera connection and device index"
            }
        )


class CameraInitError(CameraError):
    """Camera initialization failed"""
    def __init__(self, camera_index, reason=None):
        super().__init__(
            message=f"Could not access camera at /dev/video{camera_index}",
            error_code="CAMERA_INIT_FAILED",
            details={
                "camera_index": camera_index,
                "reason": reason,
                "suggestion": "Check camera permissions and ensure no other app is using it"
            }
        )


class CameraNotInitializedError(CameraError):
    """Attempting to use camera before initialization"""
    def __init__(self):
        super().__init__(
            message="Camera not initialized. Please start the camera first.",
            error_code="CAMERA_NOT_INITIALIZED",
            details={
                "suggestion": "Call /start_camera endpoint first"
            }
        )


class FrameCaptureError(CameraError):
    """Pixel data could not be read for the current frame"""
    def __init__(self, reason=None):
        super().__init__(
            message="Failed to read frame from camera",
            error_code="FRAME_READ_FAILED",
            details={
                "reason": reason,
                "suggestion": "Frame skipped, the next sampled frame will be tried"
            }
        )


# Layer 2/3 Errors - Vision library
class VisionError(ScannerError):
    """Vision library errors"""
    pass


class VisionInitError(VisionError):
    """Vision library failed to load; detection is unavailable until restart"""
    def __init__(self, reason):
        super().__init__(
            message=f"Vision library failed to load: {reason}",
            error_code="VISION_INIT_FAILED",
            details={
                "reason": str(reason),
                "suggestion": "Check the OpenCV installation and restart the service"
            }
        )


class VisionNotReadyError(VisionError):
    """Detection requested before the vision library finished loading"""
    def __init__(self):
        super().__init__(
            message="Vision library is still loading",
            error_code="VISION_NOT_READY",
            details={
                "suggestion": "Wait for the readiness signal before submitting frames"
            }
        )


# Layer 2 Errors - Frame processing
class ProcessingError(ScannerError):
    """Image processing errors"""
    pass


class FrameProcessingError(ProcessingError):
    """Detection of a single frame was abandoned"""
    def __init__(self, reason, frame_shape=None):
        super().__init__(
            message=f"Frame processing failed: {reason}",
            error_code="FRAME_PROCESSING_FAILED",
            details={
                "reason": str(reason),
                "frame_shape": list(frame_shape) if frame_shape is not None else None,
                "suggestion": "Frame dropped, detection continues with the next frame"
            }
        )


# Layer 4 Errors - Capture / review
class CaptureError(ScannerError):
    """Capture session errors"""
    pass


class NoCaptureError(CaptureError):
    """Review action requested while nothing has been captured"""
    def __init__(self):
        super().__init__(
            message="No captured document to review",
            error_code="NO_CAPTURE",
            details={
                "suggestion": "Hold a document centered in the guide until it is captured"
            }
        )


# Error response helpers
def handle_error(error, log_message=None):
    """
    Handle error consistently across the application

    Args:
        error: Exception that occurred
        log_message: Optional custom log message

    Returns:
        dict: Error response for JSON serialization
    """
    if log_message:
        logger.error(log_message)

    if isinstance(error, ScannerError):
        # Known scanner error
        logger.error(f"{error.error_code}: {error.message}")
        if error.details:
            logger.debug(f"Error details: {error.details}")
        return error.to_dict()
    else:
        # Unexpected error
        logger.error(f"Unexpected error: {error}")
        logger.exception("Full traceback:")
        return {
            "success": False,
            "error": "An unexpected error occurred",
            "error_code": "UNEXPECTED_ERROR",
            "details": {
                "error_type": type(error).__name__,
                "error_message": str(error)
            }
        }
