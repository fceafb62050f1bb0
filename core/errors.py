"""Error taxonomy for the capture and submission cycle."""

from __future__ import annotations

from core.contracts import EventType

CAMERA_DISABLED = "CAMERA_DISABLED"
CAMERA_NOT_READY = "CAMERA_NOT_READY"
NO_FACE_DETECTED = "NO_FACE_DETECTED"
FEATURE_EXTRACTION_FAILED = "FEATURE_EXTRACTION_FAILED"
HARD_FAILURE = "HARD_FAILURE"
INTERNAL_ERROR = "INTERNAL_ERROR"


class CaptureError(Exception):
    """Base for failures that stop a cycle before anything is submitted."""

    code = "CAPTURE_FAILED"
    title = "Capture Failed"
    default_message = "The camera frame could not be processed."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class CameraDisabled(CaptureError):
    code = CAMERA_DISABLED
    title = "Camera Disabled"
    default_message = "The camera is turned off. Enable it to record attendance."


class CameraNotReady(CaptureError):
    code = CAMERA_NOT_READY
    title = "Camera Not Ready"
    default_message = "The camera is still starting. Please wait a moment."


class NoFaceDetected(CaptureError):
    code = NO_FACE_DETECTED
    title = "No Face Detected"
    default_message = "No face found. Please look directly at the camera."


class FeatureExtractionFailed(CaptureError):
    code = FEATURE_EXTRACTION_FAILED
    title = "Face Analysis Failed"
    default_message = (
        "Could not analyze facial features. Try better lighting and hold still."
    )


class InvalidTransition(RuntimeError):
    pass


def success_title(event_type: EventType, *, warning: bool = False) -> str:
    base = "Check-in" if event_type is EventType.CHECKIN else "Check-out"
    title = f"{base} Successful"
    return f"{title} (with warning)" if warning else title


def failure_title(event_type: EventType) -> str:
    base = "Check-in" if event_type is EventType.CHECKIN else "Check-out"
    return f"{base} Failed"


__all__ = [
    "CAMERA_DISABLED",
    "CAMERA_NOT_READY",
    "NO_FACE_DETECTED",
    "FEATURE_EXTRACTION_FAILED",
    "HARD_FAILURE",
    "INTERNAL_ERROR",
    "CaptureError",
    "CameraDisabled",
    "CameraNotReady",
    "NoFaceDetected",
    "FeatureExtractionFailed",
    "InvalidTransition",
    "success_title",
    "failure_title",
]
