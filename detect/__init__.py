from .base import (
    CAPTURE_SCORE_THRESHOLD,
    FaceBox,
    FaceDetection,
    FaceDetector,
    create_detector,
    create_detector_from_loaded_config,
    draw_detection,
    register_detector,
    encode_image_jpeg,
)

__all__ = [
    "CAPTURE_SCORE_THRESHOLD",
    "FaceBox",
    "FaceDetection",
    "FaceDetector",
    "create_detector",
    "create_detector_from_loaded_config",
    "draw_detection",
    "register_detector",
    "encode_image_jpeg",
]
