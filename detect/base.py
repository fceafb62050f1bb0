import logging
from dataclasses import dataclass, field
from typing import Callable, Protocol, Tuple

import cv2
import numpy as np

from core.registry import Registry

L = logging.getLogger("attendance_kiosk.detection")

CAPTURE_SCORE_THRESHOLD = 0.7


@dataclass(slots=True)
class FaceBox:
    x: float
    y: float
    w: float
    h: float
    score: float
    landmarks: list[tuple[float, float]] = field(default_factory=list)


@dataclass(slots=True)
class FaceDetection:
    box: FaceBox
    descriptor: np.ndarray


class FaceDetector(Protocol):
    def detect_face(self, img: np.ndarray) -> FaceBox | None:
        """Lightweight single-face pass: the best box above threshold, or None."""
        ...

    def detect_with_descriptor(self, img: np.ndarray) -> FaceDetection | None:
        """Full pass: box, landmarks, and embedding, or None when unusable."""
        ...


_registry: Registry[Callable[..., FaceDetector]] = Registry(
    package=__package__ or "detect", label="detector impl"
)


def register_detector(name: str):
    return _registry.register(name)


def create_detector(name: str, params: dict, **kwargs) -> FaceDetector:
    # Lazy import: configs can name a detector without importing its module first.
    factory = _registry.resolve(name)
    return factory(params or {}, **kwargs)


def create_detector_from_loaded_config(cfg) -> FaceDetector:
    return create_detector(cfg.detect.impl, cfg.detect_params or {})


def draw_detection(img: np.ndarray, box: FaceBox) -> np.ndarray:
    """Overlay the detection box, landmarks, and score on a copy of the frame."""
    out = img.copy()
    x, y = int(round(box.x)), int(round(box.y))
    x2, y2 = int(round(box.x + box.w)), int(round(box.y + box.h))
    cv2.rectangle(out, (x, y), (x2, y2), (0, 200, 0), 2)
    for lx, ly in box.landmarks:
        cv2.circle(out, (int(round(lx)), int(round(ly))), 2, (0, 255, 255), -1)
    cv2.putText(
        out,
        f"{box.score:.2f}",
        (x, max(y - 6, 12)),
        cv2.FONT_HERSHEY_SIMPLEX,
        0.5,
        (0, 200, 0),
        1,
        cv2.LINE_AA,
    )
    return out


def encode_image_jpeg(
    img: np.ndarray, quality: int = 70, subsampling: int = 2
) -> Tuple[bytes, str]:
    """
    Encode image to JPEG bytes with speed-friendly params.
    Returns (bytes, content_type).
    """
    bgr = img.astype(np.uint8, copy=False)
    params = [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)]
    if hasattr(cv2, "IMWRITE_JPEG_SAMPLING_FACTOR"):
        factor_name = {
            0: "IMWRITE_JPEG_SAMPLING_FACTOR_444",
            1: "IMWRITE_JPEG_SAMPLING_FACTOR_422",
            2: "IMWRITE_JPEG_SAMPLING_FACTOR_420",
        }.get(int(subsampling))
        factor = getattr(cv2, factor_name, None) if factor_name else None
        if factor is not None:
            params += [int(cv2.IMWRITE_JPEG_SAMPLING_FACTOR), int(factor)]
    ok, buf = cv2.imencode(".jpg", bgr, params)
    if not ok:
        raise RuntimeError("opencv_imencode_failed")
    return buf.tobytes(), "image/jpeg"


__all__ = [
    "CAPTURE_SCORE_THRESHOLD",
    "FaceBox",
    "FaceDetection",
    "FaceDetector",
    "register_detector",
    "create_detector",
    "create_detector_from_loaded_config",
    "draw_detection",
    "encode_image_jpeg",
]
