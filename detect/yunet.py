import logging
import os
import threading

import cv2
import numpy as np

from .base import CAPTURE_SCORE_THRESHOLD, FaceBox, FaceDetection, register_detector

L = logging.getLogger("attendance_kiosk.detection.yunet")

_SCORE_COL = 14


def _row_to_box(row: np.ndarray) -> FaceBox:
    landmarks = [(float(row[4 + 2 * i]), float(row[5 + 2 * i])) for i in range(5)]
    return FaceBox(
        x=float(row[0]),
        y=float(row[1]),
        w=float(row[2]),
        h=float(row[3]),
        score=float(row[_SCORE_COL]),
        landmarks=landmarks,
    )


@register_detector("yunet")
class YuNetFaceDetector:
    """OpenCV YuNet face detector paired with the SFace embedding model.

    YuNet yields a box plus five landmarks per face; SFace aligns the crop on
    those landmarks and returns a 128-d feature vector.
    """

    def __init__(self, params: dict):
        self.detector_model = str(params.get("detector_model", ""))
        self.recognizer_model = str(params.get("recognizer_model", ""))
        self.score_threshold = float(
            params.get("score_threshold", CAPTURE_SCORE_THRESHOLD)
        )
        self.nms_threshold = float(params.get("nms_threshold", 0.3))
        self.top_k = int(params.get("top_k", 50))
        self.min_face_px = int(params.get("min_face_px", 40))
        self._validate()
        self._lock = threading.Lock()
        self._detector = cv2.FaceDetectorYN.create(
            self.detector_model,
            "",
            (320, 320),
            self.score_threshold,
            self.nms_threshold,
            self.top_k,
        )
        self._recognizer = cv2.FaceRecognizerSF.create(self.recognizer_model, "")
        L.info(
            "YuNet detector loaded: model=%s score_threshold=%.2f",
            os.path.basename(self.detector_model),
            self.score_threshold,
        )

    def _validate(self):
        if not 0.0 < self.score_threshold <= 1.0:
            raise ValueError("score_threshold must be in (0, 1]")
        if not 0.0 < self.nms_threshold <= 1.0:
            raise ValueError("nms_threshold must be in (0, 1]")
        if self.top_k < 1:
            raise ValueError("top_k must be >= 1")
        for key, path in (
            ("detector_model", self.detector_model),
            ("recognizer_model", self.recognizer_model),
        ):
            if not path:
                raise ValueError(f"{key} is required")
            if not os.path.isfile(path):
                raise ValueError(f"{key} not found: {path}")

    def _best_face(self, img: np.ndarray) -> np.ndarray | None:
        if img is None or img.size == 0:
            return None
        h, w = img.shape[:2]
        with self._lock:
            self._detector.setInputSize((w, h))
            _, faces = self._detector.detect(img.astype(np.uint8, copy=False))
        if faces is None or len(faces) == 0:
            return None
        faces = faces[faces[:, 2] >= self.min_face_px]
        if len(faces) == 0:
            return None
        return faces[int(np.argmax(faces[:, _SCORE_COL]))]

    def detect_face(self, img: np.ndarray) -> FaceBox | None:
        row = self._best_face(img)
        return _row_to_box(row) if row is not None else None

    def detect_with_descriptor(self, img: np.ndarray) -> FaceDetection | None:
        row = self._best_face(img)
        if row is None:
            return None
        with self._lock:
            aligned = self._recognizer.alignCrop(img, row)
            feature = self._recognizer.feature(aligned)
        vec = np.asarray(feature, dtype=np.float32).reshape(-1)
        if vec.size == 0 or not np.all(np.isfinite(vec)):
            L.debug("SFace returned an unusable feature vector")
            return None
        return FaceDetection(box=_row_to_box(row), descriptor=vec)


__all__ = ["YuNetFaceDetector"]
