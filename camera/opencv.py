# -- coding: utf-8 --

import logging
import threading
import time
from contextlib import contextmanager

import cv2
import numpy as np

from camera.base import CameraConfig, VideoSource, register_camera
from core.contracts import CameraState

L = logging.getLogger("attendance_kiosk.camera.opencv")


@register_camera("opencv")
class OpenCvCamera(VideoSource):
    """USB/V4L webcam read continuously on a background thread.

    The reader keeps only the latest frame; ``read_frame`` hands out a copy.
    ``position_ms`` counts playback time since the first delivered frame and
    stops advancing while paused.
    """

    def __init__(self, cfg: CameraConfig):
        super().__init__(cfg)
        self._cap: cv2.VideoCapture | None = None
        self._thread: threading.Thread | None = None
        self._stop_evt = threading.Event()
        self._latest: np.ndarray | None = None
        self._paused = False
        self._ended = False
        self._position_ms = 0.0
        self._last_frame_ts: float | None = None
        self._fail_count = 0

    def state(self) -> CameraState:
        with self.lock:
            return CameraState(
                has_stream=self._cap is not None and not self._stop_evt.is_set(),
                position_ms=self._position_ms,
                paused=self._paused,
                ended=self._ended,
            )

    def read_frame(self) -> np.ndarray | None:
        with self.lock:
            if self._latest is None:
                return None
            return self._latest.copy()

    def pause(self):
        with self.lock:
            self._paused = True
            self._last_frame_ts = None

    def resume(self):
        with self.lock:
            self._paused = False

    def _open(self) -> cv2.VideoCapture:
        cfg = self.cfg
        for attempt in range(max(cfg.open_retries, 1)):
            cap = cv2.VideoCapture(cfg.device_index)
            if cap.isOpened():
                if cfg.width > 0:
                    cap.set(cv2.CAP_PROP_FRAME_WIDTH, cfg.width)
                if cfg.height > 0:
                    cap.set(cv2.CAP_PROP_FRAME_HEIGHT, cfg.height)
                if cfg.fps > 0:
                    cap.set(cv2.CAP_PROP_FPS, cfg.fps)
                cap.set(cv2.CAP_PROP_BUFFERSIZE, cfg.buffer_size)
                L.info(
                    "Camera %d opened: %dx%d",
                    cfg.device_index,
                    int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
                    int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
                )
                return cap
            cap.release()
            if attempt < cfg.open_retries - 1:
                L.warning(
                    "Camera %d not available, retrying (%d/%d)",
                    cfg.device_index,
                    attempt + 1,
                    cfg.open_retries,
                )
                time.sleep(cfg.retry_delay_s)
        raise RuntimeError(f"Unable to open camera index {cfg.device_index}")

    def _reader_loop(self):
        cap = self._cap
        assert cap is not None
        idle_s = 1.0 / max(self.cfg.fps, 1)
        while not self._stop_evt.is_set():
            with self.lock:
                paused = self._paused
            if paused:
                time.sleep(idle_s)
                continue
            ok, frame = cap.read()
            now = time.perf_counter()
            with self.lock:
                if not ok or frame is None:
                    self._fail_count += 1
                    if self._fail_count >= self.cfg.read_fail_limit and not self._ended:
                        self._ended = True
                        L.warning(
                            "Camera stream ended after %d failed reads",
                            self._fail_count,
                        )
                else:
                    self._fail_count = 0
                    self._ended = False
                    self._latest = frame
                    if self._last_frame_ts is not None:
                        self._position_ms += (now - self._last_frame_ts) * 1000.0
                    elif self._position_ms == 0.0:
                        # First frame ever: playback has started.
                        self._position_ms = idle_s * 1000.0
                    self._last_frame_ts = now
            if not ok:
                time.sleep(idle_s)

    @contextmanager
    def session(self):
        self._cap = self._open()
        self._stop_evt.clear()
        self._thread = threading.Thread(
            target=self._reader_loop, name="opencv_camera.reader", daemon=True
        )
        self._thread.start()
        try:
            yield self
        finally:
            self._stop_evt.set()
            if self._thread is not None:
                self._thread.join(timeout=2.0)
            self._thread = None
            if self._cap is not None:
                self._cap.release()
            self._cap = None
            L.info("Camera %d released", self.cfg.device_index)


__all__ = ["OpenCvCamera"]
