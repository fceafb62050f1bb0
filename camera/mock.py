# -- coding: utf-8 --

import logging
import os
import random
import re
import time
from contextlib import contextmanager

import cv2
import numpy as np

from camera.base import CameraConfig, VideoSource, register_camera
from core.contracts import CameraState

L = logging.getLogger("attendance_kiosk.camera.mock")

_SUPPORTED_EXTS = {".jpg", ".jpeg", ".png", ".bmp"}
_ORDER_CHOICES = {"name_asc", "name_desc", "name_natural", "mtime_asc", "random"}
_END_CHOICES = {"loop", "stop", "hold"}


def _natural_key(name: str):
    return [int(p) if p.isdigit() else p.lower() for p in re.split(r"(\d+)", name)]


def _resolve_image_dir(path: str) -> str:
    base = str(path or "").strip()
    if not base:
        raise RuntimeError("mock image_dir is required")
    base = os.path.abspath(base)
    if not os.path.isdir(base):
        raise RuntimeError(f"mock image_dir not found: {base}")
    return base


def _list_images(root_dir: str) -> list[str]:
    return [
        os.path.join(root_dir, name)
        for name in os.listdir(root_dir)
        if os.path.isfile(os.path.join(root_dir, name))
        and os.path.splitext(name)[1].lower() in _SUPPORTED_EXTS
    ]


def _sort_images(paths: list[str], order: str) -> list[str]:
    if order == "name_desc":
        return sorted(paths, key=lambda p: os.path.basename(p).lower(), reverse=True)
    if order == "name_natural":
        return sorted(paths, key=lambda p: _natural_key(os.path.basename(p)))
    if order == "mtime_asc":
        return sorted(paths, key=os.path.getmtime)
    if order == "random":
        shuffled = list(paths)
        random.shuffle(shuffled)
        return shuffled
    return sorted(paths, key=lambda p: os.path.basename(p).lower())


def _imread_any(path: str) -> np.ndarray | None:
    arr = cv2.imread(path, cv2.IMREAD_COLOR)
    if arr is not None:
        return arr
    # cv2.imread cannot open non-ASCII paths on some platforms.
    data = np.fromfile(path, dtype=np.uint8)
    if data.size == 0:
        return None
    return cv2.imdecode(data, cv2.IMREAD_COLOR)


@register_camera("mock")
class MockCamera(VideoSource):
    """Plays a directory of still images as if it were a live feed.

    Each ``read_frame`` advances to the next image. Useful for running the
    kiosk without a webcam and for demos with prepared faces.
    """

    def __init__(self, cfg: CameraConfig):
        super().__init__(cfg)
        self._paths: list[str] = []
        self._pos = 0
        self._root_dir = ""
        self._order = str(cfg.order or "name_asc").strip().lower()
        self._end_mode = str(cfg.end_mode or "loop").strip().lower()
        self._open = False
        self._paused = True
        self._ended = False
        self._played_ms = 0.0
        self._resumed_at: float | None = None

    def _scan(self):
        if self._order not in _ORDER_CHOICES:
            raise RuntimeError(
                f"mock order must be one of {sorted(_ORDER_CHOICES)}, got {self._order!r}"
            )
        if self._end_mode not in _END_CHOICES:
            raise RuntimeError(
                f"mock end_mode must be one of {sorted(_END_CHOICES)}, got {self._end_mode!r}"
            )
        self._paths = _sort_images(_list_images(self._root_dir), self._order)
        if not self._paths:
            raise RuntimeError(f"no images found in {self._root_dir}")
        self._pos = 0

    def _next_path(self) -> str | None:
        if self._pos < len(self._paths):
            path = self._paths[self._pos]
            self._pos += 1
            return path
        if self._end_mode == "loop":
            if self._order == "random":
                self._paths = _sort_images(self._paths, self._order)
            self._pos = 1
            return self._paths[0]
        if self._end_mode == "hold":
            return self._paths[-1]
        self._ended = True
        return None

    def state(self) -> CameraState:
        with self.lock:
            played = self._played_ms
            if self._resumed_at is not None:
                played += (time.perf_counter() - self._resumed_at) * 1000.0
            return CameraState(
                has_stream=self._open,
                position_ms=played,
                paused=self._paused,
                ended=self._ended,
            )

    def read_frame(self) -> np.ndarray | None:
        with self.lock:
            if not self._open or self._paused:
                return None
            path = self._next_path()
        if path is None:
            return None
        arr = _imread_any(path)
        if arr is None:
            L.warning("mock image unreadable: %s", path)
            return None
        L.debug("mock frame @ %s", os.path.relpath(path))
        return arr

    def pause(self):
        with self.lock:
            if self._resumed_at is not None:
                self._played_ms += (time.perf_counter() - self._resumed_at) * 1000.0
            self._resumed_at = None
            self._paused = True

    def resume(self):
        with self.lock:
            if not self._open or self._ended:
                return
            if self._resumed_at is None:
                self._resumed_at = time.perf_counter()
            self._paused = False

    @contextmanager
    def session(self):
        self._root_dir = _resolve_image_dir(self.cfg.image_dir)
        self._scan()
        self._open = True
        self.resume()
        L.info("Mock camera playing %d images from %s", len(self._paths), self._root_dir)
        try:
            yield self
        finally:
            self.pause()
            self._open = False


__all__ = ["MockCamera"]
