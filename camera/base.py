# -- coding: utf-8 --

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass

import numpy as np

from core.contracts import CameraState
from core.registry import Registry

L = logging.getLogger("attendance_kiosk.camera")

_registry: Registry[type["VideoSource"]] = Registry(
    package=__package__ or "camera", label="camera type"
)


@dataclass
class CameraConfig:
    device_index: int = 0
    width: int = 640
    height: int = 480
    fps: int = 15
    buffer_size: int = 1
    open_retries: int = 3
    retry_delay_s: float = 2.0
    read_fail_limit: int = 30
    image_dir: str = ""
    order: str = "name_asc"
    end_mode: str = "loop"
    frame_interval_ms: int = 66


def build_camera_config(cfg_block) -> CameraConfig:
    return CameraConfig(
        device_index=int(cfg_block.device_index),
        width=int(cfg_block.width),
        height=int(cfg_block.height),
        fps=int(cfg_block.fps),
        buffer_size=int(cfg_block.buffer_size),
        open_retries=int(cfg_block.open_retries),
        retry_delay_s=float(cfg_block.retry_delay_s),
        read_fail_limit=int(cfg_block.read_fail_limit),
        image_dir=str(cfg_block.image_dir),
        order=str(cfg_block.order),
        end_mode=str(cfg_block.end_mode),
        frame_interval_ms=int(cfg_block.frame_interval_ms),
    )


class VideoSource(ABC):
    """A live video element: reports playback state and hands out frames.

    ``enabled`` is the operator's switch. A disabled source is not the same
    as a source that is still warming up.
    """

    def __init__(self, cfg: CameraConfig):
        self.cfg = cfg
        self.lock = threading.Lock()
        self._enabled = True

    @property
    def enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool):
        if bool(enabled) == self._enabled:
            return
        self._enabled = bool(enabled)
        if self._enabled:
            self.resume()
        else:
            self.pause()
        L.info("Camera %s by operator", "enabled" if enabled else "disabled")

    @abstractmethod
    def state(self) -> CameraState:
        """Snapshot of the playback state; must not block."""

    @abstractmethod
    def read_frame(self) -> np.ndarray | None:
        """Return the current BGR frame, or None when nothing is available."""

    @abstractmethod
    def pause(self):
        pass

    @abstractmethod
    def resume(self):
        pass

    def nudge(self):
        """Pause and resume playback to coax lazy hardware into streaming."""
        if not self._enabled:
            return
        self.pause()
        self.resume()

    @contextmanager
    @abstractmethod
    def session(self):
        """Manage camera lifecycle."""
        yield


def register_camera(name: str):
    return _registry.register(name)


def create_camera(name: str, cfg: CameraConfig) -> VideoSource:
    cls = _registry.resolve(name)
    return cls(cfg)


def create_camera_from_loaded_config(cfg) -> VideoSource:
    return create_camera(cfg.camera.type, build_camera_config(cfg.camera))


__all__ = [
    "CameraConfig",
    "CameraState",
    "build_camera_config",
    "VideoSource",
    "register_camera",
    "create_camera",
    "create_camera_from_loaded_config",
]
