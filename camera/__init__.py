from .base import (
    CameraConfig,
    CameraState,
    build_camera_config,
    VideoSource,
    register_camera,
    create_camera,
    create_camera_from_loaded_config,
)
from .monitor import CameraReadinessMonitor, MonitorState

__all__ = [
    "CameraConfig",
    "CameraState",
    "build_camera_config",
    "VideoSource",
    "register_camera",
    "create_camera",
    "create_camera_from_loaded_config",
    "CameraReadinessMonitor",
    "MonitorState",
]
