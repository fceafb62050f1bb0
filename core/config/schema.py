"""Typed config schema blocks shared by loader/validator/runtime."""

from dataclasses import dataclass, field
from typing import Any, Dict, List


class ConfigError(Exception):
    pass


@dataclass
class RuntimeConfig:
    log_level: str = "info"
    max_runtime_s: float = 0.0
    result_hold_s: float = 0.0
    history_size: int = 10


@dataclass
class CameraConfigBlock:
    type: str = "opencv"
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


@dataclass
class MonitorConfigBlock:
    poll_interval_s: float = 5.0
    log_every: int = 5
    startup_nudge_s: float = 1.0


@dataclass
class CaptureConfigBlock:
    settle_ms: int = 300


@dataclass
class DetectConfigBlock:
    impl: str = "yunet"
    config_file: str = ""
    preview_enabled: bool = True


@dataclass
class BackendConfigBlock:
    base_url: str = "http://127.0.0.1:5000/api"
    api_token: str = ""
    timeout_s: float = 8.0
    events_path: str = "/attendance-events"
    latest_event_path: str = "/attendance-events/latest/{employee_id}"
    work_hours_path: str = "/work-hours/{employee_id}"


@dataclass
class RecoveryConfigBlock:
    verify_enabled: bool = True
    verify_window_s: float = 60.0


@dataclass
class AutoConfigBlock:
    mode: str = "manual"
    default_event_type: str = "checkin"
    cooldown_ms: float = 3000.0
    descriptor_ttl_s: float = 3.0


@dataclass
class TriggerTcpConfigBlock:
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 9100
    ip_whitelist: List[str] = field(default_factory=list)
    max_line_bytes: int = 65536


@dataclass
class TriggerConfigBlock:
    tcp: TriggerTcpConfigBlock = field(default_factory=TriggerTcpConfigBlock)


@dataclass
class HmiConfigBlock:
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8000


@dataclass
class LoadedConfig:
    runtime: RuntimeConfig
    camera: CameraConfigBlock
    monitor: MonitorConfigBlock
    capture: CaptureConfigBlock
    detect: DetectConfigBlock
    backend: BackendConfigBlock
    recovery: RecoveryConfigBlock
    auto: AutoConfigBlock
    trigger: TriggerConfigBlock
    hmi: HmiConfigBlock
    detect_params: Dict[str, Any]
    paths: Dict[str, str] = field(default_factory=dict)


__all__ = [
    "ConfigError",
    "RuntimeConfig",
    "CameraConfigBlock",
    "MonitorConfigBlock",
    "CaptureConfigBlock",
    "DetectConfigBlock",
    "BackendConfigBlock",
    "RecoveryConfigBlock",
    "AutoConfigBlock",
    "TriggerTcpConfigBlock",
    "TriggerConfigBlock",
    "HmiConfigBlock",
    "LoadedConfig",
]
