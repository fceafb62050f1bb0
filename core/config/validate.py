"""Kiosk config value validation."""

from __future__ import annotations

from typing import Any

from .schema import ConfigError, LoadedConfig

_LOG_LEVELS = {"debug", "info", "warning", "warn", "error", "critical"}
_CAMERA_TYPES = {"opencv", "mock"}
_MODES = {"manual", "auto"}
_EVENT_TYPES = {"checkin", "checkout"}


def validate_config(cfg: LoadedConfig) -> None:
    # runtime
    _require_choice("runtime.log_level", cfg.runtime.log_level, _LOG_LEVELS)
    _require_float("runtime.max_runtime_s", cfg.runtime.max_runtime_s, min_v=0.0)
    _require_float("runtime.result_hold_s", cfg.runtime.result_hold_s, min_v=0.0)
    _require_int("runtime.history_size", cfg.runtime.history_size, min_v=1)

    # camera
    _require_choice("camera.type", cfg.camera.type, _CAMERA_TYPES)
    _require_int("camera.device_index", cfg.camera.device_index, min_v=0)
    _require_int("camera.width", cfg.camera.width, min_v=0)
    _require_int("camera.height", cfg.camera.height, min_v=0)
    _require_int("camera.fps", cfg.camera.fps, min_v=0)
    _require_int("camera.buffer_size", cfg.camera.buffer_size, min_v=1)
    _require_int("camera.open_retries", cfg.camera.open_retries, min_v=1)
    _require_float("camera.retry_delay_s", cfg.camera.retry_delay_s, min_v=0.0)
    _require_int("camera.read_fail_limit", cfg.camera.read_fail_limit, min_v=1)
    if cfg.camera.type == "mock" and not str(cfg.camera.image_dir or "").strip():
        raise ConfigError("camera.image_dir is required for the mock camera")

    # monitor / capture
    _require_float("monitor.poll_interval_s", cfg.monitor.poll_interval_s, min_v=0.1)
    _require_int("monitor.log_every", cfg.monitor.log_every, min_v=1)
    _require_float("monitor.startup_nudge_s", cfg.monitor.startup_nudge_s, min_v=0.0)
    _require_int("capture.settle_ms", cfg.capture.settle_ms, min_v=0, max_v=5000)

    # backend / recovery
    _require_url("backend.base_url", cfg.backend.base_url)
    _require_float("backend.timeout_s", cfg.backend.timeout_s, min_v=0.1)
    for name in ("events_path", "latest_event_path", "work_hours_path"):
        _require_path(f"backend.{name}", getattr(cfg.backend, name))
    for name in ("latest_event_path", "work_hours_path"):
        if "{employee_id}" not in getattr(cfg.backend, name):
            raise ConfigError(f"backend.{name} must contain '{{employee_id}}'")
    _require_float(
        "recovery.verify_window_s", cfg.recovery.verify_window_s, min_v=0.0
    )

    # auto
    _require_choice("auto.mode", cfg.auto.mode, _MODES)
    _require_choice(
        "auto.default_event_type", cfg.auto.default_event_type, _EVENT_TYPES
    )
    _require_float("auto.cooldown_ms", cfg.auto.cooldown_ms, min_v=0.0)
    _require_float("auto.descriptor_ttl_s", cfg.auto.descriptor_ttl_s, min_v=0.0)

    # trigger / hmi
    _require_port("trigger.tcp.port", cfg.trigger.tcp.port)
    _require_str_list("trigger.tcp.ip_whitelist", cfg.trigger.tcp.ip_whitelist)
    _require_int("trigger.tcp.max_line_bytes", cfg.trigger.tcp.max_line_bytes, min_v=1024)
    _require_port("hmi.port", cfg.hmi.port)


def _require_int(
    name: str, value: Any, *, min_v: int | None = None, max_v: int | None = None
) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer")
    try:
        iv = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be an integer") from e
    if min_v is not None and iv < min_v:
        op = ">=" if min_v != 1 else ">"
        threshold = min_v if min_v != 1 else 0
        raise ConfigError(f"{name} must be {op} {threshold}")
    if max_v is not None and iv > max_v:
        raise ConfigError(f"{name} must be <= {max_v}")
    return iv


def _require_float(
    name: str, value: Any, *, min_v: float | None = None, max_v: float | None = None
) -> float:
    try:
        fv = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be a number") from e
    if min_v is not None and fv < min_v:
        raise ConfigError(f"{name} must be >= {min_v:g}")
    if max_v is not None and fv > max_v:
        raise ConfigError(f"{name} must be <= {max_v:g}")
    return fv


def _require_port(name: str, value: Any) -> int:
    return _require_int(name, value, min_v=1, max_v=65535)


def _require_choice(name: str, value: Any, choices: set[str]) -> str:
    sv = str(value or "").strip().lower()
    if sv not in choices:
        raise ConfigError(f"{name} must be one of {sorted(choices)}, got {value!r}")
    return sv


def _require_url(name: str, value: Any) -> str:
    sv = str(value or "").strip()
    if not sv.startswith(("http://", "https://")):
        raise ConfigError(f"{name} must be an http(s) URL")
    return sv


def _require_path(name: str, value: Any) -> str:
    sv = str(value or "")
    if not sv.startswith("/"):
        raise ConfigError(f"{name} must start with '/'")
    return sv


def _require_str_list(name: str, value: Any) -> list[str]:
    if not isinstance(value, list):
        raise ConfigError(f"{name} must be a list of strings")
    for i, item in enumerate(value):
        if not isinstance(item, str):
            raise ConfigError(f"{name}[{i}] must be a string")
    return value


__all__ = ["validate_config"]
