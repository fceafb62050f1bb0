"""YAML loader and section builders for kiosk configuration."""

from __future__ import annotations

import glob
import os
from typing import Any

import yaml

from .schema import (
    AutoConfigBlock,
    BackendConfigBlock,
    CameraConfigBlock,
    CaptureConfigBlock,
    ConfigError,
    DetectConfigBlock,
    HmiConfigBlock,
    LoadedConfig,
    MonitorConfigBlock,
    RecoveryConfigBlock,
    RuntimeConfig,
    TriggerConfigBlock,
    TriggerTcpConfigBlock,
)

API_TOKEN_ENV = "KIOSK_API_TOKEN"

_FLAT_SECTIONS = {
    "runtime": RuntimeConfig,
    "monitor": MonitorConfigBlock,
    "capture": CaptureConfigBlock,
    "detect": DetectConfigBlock,
    "backend": BackendConfigBlock,
    "recovery": RecoveryConfigBlock,
    "auto": AutoConfigBlock,
    "hmi": HmiConfigBlock,
}


def load_config(config_dir: str = "config") -> LoadedConfig:
    main_path = _find_main_config(config_dir)
    main_data = _read_yaml(main_path)
    known = set(_FLAT_SECTIONS) | {"camera", "trigger"}
    for key in main_data:
        if key not in known:
            raise ConfigError(f"Unknown section '{key}' in {main_path}")

    blocks = {
        name: _build_section(cls, main_data.get(name), main_path, section=name)
        for name, cls in _FLAT_SECTIONS.items()
    }
    camera = _build_camera_config(main_data.get("camera"), main_path)
    trigger = _build_trigger_config(main_data.get("trigger"), main_path)

    backend: BackendConfigBlock = blocks["backend"]
    if not backend.api_token:
        backend.api_token = os.environ.get(API_TOKEN_ENV, "")

    detect: DetectConfigBlock = blocks["detect"]
    if not detect.config_file:
        raise ConfigError(f"detect.config_file is required in {main_path}")
    detect_path = detect.config_file
    if not os.path.isabs(detect_path):
        detect_path = os.path.join(config_dir, detect_path)
    if not os.path.exists(detect_path):
        raise ConfigError(f"Detect config not found: {detect_path}")
    detect_params = _read_yaml(detect_path)
    _resolve_model_paths(detect_params, os.path.dirname(os.path.abspath(detect_path)))

    return LoadedConfig(
        runtime=blocks["runtime"],
        camera=camera,
        monitor=blocks["monitor"],
        capture=blocks["capture"],
        detect=detect,
        backend=backend,
        recovery=blocks["recovery"],
        auto=blocks["auto"],
        trigger=trigger,
        hmi=blocks["hmi"],
        detect_params=detect_params,
        paths={
            "main": main_path,
            "detect": detect_path,
        },
    )


def _find_main_config(config_dir: str) -> str:
    candidates: list[str] = []
    for pattern in ("main_*.yaml", "main_*.yml"):
        candidates.extend(glob.glob(os.path.join(config_dir, pattern)))
    if len(candidates) == 0:
        raise ConfigError(f"No main_*.yaml found under {config_dir}")
    if len(candidates) > 1:
        raise ConfigError(
            f"Expected exactly one main_*.yaml, found: {', '.join(sorted(candidates))}"
        )
    return candidates[0]


def _read_yaml(path: str) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"YAML root must be a mapping: {path}")
    return data


def _build_dataclass(cls, data: dict[str, Any], main_path: str, section: str):
    obj = cls()
    fields = cls.__dataclass_fields__
    for k, v in (data or {}).items():
        if k in fields:
            setattr(obj, k, v)
        else:
            raise ConfigError(f"Unknown field {section}.{k} in {main_path}")
    return obj


def _build_section(cls, data: Any, main_path: str, section: str):
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigError(f"'{section}' must be a mapping in {main_path}")
    return _build_dataclass(cls, data, main_path, section)


def _build_trigger_config(data: Any, main_path: str) -> TriggerConfigBlock:
    if data is None:
        return TriggerConfigBlock()
    if not isinstance(data, dict):
        raise ConfigError(f"'trigger' must be a mapping in {main_path}")
    cfg = TriggerConfigBlock()
    for key in data:
        if key != "tcp":
            raise ConfigError(f"Unknown field trigger.{key} in {main_path}")
    cfg.tcp = _build_section(
        TriggerTcpConfigBlock, data.get("tcp"), main_path, section="trigger.tcp"
    )
    return cfg


def _build_camera_config(data: Any, main_path: str) -> CameraConfigBlock:
    if data is None:
        return CameraConfigBlock()
    if not isinstance(data, dict):
        raise ConfigError(f"'camera' must be a mapping in {main_path}")

    cfg = CameraConfigBlock()
    if "type" in data:
        cfg.type = str(data.get("type") or cfg.type)
    selected_type = str(cfg.type or "").strip()
    camera_fields = CameraConfigBlock.__dataclass_fields__

    def _apply_camera_fields(block: dict[str, Any], section: str):
        for k, v in block.items():
            if k in camera_fields and k != "type":
                setattr(cfg, k, v)
            else:
                raise ConfigError(f"Unknown field {section}.{k} in {main_path}")

    for key, value in data.items():
        if key in {"type", "common"}:
            continue
        if isinstance(value, dict):
            continue
        raise ConfigError(
            f"camera.{key} must be nested under camera.common or camera.{selected_type} in {main_path}"
        )

    common_data = data.get("common")
    if common_data is not None:
        if not isinstance(common_data, dict):
            raise ConfigError(f"'camera.common' must be a mapping in {main_path}")
        _apply_camera_fields(common_data, "camera.common")

    # Blocks for other camera types are ignored so one file can hold several.
    selected_block = data.get(selected_type)
    if selected_block is not None:
        if not isinstance(selected_block, dict):
            raise ConfigError(
                f"'camera.{selected_type}' must be a mapping in {main_path}"
            )
        _apply_camera_fields(selected_block, f"camera.{selected_type}")
    return cfg


def _resolve_model_paths(params: dict[str, Any], base_dir: str):
    for key in ("detector_model", "recognizer_model"):
        value = params.get(key)
        if isinstance(value, str) and value and not os.path.isabs(value):
            params[key] = os.path.normpath(os.path.join(base_dir, value))


__all__ = ["load_config", "API_TOKEN_ENV"]
