# -- coding: utf-8 --

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable

from core.contracts import RecognitionEvent
from core.registry import Registry

_registry: Registry[type["BaseRecognizerSource"]] = Registry(
    package=__package__ or "trigger", label="recognizer source"
)

OnRecognition = Callable[[RecognitionEvent], object]


@dataclass
class SourceConfig:
    host: str = "127.0.0.1"
    port: int = 9100
    ip_whitelist: list[str] = field(default_factory=list)
    max_line_bytes: int = 65536


class BaseRecognizerSource(ABC):
    """Push source of already-computed face descriptors (passive recognition)."""

    def __init__(self, cfg: SourceConfig, on_recognition: OnRecognition):
        self.cfg = cfg
        self.on_recognition = on_recognition

    @abstractmethod
    async def start(self):
        pass

    @abstractmethod
    async def stop(self):
        pass

    def raise_if_failed(self):
        return None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()


def register_source(name: str):
    return _registry.register(name)


def create_source(
    name: str, cfg: SourceConfig, on_recognition: OnRecognition, **kwargs
) -> BaseRecognizerSource:
    cls = _registry.resolve(name)
    return cls(cfg, on_recognition, **kwargs)


def build_source_config_from_loaded_config(cfg) -> SourceConfig:
    tcp = cfg.trigger.tcp
    return SourceConfig(
        host=str(tcp.host),
        port=int(tcp.port),
        ip_whitelist=list(tcp.ip_whitelist or []),
        max_line_bytes=int(tcp.max_line_bytes),
    )


__all__ = [
    "SourceConfig",
    "BaseRecognizerSource",
    "register_source",
    "create_source",
    "build_source_config_from_loaded_config",
]
