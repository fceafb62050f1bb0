from .base import (
    SourceConfig,
    BaseRecognizerSource,
    register_source,
    create_source,
    build_source_config_from_loaded_config,
)
from .auto import AutoProcessingController, ProcessingMode

__all__ = [
    "SourceConfig",
    "BaseRecognizerSource",
    "register_source",
    "create_source",
    "build_source_config_from_loaded_config",
    "AutoProcessingController",
    "ProcessingMode",
]
