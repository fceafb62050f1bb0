from .client import (
    AttendanceApiClient,
    BackendConfig,
    BackendError,
    build_backend_config,
)

__all__ = [
    "AttendanceApiClient",
    "BackendConfig",
    "BackendError",
    "build_backend_config",
]
