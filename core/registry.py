from __future__ import annotations

import importlib
from typing import Generic, TypeVar

T = TypeVar("T")


class Registry(Generic[T]):
    """Named factories, with a lazy import of ``<package>.<name>`` on first use."""

    def __init__(self, package: str, label: str):
        self.package = package
        self.label = label
        self._items: dict[str, T] = {}

    def register(self, name: str):
        def decorator(obj: T) -> T:
            self._items[name] = obj
            return obj

        return decorator

    def names(self) -> list[str]:
        return sorted(self._items)

    def resolve(self, name: str) -> T:
        import_err: Exception | None = None
        if name not in self._items:
            try:
                importlib.import_module(f"{self.package}.{name}")
            except ImportError as e:
                import_err = e
        if name not in self._items:
            hint = f" (import failed: {import_err})" if import_err else ""
            raise ValueError(
                f"Unknown {self.label} '{name}'. "
                f"Available: {', '.join(self.names()) or 'none'}{hint}"
            )
        return self._items[name]


__all__ = ["Registry"]
