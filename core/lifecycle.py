"""Ownership of background asyncio tasks for long-lived services."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any, Callable

L = logging.getLogger("attendance_kiosk.runtime")


class AsyncTaskOwner:
    """Track fire-and-forget tasks so they can be cancelled and health-checked."""

    def __init__(self, *, logger: logging.Logger | None = None, owner_name: str = "async_service"):
        self._logger = logger or L
        self._owner_name = owner_name
        self._tasks: set[asyncio.Task[Any]] = set()
        self._failure: BaseException | None = None

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(
            coro, name=name or f"{self._owner_name}.task"
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def call_later(self, delay_s: float, fn: Callable[[], Any], *, name: str | None = None) -> asyncio.Task[Any]:
        async def _delayed():
            await asyncio.sleep(max(delay_s, 0.0))
            fn()

        return self.spawn(_delayed(), name=name)

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        err = task.exception()
        if err is None:
            return
        self._logger.error(
            "%s task %s failed", self._owner_name, task.get_name(), exc_info=err
        )
        if self._failure is None:
            self._failure = err

    def raise_if_failed(self) -> None:
        err = self._failure
        if err is None:
            return
        raise RuntimeError(
            f"{self._owner_name} task stopped unexpectedly ({type(err).__name__})"
        ) from err

    async def cancel_all(self, timeout: float = 1.0) -> None:
        tasks = [t for t in self._tasks if not t.done()]
        if not tasks:
            return
        names = [t.get_name() for t in tasks[:10]]
        suffix = f" (+{len(tasks) - 10} more)" if len(tasks) > 10 else ""
        self._logger.debug(
            "%s cancelling pending_tasks=%d names=%s%s",
            self._owner_name,
            len(tasks),
            ", ".join(names),
            suffix,
        )
        for t in tasks:
            t.cancel()
        _, still_pending = await asyncio.wait(tasks, timeout=timeout)
        if still_pending:
            self._logger.warning(
                "%s tasks still pending after %.2fs", self._owner_name, timeout
            )


__all__ = ["AsyncTaskOwner"]
