# -- coding: utf-8 --
"""Read-side cache of per-employee work hours, refreshed after attendance writes."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from core.lifecycle import AsyncTaskOwner

L = logging.getLogger("attendance_kiosk.output.work_hours")


class WorkHoursApi(Protocol):
    async def work_hours(self, employee_id: int | str, *, day: Any) -> Any: ...


class WorkHoursCache:
    def __init__(
        self,
        backend: WorkHoursApi,
        tasks: AsyncTaskOwner,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.backend = backend
        self.tasks = tasks
        self._clock = clock
        self._entries: dict[str, Any] = {}

    def get(self, employee_id: int | str) -> Any | None:
        return self._entries.get(str(employee_id))

    def invalidate(self, employee_id: int | str):
        """Drop the cached entry and schedule a background refresh."""
        self._entries.pop(str(employee_id), None)
        self.tasks.spawn(self.refresh(employee_id), name="work_hours.refresh")

    async def refresh(self, employee_id: int | str) -> Any | None:
        day = self._clock().astimezone().date()
        try:
            data = await self.backend.work_hours(employee_id, day=day)
        except Exception as e:
            # Refresh failures never affect the attendance result.
            L.warning("Work hours refresh for employee %s failed: %s", employee_id, e)
            return None
        self._entries[str(employee_id)] = data
        L.debug("Work hours refreshed for employee %s", employee_id)
        return data


__all__ = ["WorkHoursCache"]
