# -- coding: utf-8 --
"""Camera readiness monitor: decides when the live feed can be captured."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from camera.base import VideoSource
from core.lifecycle import AsyncTaskOwner

L = logging.getLogger("attendance_kiosk.camera.monitor")

POLL_INTERVAL_S = 5.0
LOG_EVERY = 5
STARTUP_NUDGE_S = 1.0


@dataclass
class MonitorState:
    is_mounted: bool = False
    check_count: int = 0
    ready: bool = False


class CameraReadinessMonitor:
    def __init__(
        self,
        source: VideoSource | None,
        *,
        poll_interval_s: float = POLL_INTERVAL_S,
        log_every: int = LOG_EVERY,
        startup_nudge_s: float = STARTUP_NUDGE_S,
    ):
        self.source = source
        self.poll_interval_s = max(float(poll_interval_s), 0.01)
        self.log_every = max(int(log_every), 1)
        self.startup_nudge_s = float(startup_nudge_s)
        self.state = MonitorState()
        self._observers: list[Callable[[bool], None]] = []
        self._tasks = AsyncTaskOwner(logger=L, owner_name="camera_monitor")

    @property
    def is_ready(self) -> bool:
        return self.state.ready

    def subscribe(self, observer: Callable[[bool], None]):
        self._observers.append(observer)

    def is_actively_disabled(self) -> bool:
        return self.source is not None and not self.source.enabled

    def poll(self, log_details: bool = False) -> bool:
        """Read the feed state now and report whether it can be captured."""
        ready = False
        cam_state = None
        if self.source is not None:
            try:
                cam_state = self.source.state()
            except Exception:
                L.exception("Camera state read failed")
            else:
                ready = cam_state.is_ready
        if log_details:
            L.debug(
                "Camera check #%d: ready=%s state=%s enabled=%s",
                self.state.check_count,
                ready,
                cam_state,
                self.source.enabled if self.source is not None else None,
            )
        if ready != self.state.ready:
            self.state.ready = ready
            L.info("Camera %s", "ready" if ready else "not ready")
            for observer in list(self._observers):
                try:
                    observer(ready)
                except Exception:
                    L.exception("Camera readiness observer failed: %r", observer)
        return ready

    def tick(self) -> bool:
        self.state.check_count += 1
        return self.poll(log_details=self.state.check_count % self.log_every == 0)

    async def _poll_loop(self):
        while self.state.is_mounted:
            self.tick()
            await asyncio.sleep(self.poll_interval_s)

    def _startup_nudge(self):
        if not self.state.is_mounted or self.source is None:
            return
        if self.state.ready:
            return
        L.debug("Camera not playing after %.1fs; nudging playback", self.startup_nudge_s)
        self.source.nudge()
        self.poll()

    def start(self):
        if self.state.is_mounted:
            return
        self.state = MonitorState(is_mounted=True)
        self._tasks.spawn(self._poll_loop(), name="camera_monitor.poll")
        if self.startup_nudge_s > 0:
            self._tasks.call_later(
                self.startup_nudge_s, self._startup_nudge, name="camera_monitor.nudge"
            )

    async def stop(self):
        self.state.is_mounted = False
        await self._tasks.cancel_all(timeout=0.5)

    def raise_if_failed(self):
        self._tasks.raise_if_failed()


__all__ = ["CameraReadinessMonitor", "MonitorState"]
