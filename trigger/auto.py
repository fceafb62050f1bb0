# -- coding: utf-8 --
"""Manual/auto processing switch for passive recognition events."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from core.contracts import EventType, FaceDescriptor, RecognitionEvent, RecognitionStatus
from core.lifecycle import AsyncTaskOwner
from core.orchestrator import AttendanceOrchestrator
from core.state import RecognitionSnapshot

L = logging.getLogger("attendance_kiosk.trigger.auto")


class ProcessingMode(str, Enum):
    MANUAL = "manual"
    AUTO = "auto"


@dataclass(slots=True)
class _Recorded:
    descriptor: FaceDescriptor
    at: float
    source: str


class AutoProcessingController:
    """Routes recognizer pushes either straight into a submission or into a slot.

    AUTO submits each passive recognition with the event type in effect,
    skipping the capture pipeline. MANUAL only remembers the latest descriptor
    so the next explicit trigger can reuse it once. Switching modes never
    touches a submission that is already running.
    """

    def __init__(
        self,
        orchestrator: AttendanceOrchestrator,
        tasks: AsyncTaskOwner,
        *,
        mode: ProcessingMode = ProcessingMode.MANUAL,
        cooldown_ms: float = 3000.0,
        descriptor_ttl_s: float = 3.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.orchestrator = orchestrator
        self.state = orchestrator.state
        self.tasks = tasks
        self._mode = ProcessingMode(mode)
        self.cooldown_ms = max(float(cooldown_ms), 0.0)
        self.descriptor_ttl_s = max(float(descriptor_ttl_s), 0.0)
        self._clock = clock
        self._recorded: _Recorded | None = None
        self._last_auto_ts: float | None = None
        self._auto_pending = False

    @property
    def mode(self) -> ProcessingMode:
        return self._mode

    def set_mode(self, mode: ProcessingMode | str):
        mode = ProcessingMode(mode)
        if mode is self._mode:
            return
        self._mode = mode
        self._recorded = None
        L.info("Processing mode -> %s", mode.value)

    @property
    def event_type(self) -> EventType:
        return self.state.event_type

    def set_event_type(self, event_type: EventType | str) -> bool:
        return self.state.set_event_type(EventType.parse(event_type))

    @property
    def has_recorded_descriptor(self) -> bool:
        return self._fresh_recorded() is not None

    def on_recognition(self, event: RecognitionEvent) -> bool:
        """Handle one push from a recognizer source; True when a submission started."""
        if event.descriptor is None:
            return False
        now = self._clock()
        if self._mode is ProcessingMode.MANUAL:
            self._recorded = _Recorded(event.descriptor, now, event.source)
            L.debug("Recorded descriptor from %s for next manual trigger", event.source)
            return False

        if self._auto_pending or self.orchestrator.is_processing:
            L.debug("Auto drop from %s: cycle in flight", event.source)
            return False
        if self.state.status is not RecognitionStatus.WAITING:
            L.debug("Auto drop from %s: result still displayed", event.source)
            return False
        if (
            self._last_auto_ts is not None
            and (now - self._last_auto_ts) * 1000 < self.cooldown_ms
        ):
            L.debug("Auto cooldown drop from %s", event.source)
            return False
        self._auto_pending = True
        self.tasks.spawn(
            self._auto_submit(self.event_type, event.descriptor, now),
            name="auto.submit",
        )
        return True

    async def _auto_submit(
        self, event_type: EventType, descriptor: FaceDescriptor, pushed_at: float
    ):
        try:
            result = await self.orchestrator.submit(event_type, descriptor, source="AUTO")
        finally:
            self._auto_pending = False
        # Only a started cycle consumes the cooldown; gate rejections do not.
        if isinstance(result, RecognitionSnapshot):
            self._last_auto_ts = pushed_at

    def request_manual(self, event_type: EventType | str | None = None) -> bool:
        """Explicit user trigger; reuses a fresh recorded descriptor once."""
        if self.orchestrator.is_processing:
            return False
        et = EventType.parse(event_type) if event_type is not None else self.event_type
        if et is not self.event_type:
            self.set_event_type(et)
        recorded = self._fresh_recorded()
        self._recorded = None
        self.tasks.spawn(
            self.orchestrator.submit(
                et, recorded.descriptor if recorded else None, source="MANUAL"
            ),
            name="manual.submit",
        )
        return True

    def clear(self):
        self._recorded = None

    def _fresh_recorded(self) -> _Recorded | None:
        rec = self._recorded
        if rec is None:
            return None
        if (self._clock() - rec.at) > self.descriptor_ttl_s:
            return None
        return rec


__all__ = ["ProcessingMode", "AutoProcessingController"]
