# -- coding: utf-8 --
"""OutputManager: keep cycle history and fan snapshots out to output channels."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import asdict
from typing import Any, Protocol

from core.capture import CaptureOutput
from core.contracts import CycleRecord, RecognitionStatus
from core.orchestrator import Rejection
from core.state import RecognitionSnapshot

L = logging.getLogger("attendance_kiosk.output")


class OutputChannel(Protocol):
    async def start(self): ...
    async def stop(self): ...
    def publish(self, rec: CycleRecord, overlay: tuple[bytes, str] | None): ...
    def raise_if_failed(self): ...


class CycleStore:
    def __init__(self, max_records: int = 10):
        self._max_records = max_records
        self._records: deque[CycleRecord] = deque(maxlen=max_records)
        self._latest_overlay: tuple[bytes, str] | None = None
        self._detection_info: dict[str, Any] | None = None
        self._lock = threading.Lock()
        self.total_count = 0
        self.success_count = 0
        self.warning_count = 0
        self.inferred_count = 0
        self.error_count = 0

    def submit(self, rec: CycleRecord):
        with self._lock:
            self._records.appendleft(rec)
            self.total_count += 1
            if rec.result == RecognitionStatus.SUCCESS.value:
                self.success_count += 1
                if rec.warning:
                    self.warning_count += 1
                if rec.inferred:
                    self.inferred_count += 1
            else:
                self.error_count += 1

    def set_overlay(self, overlay: tuple[bytes, str] | None, info: dict[str, Any] | None):
        with self._lock:
            self._latest_overlay = overlay
            self._detection_info = info

    @property
    def latest_records(self) -> list[CycleRecord]:
        with self._lock:
            return list(self._records)

    @property
    def max_records(self) -> int:
        return self._max_records

    def latest_overlay(self) -> tuple[bytes, str] | None:
        with self._lock:
            return self._latest_overlay

    def detection_info(self) -> dict[str, Any] | None:
        with self._lock:
            return dict(self._detection_info) if self._detection_info else None

    def stats(self) -> dict[str, Any]:
        with self._lock:
            total = self.total_count
            ok = self.success_count
            stats = {
                "total": total,
                "success": ok,
                "warning": self.warning_count,
                "inferred": self.inferred_count,
                "error": self.error_count,
            }
        stats["success_rate"] = (ok / total) if total else 0.0
        return stats


def record_from_snapshot(snap: RecognitionSnapshot) -> CycleRecord:
    employee = None
    if snap.user is not None:
        employee = asdict(snap.user)
        employee["time"] = snap.user.time.isoformat()
        employee["attendance_type"] = snap.user.attendance_type.value
    elif snap.employee_ref is not None:
        employee = {"id": snap.employee_ref}
    return CycleRecord(
        seq=snap.seq,
        source=snap.source,
        event_type=snap.event_type.value,
        result=snap.status.value,
        result_code=snap.code,
        title=snap.title,
        message=snap.message,
        warning=snap.warning,
        inferred=snap.inferred,
        employee=employee,
        started_at=snap.started_at,
        resolved_at=snap.resolved_at,
        timings=dict(snap.timings),
    )


class OutputManager:
    """Observer of the recognition state machine.

    Terminal snapshots become history records; capture overlays and gate
    rejections are kept for the HMI to pull.
    """

    def __init__(self, store: CycleStore):
        self._store = store
        self._channels: list[OutputChannel] = []
        self._heartbeat_seq = 0
        self._latest_notice: tuple[Rejection, float] | None = None
        self._recorded_seq = 0

    def add_channel(self, channel: OutputChannel):
        self._channels.append(channel)

    async def start(self):
        for ch in self._channels:
            await ch.start()

    async def stop(self):
        for ch in self._channels:
            try:
                await ch.stop()
            except Exception:
                L.exception("Output channel stop failed: %r", ch)

    def raise_if_failed(self):
        for ch in self._channels:
            ch.raise_if_failed()

    # ---- Observers ----

    def on_snapshot(self, snap: RecognitionSnapshot):
        if snap.status is RecognitionStatus.PROCESSING:
            self._latest_notice = None
            return
        # An event type change while a result is shown re-sends the terminal snapshot.
        if not snap.is_terminal or snap.seq == self._recorded_seq:
            return
        self._recorded_seq = snap.seq
        rec = record_from_snapshot(snap)
        self._store.submit(rec)
        overlay = self._store.latest_overlay()
        for ch in self._channels:
            ch.publish(rec, overlay)
        log = L.info if rec.result == RecognitionStatus.SUCCESS.value else L.warning
        log(
            "[%5d] %s %s %s code=%s duration=%.1fms%s",
            rec.seq,
            rec.source,
            rec.event_type,
            rec.result.upper(),
            rec.result_code,
            rec.duration_ms,
            f" warning={rec.warning!r}" if rec.warning else "",
        )

    def on_capture(self, captured: CaptureOutput):
        self._store.set_overlay(captured.overlay, captured.detection_info)

    def on_rejected(self, rejection: Rejection):
        self._latest_notice = (rejection, time.time())

    def tick(self):
        self._heartbeat_seq += 1

    # ---- Read API for HMI (proxy to internal store) ----
    @property
    def latest_records(self) -> list[CycleRecord]:
        return self._store.latest_records

    @property
    def max_records(self) -> int:
        return self._store.max_records

    def latest_overlay(self):
        return self._store.latest_overlay()

    def detection_info(self):
        return self._store.detection_info()

    def latest_notice(self) -> dict[str, Any] | None:
        item = self._latest_notice
        if item is None:
            return None
        rejection, ts = item
        return {
            "code": rejection.code,
            "title": rejection.title,
            "message": rejection.message,
            "at_ms": int(ts * 1000),
        }

    def stats(self):
        return self._store.stats()

    def heartbeat_seq(self) -> int | None:
        return self._heartbeat_seq or None


__all__ = ["CycleStore", "OutputManager", "OutputChannel", "record_from_snapshot"]
