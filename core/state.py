# -- coding: utf-8 --
"""Recognition state machine: the UI-facing projection of a cycle."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable

from core.contracts import EventType, RecognitionStatus, RecognizedUser
from core.errors import InvalidTransition

L = logging.getLogger("attendance_kiosk.state")


@dataclass(frozen=True, slots=True)
class RecognitionSnapshot:
    status: RecognitionStatus = RecognitionStatus.WAITING
    event_type: EventType = EventType.CHECKIN
    seq: int = 0
    source: str = ""
    user: RecognizedUser | None = None
    employee_ref: int | str | None = None
    code: str = ""
    title: str = ""
    message: str = ""
    warning: str | None = None
    inferred: bool = False
    started_at: datetime | None = None
    resolved_at: datetime | None = None
    timings: dict[str, float] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in (RecognitionStatus.SUCCESS, RecognitionStatus.ERROR)


Observer = Callable[[RecognitionSnapshot], None]


class RecognitionStateMachine:
    """waiting -> processing -> success|error -> waiting.

    ``begin`` outside ``waiting`` is a no-op; resolving outside ``processing``
    is a programming error and raises ``InvalidTransition``.
    """

    def __init__(self, event_type: EventType = EventType.CHECKIN):
        self._lock = threading.Lock()
        self._snap = RecognitionSnapshot(event_type=event_type)
        self._observers: list[Observer] = []
        self._seq = 0

    @property
    def snapshot(self) -> RecognitionSnapshot:
        with self._lock:
            return self._snap

    @property
    def status(self) -> RecognitionStatus:
        return self.snapshot.status

    @property
    def event_type(self) -> EventType:
        return self.snapshot.event_type

    def subscribe(self, observer: Observer) -> None:
        self._observers.append(observer)

    def set_event_type(self, event_type: EventType) -> bool:
        """Select the event type for the next cycle; refused while one is in flight."""
        with self._lock:
            if self._snap.status is RecognitionStatus.PROCESSING:
                L.debug("Event type change to %s refused: cycle in flight", event_type.value)
                return False
            if self._snap.event_type is event_type:
                return True
            self._snap = replace(self._snap, event_type=event_type)
            snap = self._snap
        self._notify(snap)
        return True

    def begin(self, event_type: EventType, source: str, started_at: datetime) -> bool:
        with self._lock:
            if self._snap.status is not RecognitionStatus.WAITING:
                return False
            self._seq += 1
            self._snap = RecognitionSnapshot(
                status=RecognitionStatus.PROCESSING,
                event_type=event_type,
                seq=self._seq,
                source=source,
                started_at=started_at,
            )
            snap = self._snap
        self._notify(snap)
        return True

    def resolve_success(
        self,
        *,
        title: str,
        message: str,
        resolved_at: datetime,
        user: RecognizedUser | None = None,
        employee_ref: int | str | None = None,
        warning: str | None = None,
        inferred: bool = False,
        timings: dict[str, float] | None = None,
    ) -> RecognitionSnapshot:
        return self._resolve(
            RecognitionStatus.SUCCESS,
            code="OK",
            title=title,
            message=message,
            resolved_at=resolved_at,
            user=user,
            employee_ref=employee_ref,
            warning=warning,
            inferred=inferred,
            timings=dict(timings or {}),
        )

    def resolve_error(
        self,
        *,
        code: str,
        title: str,
        message: str,
        resolved_at: datetime,
        timings: dict[str, float] | None = None,
    ) -> RecognitionSnapshot:
        return self._resolve(
            RecognitionStatus.ERROR,
            code=code,
            title=title,
            message=message,
            resolved_at=resolved_at,
            timings=dict(timings or {}),
        )

    def reset(self) -> bool:
        with self._lock:
            status = self._snap.status
            if status is RecognitionStatus.WAITING:
                return False
            if status is RecognitionStatus.PROCESSING:
                L.debug("Reset ignored while a cycle is in flight")
                return False
            self._snap = RecognitionSnapshot(
                event_type=self._snap.event_type, seq=self._snap.seq
            )
            snap = self._snap
        self._notify(snap)
        return True

    def _resolve(self, status: RecognitionStatus, **changes) -> RecognitionSnapshot:
        with self._lock:
            if self._snap.status is not RecognitionStatus.PROCESSING:
                raise InvalidTransition(
                    f"cannot resolve to {status.value} from {self._snap.status.value}"
                )
            self._snap = replace(self._snap, status=status, **changes)
            snap = self._snap
        self._notify(snap)
        return snap

    def _notify(self, snap: RecognitionSnapshot) -> None:
        for observer in list(self._observers):
            try:
                observer(snap)
            except Exception:
                L.exception("State observer failed: %r", observer)


__all__ = ["RecognitionSnapshot", "RecognitionStateMachine"]
