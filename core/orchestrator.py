# -- coding: utf-8 --
"""Attendance submission orchestrator.

One cycle per user action: gate on the camera, capture (unless a descriptor
was supplied), submit, classify the reply, and reconcile ambiguous failures
before anything reaches the recognition state machine.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Protocol

from backend.client import BackendError
from core.capture import CaptureOutput
from core.contracts import (
    AmbiguousFailure,
    AttendanceEvent,
    Confirmed,
    EventType,
    FaceDescriptor,
    HardFailure,
    Inferred,
    SubmissionOutcome,
)
from core.errors import (
    INTERNAL_ERROR,
    CameraDisabled,
    CameraNotReady,
    CaptureError,
    failure_title,
    success_title,
)
from core.recovery import (
    VERIFY_WINDOW_S,
    classify_error,
    classify_response,
    record_time,
    resolve_unverified,
    within_window,
)
from core.state import RecognitionSnapshot, RecognitionStateMachine

L = logging.getLogger("attendance_kiosk.orchestrator")


class Phase(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    SUBMITTING = "submitting"
    RESOLVED = "resolved"


@dataclass(frozen=True, slots=True)
class Rejection:
    """A trigger refused before the cycle started; the state is untouched."""

    code: str
    title: str
    message: str


class CameraGate(Protocol):
    def poll(self, log_details: bool = False) -> bool: ...
    def is_actively_disabled(self) -> bool: ...


class Capturer(Protocol):
    async def capture(self) -> CaptureOutput: ...


class AttendanceBackend(Protocol):
    async def submit_event(self, event: AttendanceEvent) -> Any: ...
    async def latest_event(
        self, employee_id: int | str, *, day: Any, event_type: EventType
    ) -> Any | None: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AttendanceOrchestrator:
    def __init__(
        self,
        *,
        camera: CameraGate,
        pipeline: Capturer,
        backend: AttendanceBackend,
        state: RecognitionStateMachine,
        verify_enabled: bool = True,
        verify_window_s: float = VERIFY_WINDOW_S,
        on_success: Callable[[int | str], None] | None = None,
        on_capture: Callable[[CaptureOutput], None] | None = None,
        on_rejected: Callable[[Rejection], None] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.camera = camera
        self.pipeline = pipeline
        self.backend = backend
        self.state = state
        self.verify_enabled = verify_enabled
        self.verify_window_s = float(verify_window_s)
        self.on_success = on_success
        self.on_capture = on_capture
        self.on_rejected = on_rejected
        self._clock = clock
        self._phase = Phase.IDLE
        self._processing = False
        self._timings: dict[str, float] = {}

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def is_processing(self) -> bool:
        return self._processing

    def reset(self) -> bool:
        if self._processing:
            L.debug("reset() ignored while a cycle is in flight")
            return False
        self._phase = Phase.IDLE
        return self.state.reset()

    async def submit(
        self,
        event_type: EventType,
        descriptor: FaceDescriptor | None = None,
        *,
        source: str = "MANUAL",
    ) -> RecognitionSnapshot | Rejection | None:
        """Run one attendance cycle.

        Returns None when a cycle is already in flight, a ``Rejection`` when
        the camera gate refuses, otherwise the terminal snapshot.
        """
        if self._processing:
            L.debug("submit(%s) from %s dropped: cycle in flight", event_type.value, source)
            return None
        rejection = self._gate(event_type)
        if rejection is not None:
            L.warning(
                "submit(%s) from %s rejected: %s", event_type.value, source, rejection.code
            )
            if self.on_rejected is not None:
                self.on_rejected(rejection)
            return rejection

        # Guard is set before the first await so a concurrent trigger sees it.
        self._processing = True
        try:
            if self.state.snapshot.is_terminal:
                self.state.reset()
            self._timings = {}
            self.state.begin(event_type, source, self._clock())
            snap = await self._run_cycle(event_type, descriptor, source)
        finally:
            self._processing = False
        L.info(
            "Cycle #%d source=%s type=%s result=%s code=%s timings=%s",
            snap.seq,
            source,
            event_type.value,
            snap.status.value,
            snap.code,
            {k: round(v, 1) for k, v in snap.timings.items()},
        )
        return snap

    def _gate(self, event_type: EventType) -> Rejection | None:
        if self.camera.is_actively_disabled():
            err: CaptureError = CameraDisabled()
        elif not self.camera.poll():
            err = CameraNotReady()
        else:
            return None
        return Rejection(err.code, err.title, err.message)

    async def _run_cycle(
        self, event_type: EventType, descriptor: FaceDescriptor | None, source: str
    ) -> RecognitionSnapshot:
        try:
            if descriptor is None:
                self._phase = Phase.CAPTURING
                try:
                    captured = await self.pipeline.capture()
                except CaptureError as e:
                    return self._resolve(
                        HardFailure(e.code, e.title, e.message), event_type
                    )
                descriptor = captured.descriptor
                self._timings.update(captured.timings)
                if self.on_capture is not None:
                    self.on_capture(captured)

            self._phase = Phase.SUBMITTING
            event = AttendanceEvent(
                event_type=event_type,
                descriptor=descriptor,
                submitted_at=self._clock(),
                source=source,
            )
            outcome = await self._submit(event)
            if isinstance(outcome, AmbiguousFailure):
                outcome = await self._reconcile(outcome, event)
            return self._resolve(outcome, event_type)
        except Exception:
            L.exception("Attendance cycle failed unexpectedly")
            return self._resolve(
                HardFailure(
                    INTERNAL_ERROR,
                    failure_title(event_type),
                    "Something went wrong. Please try again.",
                ),
                event_type,
            )

    async def _submit(self, event: AttendanceEvent) -> SubmissionOutcome:
        t0 = time.perf_counter()
        try:
            payload = await self.backend.submit_event(event)
        except BackendError as err:
            self._timings["submit_ms"] = (time.perf_counter() - t0) * 1000.0
            L.info("Submission error status=%s message=%r", err.status, err.message)
            return classify_error(err.as_payload(), event.event_type, self._clock())
        self._timings["submit_ms"] = (time.perf_counter() - t0) * 1000.0
        return classify_response(payload, event.event_type, self._clock())

    async def _reconcile(
        self, outcome: AmbiguousFailure, event: AttendanceEvent
    ) -> SubmissionOutcome:
        if outcome.employee_id is None or not self.verify_enabled:
            return resolve_unverified(outcome, event.event_type)
        now = self._clock()
        t0 = time.perf_counter()
        try:
            record = await self.backend.latest_event(
                outcome.employee_id,
                day=now.astimezone().date(),
                event_type=event.event_type,
            )
        except BackendError as err:
            L.warning(
                "Verification for employee %s failed: %s", outcome.employee_id, err
            )
            record = None
        self._timings["verify_ms"] = (time.perf_counter() - t0) * 1000.0
        logged_at = record_time(record) if record is not None else None
        if logged_at is not None and within_window(logged_at, now, self.verify_window_s):
            L.info(
                "Employee %s confirmed by latest record at %s",
                outcome.employee_id,
                logged_at.isoformat(),
            )
            return Inferred(
                employee_id=outcome.employee_id,
                log_time=logged_at,
                warning=outcome.message or None,
            )
        return resolve_unverified(outcome, event.event_type)

    def _resolve(
        self, outcome: SubmissionOutcome, event_type: EventType
    ) -> RecognitionSnapshot:
        now = self._clock()
        self._phase = Phase.RESOLVED
        if isinstance(outcome, Confirmed):
            user = outcome.user
            snap = self.state.resolve_success(
                title=success_title(event_type, warning=outcome.warning is not None),
                message=f"{user.name} ({user.department}) recorded at "
                f"{user.time.astimezone():%H:%M}",
                resolved_at=now,
                user=user,
                employee_ref=user.id,
                warning=outcome.warning,
                timings=self._timings,
            )
            if user.id is not None:
                self._notify_success(user.id)
            return snap
        if isinstance(outcome, Inferred):
            snap = self.state.resolve_success(
                title=success_title(event_type, warning=outcome.warning is not None),
                message=f"Attendance recorded at {outcome.log_time.astimezone():%H:%M}",
                resolved_at=now,
                employee_ref=outcome.employee_id,
                warning=outcome.warning,
                inferred=True,
                timings=self._timings,
            )
            self._notify_success(outcome.employee_id)
            return snap
        if isinstance(outcome, AmbiguousFailure):
            outcome = resolve_unverified(outcome, event_type)
        return self.state.resolve_error(
            code=outcome.code,
            title=outcome.title,
            message=outcome.message,
            resolved_at=now,
            timings=self._timings,
        )

    def _notify_success(self, employee_ref: int | str):
        if self.on_success is None:
            return
        try:
            self.on_success(employee_ref)
        except Exception:
            L.exception("Success hook failed for employee %s", employee_ref)


__all__ = ["Phase", "Rejection", "AttendanceOrchestrator"]
