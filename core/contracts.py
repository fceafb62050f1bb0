"""Data contracts shared by camera, capture, backend, state, and output layers."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Union


class EventType(str, Enum):
    CHECKIN = "checkin"
    CHECKOUT = "checkout"

    @classmethod
    def parse(cls, value: object) -> "EventType":
        if isinstance(value, EventType):
            return value
        raw = str(value or "").strip().lower().replace("-", "").replace("_", "")
        for item in cls:
            if item.value == raw:
                return item
        raise ValueError(f"unknown event type {value!r}")


class RecognitionStatus(str, Enum):
    WAITING = "waiting"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class CameraState:
    has_stream: bool = False
    position_ms: float = 0.0
    paused: bool = True
    ended: bool = False

    @property
    def is_playing(self) -> bool:
        return self.position_ms > 0 and not self.paused and not self.ended

    @property
    def is_ready(self) -> bool:
        return self.has_stream and self.is_playing


@dataclass(frozen=True, slots=True)
class FaceDescriptor:
    values: tuple[float, ...]

    @classmethod
    def from_values(cls, values: Iterable[Any]) -> "FaceDescriptor":
        try:
            items = tuple(float(v) for v in values)
        except TypeError as e:
            raise ValueError(f"face descriptor values must be numbers: {e}") from e
        if not items:
            raise ValueError("face descriptor is empty")
        if not all(math.isfinite(v) for v in items):
            raise ValueError("face descriptor contains non-finite values")
        return cls(items)

    def to_wire(self) -> list[str]:
        # Backend expects the numbers as their string renderings.
        return [repr(v) for v in self.values]

    def __len__(self) -> int:
        return len(self.values)


@dataclass(frozen=True, slots=True)
class AttendanceEvent:
    event_type: EventType
    descriptor: FaceDescriptor
    submitted_at: datetime
    source: str = "MANUAL"


@dataclass(frozen=True, slots=True)
class RecognizedUser:
    id: int | str | None
    employee_id: str
    name: str
    department: str
    time: datetime
    attendance_type: EventType


@dataclass(slots=True)
class RecognitionEvent:
    seq: int = 0
    source: str = ""
    descriptor: FaceDescriptor | None = None
    identity_hint: dict[str, Any] | None = None
    received_at: datetime | None = None


# ---- Submission outcomes ----


@dataclass(frozen=True, slots=True)
class Confirmed:
    user: RecognizedUser
    warning: str | None = None


@dataclass(frozen=True, slots=True)
class AmbiguousFailure:
    raw: Any
    message: str = ""
    employee_id: int | str | None = None


@dataclass(frozen=True, slots=True)
class HardFailure:
    code: str
    title: str
    message: str


@dataclass(frozen=True, slots=True)
class Inferred:
    employee_id: int | str
    log_time: datetime
    warning: str | None = None


SubmissionOutcome = Union[Confirmed, AmbiguousFailure, HardFailure, Inferred]


@dataclass(slots=True)
class CycleRecord:
    seq: int = 0
    source: str = ""
    event_type: str = ""
    result: str = "error"  # "success"/"error"
    result_code: str = ""
    title: str = ""
    message: str = ""
    warning: str | None = None
    inferred: bool = False
    employee: dict[str, Any] | None = None
    started_at: datetime | None = None
    resolved_at: datetime | None = None
    timings: dict[str, float] = field(default_factory=dict)

    @property
    def duration_ms(self) -> float:
        if self.started_at is None or self.resolved_at is None:
            return 0.0
        return (self.resolved_at - self.started_at).total_seconds() * 1000.0


__all__ = [
    "EventType",
    "RecognitionStatus",
    "CameraState",
    "FaceDescriptor",
    "AttendanceEvent",
    "RecognizedUser",
    "RecognitionEvent",
    "Confirmed",
    "AmbiguousFailure",
    "HardFailure",
    "Inferred",
    "SubmissionOutcome",
    "CycleRecord",
]
