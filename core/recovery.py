"""Outcome classification and recovery for attendance submissions.

The backend's status code is not a reliable success signal: a write may have
been committed while the response reports an error. Everything here is pure so
the classification rules can be exercised without a network or an event loop.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Mapping

from core.contracts import (
    AmbiguousFailure,
    Confirmed,
    EventType,
    HardFailure,
    RecognizedUser,
    SubmissionOutcome,
)
from core.errors import HARD_FAILURE, failure_title

VERIFY_WINDOW_S = 60.0

IDENTITY_KEYS = ("id", "employeeId", "employee_id")
EMPLOYEE_ID_KEYS = ("employeeId", "employee_id")
DESCRIPTIVE_KEYS = (
    "firstName",
    "lastName",
    "first_name",
    "last_name",
    "name",
    "fullName",
    "full_name",
    "employee",
)
TIMESTAMP_KEYS = ("logTime", "log_time", "timestamp", "createdAt", "created_at", "time")

GENERIC_FAILURE_MESSAGE = "Attendance could not be recorded. Please try again."
DEFAULT_WARNING = "The server reported an error, but the attendance was recorded."


@dataclass(frozen=True, slots=True)
class MessageRule:
    code: str
    needles: tuple[str, ...]
    message: str

    def matches(self, text: str) -> bool:
        low = text.lower()
        return any(n in low for n in self.needles)


# Matched in order; the backend replies in English or Vietnamese.
BUSINESS_RULES: tuple[MessageRule, ...] = (
    MessageRule(
        "ALREADY_CHECKED_IN",
        ("already checked in", "đã check-in"),
        "You have already checked in today. Please check out first.",
    ),
    MessageRule(
        "ALREADY_CHECKED_OUT",
        ("already checked out", "đã check-out"),
        "You have already checked out today.",
    ),
    MessageRule(
        "NOT_CHECKED_IN",
        ("not checked in", "not yet checked in", "chưa check-in"),
        "You have not checked in today. Please check in first.",
    ),
    MessageRule(
        "TOO_FREQUENT",
        ("please wait", "too many", "too frequent", "vui lòng đợi"),
        "Please wait a moment before trying again.",
    ),
    MessageRule(
        "DESCRIPTOR_INVALID",
        (
            "face descriptor is required",
            "invalid face descriptor",
            "descriptor is missing",
        ),
        "Face data was missing or invalid. Please try again.",
    ),
    MessageRule(
        "FACE_NOT_RECOGNIZED",
        (
            "not recognized",
            "not recognised",
            "unable to recognize",
            "no matching",
            "không thể nhận diện",
        ),
        "Your face was not recognized. Please try again or contact an administrator.",
    ),
)


# ---- Payload navigation ----


def _get(obj: Any, *path: str) -> Any:
    cur = obj
    for key in path:
        if not isinstance(cur, Mapping):
            return None
        cur = cur.get(key)
    return cur


def _has_value(value: Any) -> bool:
    return value is not None and value != ""


def _is_identity(obj: Any) -> bool:
    if not _has_identity_key(obj):
        return False
    # A bare id is correlatable but not enough to show who was recognized.
    return any(_has_value(obj.get(k)) for k in DESCRIPTIVE_KEYS)


def _has_identity_key(obj: Any) -> bool:
    return isinstance(obj, Mapping) and any(_has_value(obj.get(k)) for k in IDENTITY_KEYS)


_BASE_PATHS: tuple[tuple[str, ...], ...] = (
    (),
    ("data",),
    ("response", "data"),
    ("response", "errorData"),
)


def _bases(payload: Any) -> Iterator[Any]:
    for path in _BASE_PATHS:
        yield _get(payload, *path)


def _first(value: Any) -> Any:
    if isinstance(value, list) and value:
        return value[0]
    return None


IdentityMatch = tuple[Mapping[str, Any], Mapping[str, Any]]
Extractor = Callable[[Any], "IdentityMatch | None"]


def _direct(path: tuple[str, ...]) -> Extractor:
    def extract(payload: Any) -> IdentityMatch | None:
        candidate = _get(payload, *path)
        if not _is_identity(candidate):
            return None
        employee = candidate.get("employee")
        if not _has_identity_key(employee):
            employee = candidate
        return candidate, employee

    return extract


def _nested(path: tuple[str, ...]) -> Extractor:
    def extract(payload: Any) -> IdentityMatch | None:
        envelope = _get(payload, *path)
        employee = _get(envelope, "employee")
        if not _has_identity_key(employee):
            return None
        return envelope, employee

    return extract


def _list_head(path: tuple[str, ...]) -> Extractor:
    def extract(payload: Any) -> IdentityMatch | None:
        return _direct(())(_first(_get(payload, *path)))

    return extract


EXTRACTORS: tuple[Extractor, ...] = (
    *(_direct(p) for p in _BASE_PATHS),
    *(_nested(p) for p in _BASE_PATHS),
    *(_list_head(p) for p in _BASE_PATHS[:3]),
)


def find_identity(payload: Any) -> IdentityMatch | None:
    """Search a response or error payload for an embedded employee record.

    Returns ``(envelope, employee)``: the mapping that carried the record and
    the object describing the person (the same mapping when there is no nested
    ``employee`` object). Extractors run in a fixed order; the first match wins.
    """
    for extract in EXTRACTORS:
        found = extract(payload)
        if found is not None:
            return found
    return None


def find_employee_id(payload: Any) -> int | str | None:
    for base in _bases(payload):
        for obj in (base, _get(base, "details"), _get(base, "employee")):
            if not isinstance(obj, Mapping):
                continue
            for key in EMPLOYEE_ID_KEYS:
                value = obj.get(key)
                if _has_value(value) and not isinstance(value, (Mapping, list)):
                    return value
    return None


def error_message(payload: Any) -> str:
    for base in _bases(payload):
        if isinstance(base, str) and base.strip():
            return base.strip()
        for key in ("message", "error"):
            value = _get(base, key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return ""


def match_business_rule(message: str) -> MessageRule | None:
    if not message:
        return None
    for rule in BUSINESS_RULES:
        if rule.matches(message):
            return rule
    return None


# ---- Value parsing ----


def parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = float(value) / 1000.0 if value > 1e11 else float(value)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z") or raw.endswith("z"):
            raw = raw[:-1] + "+00:00"
        try:
            ts = datetime.fromisoformat(raw)
        except ValueError:
            return None
    else:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def record_time(record: Any) -> datetime | None:
    for obj in (record, _get(record, "timeLog"), _get(record, "data")):
        if not isinstance(obj, Mapping):
            continue
        for key in TIMESTAMP_KEYS:
            ts = parse_timestamp(obj.get(key))
            if ts is not None:
                return ts
    return None


def within_window(ts: datetime, now: datetime, window_s: float = VERIFY_WINDOW_S) -> bool:
    return abs((now - ts).total_seconds()) <= window_s


def _full_name(employee: Mapping[str, Any]) -> str:
    for key in ("fullName", "full_name", "name"):
        value = employee.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    first = employee.get("firstName") or employee.get("first_name") or ""
    last = employee.get("lastName") or employee.get("last_name") or ""
    name = f"{first} {last}".strip()
    return name or "Employee"


def _department_name(envelope: Mapping[str, Any], employee: Mapping[str, Any]) -> str:
    for obj in (envelope, employee):
        dept = obj.get("department")
        if isinstance(dept, Mapping):
            name = dept.get("name")
            if isinstance(name, str) and name.strip():
                return name.strip()
        elif isinstance(dept, str) and dept.strip():
            return dept.strip()
    return "Unknown"


def build_recognized_user(
    envelope: Mapping[str, Any],
    employee: Mapping[str, Any],
    event_type: EventType,
    now: datetime,
) -> RecognizedUser:
    ident = employee.get("id")
    if not _has_value(ident):
        ident = envelope.get("employeeId", envelope.get("employee_id"))
    if not _has_value(ident):
        ident = envelope.get("id")
    code = employee.get("employeeId", employee.get("employee_id"))
    if not _has_value(code):
        code = ident
    return RecognizedUser(
        id=ident if _has_value(ident) else None,
        employee_id=str(code) if _has_value(code) else "",
        name=_full_name(employee),
        department=_department_name(envelope, employee),
        time=record_time(envelope) or record_time(employee) or now,
        attendance_type=event_type,
    )


# ---- Classification ----


def classify_response(
    payload: Any, event_type: EventType, now: datetime
) -> SubmissionOutcome:
    """Classify a 2xx response body."""
    found = find_identity(payload)
    if found is not None:
        envelope, employee = found
        return Confirmed(build_recognized_user(envelope, employee, event_type, now))
    # Success status without a usable identity: reconcile like an error.
    return AmbiguousFailure(
        raw=payload,
        message=error_message(payload),
        employee_id=find_employee_id(payload),
    )


def classify_error(
    payload: Any, event_type: EventType, now: datetime
) -> SubmissionOutcome:
    """Classify an error payload using the ordered recovery rules.

    Embedded identity beats a business-rule message, which beats an
    ``employeeId`` worth verifying, which beats a plain hard failure.
    """
    message = error_message(payload)
    found = find_identity(payload)
    if found is not None:
        envelope, employee = found
        return Confirmed(
            build_recognized_user(envelope, employee, event_type, now),
            warning=message or DEFAULT_WARNING,
        )
    rule = match_business_rule(message)
    if rule is not None:
        return HardFailure(rule.code, failure_title(event_type), rule.message)
    employee_id = find_employee_id(payload)
    if employee_id is not None:
        return AmbiguousFailure(raw=payload, message=message, employee_id=employee_id)
    return hard_failure(event_type)


def resolve_unverified(outcome: AmbiguousFailure, event_type: EventType) -> HardFailure:
    rule = match_business_rule(outcome.message)
    if rule is not None:
        return HardFailure(rule.code, failure_title(event_type), rule.message)
    return hard_failure(event_type)


def hard_failure(event_type: EventType) -> HardFailure:
    return HardFailure(HARD_FAILURE, failure_title(event_type), GENERIC_FAILURE_MESSAGE)


__all__ = [
    "VERIFY_WINDOW_S",
    "BUSINESS_RULES",
    "MessageRule",
    "find_identity",
    "find_employee_id",
    "error_message",
    "match_business_rule",
    "parse_timestamp",
    "record_time",
    "within_window",
    "build_recognized_user",
    "classify_response",
    "classify_error",
    "resolve_unverified",
    "hard_failure",
]
