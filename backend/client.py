# -- coding: utf-8 --
"""HTTP client for the attendance backend."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import date
from typing import Any

import aiohttp

from core.contracts import AttendanceEvent, EventType

L = logging.getLogger("attendance_kiosk.backend")


@dataclass
class BackendConfig:
    base_url: str = "http://127.0.0.1:5000/api"
    api_token: str = ""
    timeout_s: float = 8.0
    events_path: str = "/attendance-events"
    latest_event_path: str = "/attendance-events/latest/{employee_id}"
    work_hours_path: str = "/work-hours/{employee_id}"


def build_backend_config(cfg_block, *, api_token: str | None = None) -> BackendConfig:
    return BackendConfig(
        base_url=str(cfg_block.base_url),
        api_token=str(api_token if api_token is not None else cfg_block.api_token),
        timeout_s=float(cfg_block.timeout_s),
        events_path=str(cfg_block.events_path),
        latest_event_path=str(cfg_block.latest_event_path),
        work_hours_path=str(cfg_block.work_hours_path),
    )


class BackendError(Exception):
    """Non-2xx reply or transport failure.

    ``status`` is None when no HTTP response was received.
    """

    def __init__(self, message: str, *, status: int | None = None, payload: Any = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.payload = payload

    @property
    def is_transport(self) -> bool:
        return self.status is None

    def as_payload(self) -> dict[str, Any]:
        """Error envelope in the shape the recovery extractors search."""
        return {
            "message": self.message,
            "status": self.status,
            "data": self.payload,
            "response": {"status": self.status, "data": self.payload},
        }


def _error_message(body: Any, status: int) -> str:
    if isinstance(body, dict):
        for key in ("message", "error"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    if isinstance(body, str) and body.strip():
        return body.strip()[:200]
    return f"HTTP {status}"


class AttendanceApiClient:
    def __init__(self, cfg: BackendConfig, *, session: aiohttp.ClientSession | None = None):
        self.cfg = cfg
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=max(cfg.timeout_s, 0.1))

    async def start(self):
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True

    async def close(self):
        session = self._session
        self._session = None
        if session is not None and self._owns_session:
            await session.close()

    async def __aenter__(self) -> "AttendanceApiClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _url(self, path: str) -> str:
        return f"{self.cfg.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.cfg.api_token:
            headers["Authorization"] = f"Bearer {self.cfg.api_token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Any = None,
        params: dict[str, str] | None = None,
    ) -> tuple[int, Any]:
        await self.start()
        assert self._session is not None
        url = self._url(path)
        try:
            async with self._session.request(
                method,
                url,
                json=json_body,
                params=params,
                headers=self._headers(),
                timeout=self._timeout,
            ) as resp:
                text = await resp.text()
                status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            L.warning("%s %s transport error: %s", method, url, e or type(e).__name__)
            raise BackendError(
                f"transport error: {type(e).__name__}", payload=None
            ) from e
        body: Any = None
        if text:
            try:
                body = json.loads(text)
            except ValueError:
                body = text
        L.debug("%s %s -> %d", method, url, status)
        return status, body

    async def submit_event(self, event: AttendanceEvent) -> Any:
        status, body = await self._request(
            "POST",
            self.cfg.events_path,
            json_body={
                "faceDescriptor": event.descriptor.to_wire(),
                "type": event.event_type.value,
            },
        )
        if 200 <= status < 300:
            return body
        raise BackendError(_error_message(body, status), status=status, payload=body)

    async def latest_event(
        self, employee_id: int | str, *, day: date, event_type: EventType
    ) -> Any | None:
        status, body = await self._request(
            "GET",
            self.cfg.latest_event_path.format(employee_id=employee_id),
            params={"date": day.isoformat(), "type": event_type.value},
        )
        if status == 404:
            return None
        if 200 <= status < 300:
            return body or None
        raise BackendError(_error_message(body, status), status=status, payload=body)

    async def work_hours(self, employee_id: int | str, *, day: date) -> Any:
        status, body = await self._request(
            "GET",
            self.cfg.work_hours_path.format(employee_id=employee_id),
            params={"date": day.isoformat()},
        )
        if 200 <= status < 300:
            return body
        raise BackendError(_error_message(body, status), status=status, payload=body)


__all__ = [
    "BackendConfig",
    "build_backend_config",
    "BackendError",
    "AttendanceApiClient",
]
