# -- coding: utf-8 --
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Protocol

from aiohttp import web

from core.contracts import CycleRecord, EventType
from core.state import RecognitionSnapshot

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from core.runtime import ResultReadApi
    from camera.base import VideoSource
    from camera.monitor import CameraReadinessMonitor
    from core.state import RecognitionStateMachine
    from output.work_hours import WorkHoursCache
    from trigger.auto import AutoProcessingController


class AppContextLike(Protocol):
    @property
    def results(self) -> "ResultReadApi": ...

    @property
    def state(self) -> "RecognitionStateMachine": ...

    @property
    def controller(self) -> "AutoProcessingController": ...

    @property
    def camera(self) -> "VideoSource": ...

    @property
    def monitor(self) -> "CameraReadinessMonitor": ...

    @property
    def work_hours(self) -> "WorkHoursCache | None": ...

    def reset(self) -> bool: ...


L = logging.getLogger("attendance_kiosk.output.hmi")


def _to_unix_ms(val: datetime | None) -> int | None:
    if not isinstance(val, datetime):
        return None
    ref = val if val.tzinfo else val.replace(tzinfo=timezone.utc)
    return int(ref.timestamp() * 1000.0)


def _serialize_record(rec: CycleRecord) -> dict[str, Any]:
    # Keep status payload lean; the panel formats timestamps itself.
    return {
        "seq": int(rec.seq or 0),
        "source": rec.source,
        "event_type": rec.event_type,
        "result": rec.result,
        "result_code": rec.result_code,
        "title": rec.title,
        "warning": rec.warning,
        "inferred": rec.inferred,
        "employee": rec.employee,
        "duration_ms": round(rec.duration_ms, 1),
        "timings": {k: round(v, 1) for k, v in rec.timings.items()},
        "started_at_ms": _to_unix_ms(rec.started_at),
    }


def _serialize_snapshot(snap: RecognitionSnapshot) -> dict[str, Any]:
    user = None
    if snap.user is not None:
        user = {
            "id": snap.user.id,
            "employee_id": snap.user.employee_id,
            "name": snap.user.name,
            "department": snap.user.department,
            "time_ms": _to_unix_ms(snap.user.time),
            "attendance_type": snap.user.attendance_type.value,
        }
    return {
        "status": snap.status.value,
        "event_type": snap.event_type.value,
        "seq": snap.seq,
        "source": snap.source,
        "title": snap.title,
        "message": snap.message,
        "warning": snap.warning,
        "inferred": snap.inferred,
        "code": snap.code,
        "user": user,
        "employee_ref": snap.employee_ref,
    }


def _parse_since_seq(raw: str | None) -> int | None:
    if not raw:
        return None
    try:
        val = int(raw)
    except ValueError:
        return None
    return val if val >= 0 else None


class _ApiServer:
    def __init__(self, host: str, port: int, context: AppContextLike):
        self.host = host
        self.port = port
        self.context = context
        self.app = web.Application()
        self._setup_routes()
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self._started = False

    def _setup_routes(self):
        app = self.app
        ctx = self.context

        async def status(request: web.Request):
            store = ctx.results
            latest_records = store.latest_records
            latest_seq = int(latest_records[0].seq or 0) if latest_records else None
            since_seq = _parse_since_seq(request.query.get("since_seq"))
            full_snapshot = since_seq is None
            if since_seq is None:
                filtered = latest_records
            elif latest_seq is not None and latest_seq < since_seq:
                # Sequence reset likely happened; force client resync.
                filtered = latest_records
                full_snapshot = True
            else:
                filtered = [r for r in latest_records if int(r.seq or 0) > since_seq]

            snap = ctx.state.snapshot
            work_hours = None
            if ctx.work_hours is not None and snap.employee_ref is not None:
                work_hours = ctx.work_hours.get(snap.employee_ref)
            payload = {
                "state": _serialize_snapshot(snap),
                "mode": ctx.controller.mode.value,
                "camera": {
                    "enabled": ctx.camera.enabled,
                    "ready": ctx.monitor.is_ready,
                },
                "notice": store.latest_notice(),
                "detection": store.detection_info(),
                "work_hours": work_hours,
                "records": [_serialize_record(r) for r in filtered],
                "stats": store.stats(),
                "max_records": store.max_records,
                "heartbeat_seq": store.heartbeat_seq(),
                "latest_seq": latest_seq,
                "full_snapshot": full_snapshot,
            }
            return web.json_response(payload)

        async def latest_preview(_request: web.Request):
            item = ctx.results.latest_overlay()
            if item is None:
                return web.Response(status=404)
            data, ctype = item
            return web.Response(body=data, content_type=ctype)

        async def trigger(request: web.Request):
            raw = request.match_info.get("event_type")
            try:
                event_type = EventType.parse(raw) if raw else None
            except ValueError:
                return web.json_response(
                    {"accepted": False, "error": f"unknown event type {raw!r}"},
                    status=400,
                )
            ok = ctx.controller.request_manual(event_type)
            return web.json_response({"accepted": ok})

        async def reset(_request: web.Request):
            return web.json_response({"reset": ctx.reset()})

        async def set_mode(request: web.Request):
            raw = request.match_info["mode"]
            try:
                ctx.controller.set_mode(raw.lower())
            except ValueError:
                return web.json_response({"error": f"unknown mode {raw!r}"}, status=400)
            return web.json_response({"mode": ctx.controller.mode.value})

        async def set_event_type(request: web.Request):
            raw = request.match_info["event_type"]
            try:
                accepted = ctx.controller.set_event_type(raw)
            except ValueError:
                return web.json_response(
                    {"error": f"unknown event type {raw!r}"}, status=400
                )
            return web.json_response(
                {"accepted": accepted, "event_type": ctx.controller.event_type.value}
            )

        async def camera(request: web.Request):
            action = request.match_info["action"]
            if action not in ("enable", "disable"):
                return web.json_response(
                    {"error": f"unknown camera action {action!r}"}, status=400
                )
            ctx.camera.set_enabled(action == "enable")
            ready = ctx.monitor.poll()
            return web.json_response({"enabled": ctx.camera.enabled, "ready": ready})

        app.router.add_get("/status", status)
        app.router.add_get("/preview/latest", latest_preview)
        app.router.add_post("/trigger", trigger)
        app.router.add_post("/trigger/{event_type}", trigger)
        app.router.add_post("/reset", reset)
        app.router.add_post("/mode/{mode}", set_mode)
        app.router.add_post("/event-type/{event_type}", set_event_type)
        app.router.add_post("/camera/{action}", camera)

    async def start(self):
        if self._started:
            return
        self._runner = web.AppRunner(self.app, access_log=None)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self.host, self.port)
        await self._site.start()
        self._started = True
        L.info("HMI web service running @ http://%s:%d", self.host, self.port)

    async def stop(self):
        if self._runner:
            await self._runner.cleanup()
        self._runner = None
        self._site = None
        self._started = False
        L.info("HMI web service stopped")

    def raise_if_failed(self):
        if not self._started:
            return
        if self._runner is None or self._site is None:
            raise RuntimeError("HMI web service stopped unexpectedly")


class HmiOutput:
    def __init__(self, host: str, port: int, context: AppContextLike):
        self.server = _ApiServer(host, port, context)

    @property
    def app(self) -> web.Application:
        return self.server.app

    async def start(self):
        await self.server.start()

    async def stop(self):
        await self.server.stop()

    def publish(self, rec: CycleRecord, overlay: tuple[bytes, str] | None):
        # HMI pulls data via HTTP; no push needed.
        _ = rec, overlay
        return None

    def raise_if_failed(self):
        self.server.raise_if_failed()


__all__ = ["HmiOutput"]
