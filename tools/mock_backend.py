# -- coding: utf-8 --
"""Attendance backend simulator for bench testing the kiosk without a real server."""

import argparse
import logging
import time
from datetime import datetime, timezone
from threading import Lock

from aiohttp import web

LOG = logging.getLogger("attendance.sim")

# Reply shapes the kiosk has to cope with.
MODE_CHOICES = ("success", "embedded", "ambiguous", "duplicate", "committed", "down")

EMPLOYEE = {
    "id": 7,
    "employeeId": "E007",
    "firstName": "Linh",
    "lastName": "Tran",
    "department": {"name": "Assembly"},
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class SimState:
    def __init__(self, mode: str):
        self._lock = Lock()
        self.mode = mode
        self._seq = 0
        # (employee id, type) -> last committed ISO timestamp
        self._latest: dict[tuple[str, str], str] = {}

    def next_seq(self) -> int:
        with self._lock:
            self._seq += 1
            return self._seq

    def commit(self, event_type: str) -> str:
        ts = _now_iso()
        with self._lock:
            self._latest[(str(EMPLOYEE["id"]), event_type)] = ts
        return ts

    def latest(self, employee_id: str, event_type: str) -> str | None:
        with self._lock:
            return self._latest.get((employee_id, event_type))


def _event_body(seq: int, event_type: str, ts: str) -> dict:
    return {
        "id": seq,
        "employeeId": EMPLOYEE["id"],
        "type": event_type,
        "logTime": ts,
        "employee": dict(EMPLOYEE),
    }


def build_app(state: SimState) -> web.Application:
    async def post_event(request: web.Request):
        try:
            body = await request.json()
        except ValueError:
            return web.json_response({"message": "invalid JSON"}, status=400)
        event_type = str(body.get("type", "checkin"))
        descriptor = body.get("faceDescriptor")
        if not isinstance(descriptor, list) or not descriptor:
            return web.json_response({"message": "Invalid face descriptor"}, status=400)
        seq = state.next_seq()
        mode = state.mode
        LOG.info("#%d %s dims=%d mode=%s", seq, event_type, len(descriptor), mode)

        if mode == "down":
            return web.json_response({"message": "Service unavailable"}, status=503)
        if mode == "duplicate":
            word = "checked in" if event_type == "checkin" else "checked out"
            return web.json_response(
                {"message": f"Employee already {word} today"}, status=409
            )
        ts = state.commit(event_type)
        if mode == "success":
            return web.json_response(_event_body(seq, event_type, ts), status=201)
        if mode == "embedded":
            # Record is written but the reply is an error wrapping it.
            return web.json_response(
                {"message": "Notification failed", "data": _event_body(seq, event_type, ts)},
                status=500,
            )
        if mode == "committed":
            # Record is written, reply only carries the employee reference.
            return web.json_response(
                {"message": "Gateway timeout", "details": {"employeeId": EMPLOYEE["id"]}},
                status=504,
            )
        return web.json_response({"message": "Internal server error"}, status=500)

    async def get_latest(request: web.Request):
        employee_id = request.match_info["employee_id"]
        event_type = request.query.get("type", "checkin")
        ts = state.latest(employee_id, event_type)
        if ts is None:
            return web.json_response({"message": "not found"}, status=404)
        return web.json_response({"data": _event_body(0, event_type, ts)})

    async def get_work_hours(request: web.Request):
        employee_id = request.match_info["employee_id"]
        checkin = state.latest(employee_id, "checkin")
        checkout = state.latest(employee_id, "checkout")
        return web.json_response(
            {
                "employeeId": employee_id,
                "date": request.query.get("date", ""),
                "checkIn": checkin,
                "checkOut": checkout,
            }
        )

    async def put_mode(request: web.Request):
        mode = request.match_info["mode"]
        if mode not in MODE_CHOICES:
            return web.json_response({"message": f"unknown mode {mode}"}, status=400)
        state.mode = mode
        LOG.info("Mode -> %s", mode)
        return web.json_response({"mode": mode})

    app = web.Application()
    app.router.add_post("/api/attendance-events", post_event)
    app.router.add_get("/api/attendance-events/latest/{employee_id}", get_latest)
    app.router.add_get("/api/work-hours/{employee_id}", get_work_hours)
    app.router.add_post("/sim/mode/{mode}", put_mode)
    return app


def main():
    p = argparse.ArgumentParser(description="Attendance backend simulator")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=5000)
    p.add_argument(
        "--mode",
        choices=MODE_CHOICES,
        default="success",
        help="Reply shape for POST /api/attendance-events (change live via POST /sim/mode/<mode>)",
    )
    args = p.parse_args()

    logging.Formatter.converter = time.gmtime
    logging.basicConfig(level=logging.INFO, format="%(asctime)sZ [%(levelname)s] %(message)s")
    LOG.info("Listening on %s:%d mode=%s", args.host, args.port, args.mode)
    web.run_app(build_app(SimState(args.mode)), host=args.host, port=args.port, print=None)


if __name__ == "__main__":
    main()
