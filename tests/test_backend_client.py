import unittest
from datetime import date, datetime, timezone

from aiohttp import web
from aiohttp.test_utils import TestServer

from backend.client import AttendanceApiClient, BackendConfig, BackendError
from core.contracts import AttendanceEvent, EventType, FaceDescriptor

EVENT = AttendanceEvent(
    event_type=EventType.CHECKIN,
    descriptor=FaceDescriptor.from_values([0.25, -0.5]),
    submitted_at=datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc),
)


class TestAttendanceApiClient(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.requests = []
        self.submit_reply = web.json_response({"id": 1, "employee": {"id": 7, "name": "A"}}, status=201)

        async def post_event(request):
            self.requests.append(("POST", request.path, await request.json(), dict(request.headers)))
            return self.submit_reply

        async def latest(request):
            self.requests.append(("GET", request.path, dict(request.query), None))
            if request.match_info["employee_id"] == "404":
                return web.json_response({"message": "not found"}, status=404)
            return web.json_response({"logTime": "2026-03-02T08:00:00Z"})

        async def work_hours(request):
            self.requests.append(("GET", request.path, dict(request.query), None))
            return web.json_response({"hours": 7.5})

        app = web.Application()
        app.router.add_post("/api/attendance-events", post_event)
        app.router.add_get("/api/attendance-events/latest/{employee_id}", latest)
        app.router.add_get("/api/work-hours/{employee_id}", work_hours)
        self.server = TestServer(app)
        await self.server.start_server()
        self.client = AttendanceApiClient(
            BackendConfig(base_url=str(self.server.make_url("/api")), api_token="tok", timeout_s=2.0)
        )
        await self.client.start()

    async def asyncTearDown(self):
        await self.client.close()
        await self.server.close()

    async def test_submit_sends_descriptor_as_strings(self):
        body = await self.client.submit_event(EVENT)
        self.assertEqual(body["employee"]["id"], 7)
        method, path, payload, headers = self.requests[0]
        self.assertEqual((method, path), ("POST", "/api/attendance-events"))
        self.assertEqual(payload, {"faceDescriptor": ["0.25", "-0.5"], "type": "checkin"})
        self.assertEqual(headers.get("Authorization"), "Bearer tok")

    async def test_error_status_raises_with_payload(self):
        cases = [
            (web.json_response({"message": "already checked in"}, status=409), 409, "already checked in"),
            (web.json_response({"error": "boom"}, status=500), 500, "boom"),
            (web.Response(text="Bad gateway", status=502), 502, "Bad gateway"),
            (web.Response(status=503), 503, "HTTP 503"),
        ]
        for reply, status, message in cases:
            with self.subTest(status=status):
                self.submit_reply = reply
                with self.assertRaises(BackendError) as cm:
                    await self.client.submit_event(EVENT)
                err = cm.exception
                self.assertEqual(err.status, status)
                self.assertEqual(err.message, message)
                self.assertFalse(err.is_transport)
                envelope = err.as_payload()
                self.assertEqual(envelope["response"]["status"], status)
                self.assertEqual(envelope["data"], err.payload)

    async def test_latest_event_and_work_hours(self):
        rec = await self.client.latest_event(7, day=date(2026, 3, 2), event_type=EventType.CHECKOUT)
        self.assertEqual(rec["logTime"], "2026-03-02T08:00:00Z")
        self.assertEqual(
            self.requests[-1][1:3],
            ("/api/attendance-events/latest/7", {"date": "2026-03-02", "type": "checkout"}),
        )
        self.assertIsNone(
            await self.client.latest_event(404, day=date(2026, 3, 2), event_type=EventType.CHECKIN)
        )
        hours = await self.client.work_hours("E7", day=date(2026, 3, 2))
        self.assertEqual(hours, {"hours": 7.5})
        self.assertEqual(self.requests[-1][1], "/api/work-hours/E7")

    async def test_transport_error_has_no_status(self):
        await self.server.close()
        with self.assertRaises(BackendError) as cm:
            await self.client.submit_event(EVENT)
        self.assertTrue(cm.exception.is_transport)
        self.assertIsNone(cm.exception.status)


if __name__ == "__main__":
    unittest.main()
