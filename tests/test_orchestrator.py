import asyncio
import unittest
from datetime import datetime, timedelta, timezone

from backend.client import BackendError
from core.capture import CaptureOutput
from core.contracts import EventType, FaceDescriptor, RecognitionStatus
from core.errors import CAMERA_DISABLED, CAMERA_NOT_READY, INTERNAL_ERROR, NoFaceDetected
from core.orchestrator import AttendanceOrchestrator, Phase, Rejection
from core.state import RecognitionStateMachine
from detect.base import FaceBox

NOW = datetime(2026, 3, 2, 8, 30, tzinfo=timezone.utc)
DESCRIPTOR = FaceDescriptor.from_values([0.1, -0.2, 0.3])

EMPLOYEE = {
    "id": 7,
    "employeeId": "E007",
    "firstName": "Linh",
    "lastName": "Tran",
    "department": {"name": "Assembly"},
}


def _record(ts: datetime):
    return {
        "id": 31,
        "employeeId": 7,
        "logTime": ts.isoformat(),
        "employee": dict(EMPLOYEE),
    }


class FakeGate:
    def __init__(self, ready=True, disabled=False):
        self.ready = ready
        self.disabled = disabled

    def poll(self, log_details=False):
        return self.ready

    def is_actively_disabled(self):
        return self.disabled


class FakePipeline:
    def __init__(self, error=None, hold: asyncio.Event | None = None):
        self.error = error
        self.hold = hold
        self.calls = 0

    async def capture(self):
        self.calls += 1
        if self.hold is not None:
            await self.hold.wait()
        if self.error is not None:
            raise self.error
        return CaptureOutput(
            descriptor=DESCRIPTOR,
            box=FaceBox(10, 10, 80, 80, 0.93),
            overlay=(b"jpg", "image/jpeg"),
            timings={"grab_ms": 5.0, "extract_ms": 20.0},
        )


class FakeBackend:
    def __init__(self, reply=None, error=None, latest=None, latest_error=None):
        self.reply = reply
        self.error = error
        self.latest = latest
        self.latest_error = latest_error
        self.submitted = []
        self.latest_calls = []

    async def submit_event(self, event):
        self.submitted.append(event)
        if self.error is not None:
            raise self.error
        return self.reply

    async def latest_event(self, employee_id, *, day, event_type):
        self.latest_calls.append((employee_id, day, event_type))
        if self.latest_error is not None:
            raise self.latest_error
        return self.latest


def _server_error(body, status=500):
    message = body.get("message", f"HTTP {status}") if isinstance(body, dict) else f"HTTP {status}"
    return BackendError(message, status=status, payload=body)


class TestAttendanceOrchestrator(unittest.IsolatedAsyncioTestCase):
    def _make(self, backend, *, gate=None, pipeline=None, verify_enabled=True):
        self.state = RecognitionStateMachine()
        self.successes = []
        self.captures = []
        self.rejections = []
        self.backend = backend
        self.pipeline = pipeline or FakePipeline()
        self.orch = AttendanceOrchestrator(
            camera=gate or FakeGate(),
            pipeline=self.pipeline,
            backend=backend,
            state=self.state,
            verify_enabled=verify_enabled,
            on_success=self.successes.append,
            on_capture=self.captures.append,
            on_rejected=self.rejections.append,
            clock=lambda: NOW,
        )
        return self.orch

    async def test_clean_success(self):
        orch = self._make(FakeBackend(reply=_record(NOW - timedelta(seconds=1))))
        snap = await orch.submit(EventType.CHECKIN)
        self.assertIs(snap.status, RecognitionStatus.SUCCESS)
        self.assertEqual(snap.title, "Check-in Successful")
        self.assertIsNone(snap.warning)
        self.assertEqual(snap.user.name, "Linh Tran")
        self.assertEqual(snap.user.department, "Assembly")
        self.assertEqual(self.successes, [7])
        self.assertEqual(len(self.captures), 1)
        self.assertEqual(len(self.backend.submitted), 1)
        self.assertEqual(self.backend.submitted[0].descriptor, DESCRIPTOR)
        self.assertFalse(orch.is_processing)

    async def test_supplied_descriptor_skips_capture(self):
        orch = self._make(FakeBackend(reply=_record(NOW)))
        await orch.submit(EventType.CHECKOUT, DESCRIPTOR, source="AUTO")
        self.assertEqual(self.pipeline.calls, 0)
        self.assertIs(self.backend.submitted[0].event_type, EventType.CHECKOUT)
        self.assertEqual(self.backend.submitted[0].source, "AUTO")

    async def test_concurrent_trigger_is_dropped(self):
        hold = asyncio.Event()
        orch = self._make(FakeBackend(reply=_record(NOW)), pipeline=FakePipeline(hold=hold))
        first = asyncio.create_task(orch.submit(EventType.CHECKIN))
        await asyncio.sleep(0)
        self.assertTrue(orch.is_processing)
        self.assertIsNone(await orch.submit(EventType.CHECKIN))
        self.assertIsNone(await orch.submit(EventType.CHECKOUT))
        hold.set()
        snap = await first
        self.assertIs(snap.status, RecognitionStatus.SUCCESS)
        self.assertEqual(len(self.backend.submitted), 1)
        self.assertEqual(self.pipeline.calls, 1)

    async def test_reset_ignored_while_processing(self):
        hold = asyncio.Event()
        orch = self._make(FakeBackend(reply=_record(NOW)), pipeline=FakePipeline(hold=hold))
        task = asyncio.create_task(orch.submit(EventType.CHECKIN))
        await asyncio.sleep(0)
        self.assertFalse(orch.reset())
        self.assertIs(self.state.status, RecognitionStatus.PROCESSING)
        self.assertIs(orch.phase, Phase.CAPTURING)
        hold.set()
        await task
        self.assertIs(orch.phase, Phase.RESOLVED)
        self.assertTrue(orch.reset())
        self.assertIs(orch.phase, Phase.IDLE)
        self.assertIs(self.state.status, RecognitionStatus.WAITING)
        self.assertIsNone(self.state.snapshot.user)

    async def test_event_type_change_mid_cycle_keeps_submitted_type(self):
        hold = asyncio.Event()
        orch = self._make(FakeBackend(reply=_record(NOW)), pipeline=FakePipeline(hold=hold))
        task = asyncio.create_task(orch.submit(EventType.CHECKIN))
        await asyncio.sleep(0)
        self.assertFalse(self.state.set_event_type(EventType.CHECKOUT))
        hold.set()
        snap = await task
        self.assertIs(snap.event_type, EventType.CHECKIN)
        self.assertIs(snap.user.attendance_type, EventType.CHECKIN)
        self.assertEqual(snap.title, "Check-in Successful")
        self.assertIs(self.backend.submitted[0].event_type, EventType.CHECKIN)

    async def test_cycle_timings_reach_snapshot_and_log(self):
        orch = self._make(FakeBackend(reply=_record(NOW)))
        with self.assertLogs("attendance_kiosk.orchestrator", level="INFO") as logs:
            snap = await orch.submit(EventType.CHECKIN)
        self.assertEqual(snap.timings["grab_ms"], 5.0)
        self.assertEqual(snap.timings["extract_ms"], 20.0)
        self.assertIn("submit_ms", snap.timings)
        self.assertNotIn("verify_ms", snap.timings)
        self.assertTrue(any("timings=" in line for line in logs.output))

        second = await orch.submit(EventType.CHECKOUT, DESCRIPTOR, source="AUTO")
        self.assertNotIn("grab_ms", second.timings)

    async def test_success_without_employee_id_skips_success_hook(self):
        reply = {"employee": {"employee_id": "E009", "firstName": "Ann"}}
        orch = self._make(FakeBackend(reply=reply))
        snap = await orch.submit(EventType.CHECKIN)
        self.assertIs(snap.status, RecognitionStatus.SUCCESS)
        self.assertIsNone(snap.user.id)
        self.assertEqual(snap.user.employee_id, "E009")
        self.assertEqual(self.successes, [])

    async def test_trigger_from_terminal_state_starts_new_cycle(self):
        orch = self._make(FakeBackend(reply=_record(NOW)))
        first = await orch.submit(EventType.CHECKIN)
        second = await orch.submit(EventType.CHECKIN)
        self.assertEqual((first.seq, second.seq), (1, 2))

    async def test_error_with_embedded_record_is_success_with_warning(self):
        body = {"message": "Notification failed", "data": _record(NOW)}
        orch = self._make(FakeBackend(error=_server_error(body)))
        snap = await orch.submit(EventType.CHECKIN)
        self.assertIs(snap.status, RecognitionStatus.SUCCESS)
        self.assertEqual(snap.title, "Check-in Successful (with warning)")
        self.assertEqual(snap.warning, "Notification failed")
        self.assertEqual(snap.user.id, 7)
        self.assertEqual(self.backend.latest_calls, [])
        self.assertEqual(self.successes, [7])

    async def test_duplicate_checkin_fails_without_verification(self):
        body = {"message": "Employee already checked in today", "employeeId": 7}
        orch = self._make(FakeBackend(error=_server_error(body, status=409)))
        snap = await orch.submit(EventType.CHECKIN)
        self.assertIs(snap.status, RecognitionStatus.ERROR)
        self.assertEqual(snap.code, "ALREADY_CHECKED_IN")
        self.assertEqual(snap.title, "Check-in Failed")
        self.assertEqual(self.backend.latest_calls, [])
        self.assertEqual(self.successes, [])

    async def test_verification_window_boundary(self):
        body = {"message": "Gateway timeout", "details": {"employeeId": 7}}
        cases = [(60, RecognitionStatus.SUCCESS), (61, RecognitionStatus.ERROR)]
        for age_s, expected in cases:
            with self.subTest(age_s=age_s):
                orch = self._make(
                    FakeBackend(
                        error=_server_error(body, status=504),
                        latest=_record(NOW - timedelta(seconds=age_s)),
                    )
                )
                snap = await orch.submit(EventType.CHECKOUT)
                self.assertIs(snap.status, expected)
                self.assertIn("verify_ms", snap.timings)
                self.assertEqual(len(self.backend.latest_calls), 1)
                employee_id, day, event_type = self.backend.latest_calls[0]
                self.assertEqual(employee_id, 7)
                self.assertEqual(day, NOW.astimezone().date())
                self.assertIs(event_type, EventType.CHECKOUT)
                if expected is RecognitionStatus.SUCCESS:
                    self.assertTrue(snap.inferred)
                    self.assertEqual(snap.employee_ref, 7)
                    self.assertEqual(snap.warning, "Gateway timeout")
                    self.assertEqual(self.successes, [7])
                else:
                    self.assertEqual(snap.code, "HARD_FAILURE")
                    self.assertEqual(self.successes, [])

    async def test_verification_failure_resolves_as_error(self):
        body = {"message": "Gateway timeout", "details": {"employeeId": 7}}
        cases = [
            ("no record", FakeBackend(error=_server_error(body, 504), latest=None)),
            ("lookup fails", FakeBackend(error=_server_error(body, 504), latest_error=BackendError("down"))),
            ("record without time", FakeBackend(error=_server_error(body, 504), latest={"id": 1})),
        ]
        for label, backend in cases:
            with self.subTest(case=label):
                orch = self._make(backend)
                snap = await orch.submit(EventType.CHECKIN)
                self.assertIs(snap.status, RecognitionStatus.ERROR)

    async def test_verification_disabled_skips_lookup(self):
        body = {"message": "Gateway timeout", "details": {"employeeId": 7}}
        orch = self._make(
            FakeBackend(error=_server_error(body, 504), latest=_record(NOW)), verify_enabled=False
        )
        snap = await orch.submit(EventType.CHECKIN)
        self.assertIs(snap.status, RecognitionStatus.ERROR)
        self.assertEqual(self.backend.latest_calls, [])

    async def test_transport_error_is_generic_failure(self):
        orch = self._make(FakeBackend(error=BackendError("transport error: ClientConnectorError")))
        snap = await orch.submit(EventType.CHECKIN)
        self.assertIs(snap.status, RecognitionStatus.ERROR)
        self.assertEqual(snap.code, "HARD_FAILURE")
        self.assertNotIn("ClientConnectorError", snap.message)

    async def test_camera_gate_rejects_without_touching_state(self):
        cases = [
            (FakeGate(ready=True, disabled=True), CAMERA_DISABLED),
            (FakeGate(ready=False), CAMERA_NOT_READY),
        ]
        for gate, code in cases:
            with self.subTest(code=code):
                orch = self._make(FakeBackend(reply=_record(NOW)), gate=gate)
                result = await orch.submit(EventType.CHECKIN)
                self.assertIsInstance(result, Rejection)
                self.assertEqual(result.code, code)
                self.assertEqual(self.rejections, [result])
                self.assertIs(self.state.status, RecognitionStatus.WAITING)
                self.assertEqual(self.state.snapshot.seq, 0)
                self.assertEqual(self.pipeline.calls, 0)
                self.assertEqual(self.backend.submitted, [])

    async def test_capture_error_resolves_cycle(self):
        orch = self._make(FakeBackend(reply=_record(NOW)), pipeline=FakePipeline(error=NoFaceDetected()))
        snap = await orch.submit(EventType.CHECKIN)
        self.assertIs(snap.status, RecognitionStatus.ERROR)
        self.assertEqual(snap.code, "NO_FACE_DETECTED")
        self.assertEqual(snap.title, "No Face Detected")
        self.assertEqual(self.backend.submitted, [])

    async def test_unexpected_exception_resolves_once(self):
        seen = []
        orch = self._make(FakeBackend(error=RuntimeError("bug")))
        self.state.subscribe(seen.append)
        with self.assertLogs("attendance_kiosk.orchestrator", level="ERROR"):
            snap = await orch.submit(EventType.CHECKIN)
        self.assertEqual(snap.code, INTERNAL_ERROR)
        self.assertEqual(
            [s.status for s in seen], [RecognitionStatus.PROCESSING, RecognitionStatus.ERROR]
        )
        self.assertFalse(orch.is_processing)

    async def test_success_hook_failure_keeps_result(self):
        orch = self._make(FakeBackend(reply=_record(NOW)))

        def broken(_employee_id):
            raise RuntimeError("cache down")

        orch.on_success = broken
        with self.assertLogs("attendance_kiosk.orchestrator", level="ERROR"):
            snap = await orch.submit(EventType.CHECKIN)
        self.assertIs(snap.status, RecognitionStatus.SUCCESS)


if __name__ == "__main__":
    unittest.main()
