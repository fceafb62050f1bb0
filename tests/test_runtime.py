import asyncio
import unittest
from contextlib import contextmanager
from datetime import datetime, timezone

import numpy as np

from camera.base import CameraConfig, VideoSource
from core.contracts import CameraState, RecognitionStatus
from core.runtime import RuntimeBuildConfig, build_runtime
from detect.base import FaceBox, FaceDetection


class FakeCamera(VideoSource):
    def __init__(self):
        super().__init__(CameraConfig())
        self.opened = False
        self.closed = False
        self._paused = False

    def state(self):
        return CameraState(
            has_stream=self.opened, position_ms=500.0, paused=self._paused, ended=False
        )

    def read_frame(self):
        return np.zeros((96, 96, 3), dtype=np.uint8)

    def pause(self):
        self._paused = True

    def resume(self):
        self._paused = False

    @contextmanager
    def session(self):
        self.opened = True
        try:
            yield self
        finally:
            self.opened = False
            self.closed = True


class FakeDetector:
    box = FaceBox(10, 10, 50, 50, 0.95)

    def detect_face(self, img):
        return self.box

    def detect_with_descriptor(self, img):
        return FaceDetection(box=self.box, descriptor=np.full(128, 0.01, dtype=np.float32))


class FakeBackend:
    def __init__(self):
        self.started = False
        self.closed = False
        self.submitted = []

    async def start(self):
        self.started = True

    async def close(self):
        self.closed = True

    async def submit_event(self, event):
        self.submitted.append(event)
        return {
            "id": 1,
            "employeeId": 7,
            "logTime": datetime.now(timezone.utc).isoformat(),
            "employee": {"id": 7, "firstName": "Linh", "lastName": "Tran"},
        }

    async def latest_event(self, employee_id, *, day, event_type):
        return None

    async def work_hours(self, employee_id, *, day):
        return {"hours": 1.5}


async def _wait_for(predicate, timeout_s: float = 2.0):
    deadline = asyncio.get_running_loop().time() + timeout_s
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("timeout waiting for condition")
        await asyncio.sleep(0.01)


class TestKioskRuntime(unittest.IsolatedAsyncioTestCase):
    def _build(self, **overrides):
        self.camera = FakeCamera()
        self.backend = FakeBackend()
        cfg = RuntimeBuildConfig(
            enable_http=False,
            settle_ms=0,
            startup_nudge_s=0.0,
            poll_interval_s=0.01,
            **overrides,
        )
        return build_runtime(self.camera, FakeDetector(), self.backend, config=cfg)

    async def test_manual_cycle_then_result_hold_returns_to_waiting(self):
        runtime = self._build(result_hold_s=0.1)
        ctx = runtime.app_context
        await runtime.start(sources=[])
        runner = asyncio.create_task(runtime.run())
        try:
            self.assertTrue(ctx.controller.request_manual("checkin"))
            await _wait_for(lambda: ctx.state.status is RecognitionStatus.SUCCESS)
            self.assertEqual(ctx.state.snapshot.user.name, "Linh Tran")
            await _wait_for(lambda: ctx.work_hours.get(7) is not None)
            await _wait_for(lambda: ctx.state.status is RecognitionStatus.WAITING)
            self.assertEqual(len(runtime.output_mgr.latest_records), 1)
            self.assertIsNotNone(runtime.output_mgr.detection_info())
            self.assertEqual(len(self.backend.submitted), 1)
        finally:
            runtime.request_stop()
            await asyncio.wait_for(runner, timeout=5.0)
        self.assertTrue(self.backend.closed)
        self.assertTrue(self.camera.closed)

    async def test_result_stays_without_hold(self):
        runtime = self._build(result_hold_s=0.0)
        ctx = runtime.app_context
        await runtime.start(sources=[])
        try:
            ctx.controller.request_manual()
            await _wait_for(lambda: ctx.state.status is RecognitionStatus.SUCCESS)
            await asyncio.sleep(0.1)
            self.assertIs(ctx.state.status, RecognitionStatus.SUCCESS)
            self.assertTrue(runtime.reset_system())
            self.assertIs(ctx.state.status, RecognitionStatus.WAITING)
        finally:
            await runtime.stop()

    async def test_disabled_camera_rejects_trigger(self):
        runtime = self._build()
        ctx = runtime.app_context
        await runtime.start(sources=[])
        try:
            self.camera.set_enabled(False)
            ctx.controller.request_manual()
            await _wait_for(lambda: runtime.output_mgr.latest_notice() is not None)
            self.assertEqual(runtime.output_mgr.latest_notice()["code"], "CAMERA_DISABLED")
            self.assertIs(ctx.state.status, RecognitionStatus.WAITING)
            self.assertEqual(self.backend.submitted, [])
        finally:
            await runtime.stop()

    async def test_single_use(self):
        runtime = self._build()
        await runtime.start(sources=[])
        await runtime.stop()
        with self.assertRaises(RuntimeError):
            await runtime.start(sources=[])


if __name__ == "__main__":
    unittest.main()
