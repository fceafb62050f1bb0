"""Core runtime: KioskRuntime lifecycle and runtime assembly."""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import ExitStack
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Optional,
    Protocol,
    Tuple,
)

from camera.base import VideoSource
from camera.monitor import CameraReadinessMonitor
from core.capture import CapturePipeline
from core.contracts import CycleRecord, EventType
from core.lifecycle import AsyncTaskOwner
from core.orchestrator import AttendanceOrchestrator
from core.state import RecognitionSnapshot, RecognitionStateMachine
from trigger.auto import AutoProcessingController, ProcessingMode

if TYPE_CHECKING:  # pragma: no cover
    from backend.client import AttendanceApiClient
    from detect.base import FaceDetector
    from output.manager import OutputManager
    from output.work_hours import WorkHoursCache

L = logging.getLogger("attendance_kiosk.runtime")


@dataclass
class RuntimeBuildConfig:
    history_size: int = 10
    result_hold_s: float = 0.0
    enable_http: bool = True
    http_host: str = "0.0.0.0"
    http_port: int = 8000
    poll_interval_s: float = 5.0
    log_every: int = 5
    startup_nudge_s: float = 1.0
    settle_ms: int = 300
    preview_enabled: bool = True
    verify_enabled: bool = True
    verify_window_s: float = 60.0
    mode: str = "manual"
    default_event_type: str = "checkin"
    cooldown_ms: float = 3000.0
    descriptor_ttl_s: float = 3.0


def build_runtime_config_from_loaded_config(cfg) -> RuntimeBuildConfig:
    return RuntimeBuildConfig(
        history_size=cfg.runtime.history_size,
        result_hold_s=cfg.runtime.result_hold_s,
        enable_http=bool(cfg.hmi.enabled),
        http_host=cfg.hmi.host,
        http_port=cfg.hmi.port,
        poll_interval_s=cfg.monitor.poll_interval_s,
        log_every=cfg.monitor.log_every,
        startup_nudge_s=cfg.monitor.startup_nudge_s,
        settle_ms=cfg.capture.settle_ms,
        preview_enabled=bool(cfg.detect.preview_enabled),
        verify_enabled=bool(cfg.recovery.verify_enabled),
        verify_window_s=cfg.recovery.verify_window_s,
        mode=cfg.auto.mode,
        default_event_type=cfg.auto.default_event_type,
        cooldown_ms=cfg.auto.cooldown_ms,
        descriptor_ttl_s=cfg.auto.descriptor_ttl_s,
    )


class SourceHandle(Protocol):
    async def start(self) -> None: ...
    async def stop(self) -> None: ...
    def raise_if_failed(self) -> None: ...


class ResultReadApi(Protocol):
    @property
    def latest_records(self) -> list[CycleRecord]: ...

    @property
    def max_records(self) -> int: ...

    def latest_overlay(self) -> Optional[Tuple[bytes, str]]: ...

    def detection_info(self) -> dict[str, Any] | None: ...

    def latest_notice(self) -> dict[str, Any] | None: ...

    def stats(self) -> dict[str, Any]: ...

    def heartbeat_seq(self) -> int | None: ...


@dataclass
class AppContext:
    camera: VideoSource
    monitor: CameraReadinessMonitor
    state: RecognitionStateMachine
    orchestrator: AttendanceOrchestrator
    controller: AutoProcessingController
    results: ResultReadApi
    work_hours: Optional["WorkHoursCache"] = None

    def reset(self) -> bool:
        self.controller.clear()
        return self.orchestrator.reset()


class KioskRuntime:
    """Coordinates camera session, monitor, outputs, recognizer sources, and health."""

    def __init__(
        self,
        app_context: AppContext,
        backend: "AttendanceApiClient",
        output_mgr: "OutputManager",
        tasks: AsyncTaskOwner,
        *,
        result_hold_s: float = 0.0,
    ):
        self.app_context = app_context
        self.backend = backend
        self.output_mgr = output_mgr
        self.tasks = tasks
        self.result_hold_s = max(float(result_hold_s), 0.0)
        self.sources: list[SourceHandle] = []

        self._stop_evt = asyncio.Event()
        self._camera_session_stack: ExitStack | None = None
        self._started = False
        self._stopped = False
        app_context.state.subscribe(self._on_snapshot)

    async def start(self, sources: Optional[list[SourceHandle]] = None):
        if self._started:
            raise RuntimeError(
                "KioskRuntime is single-use; start() may only be called once"
            )
        if self._stopped:
            raise RuntimeError("KioskRuntime is stopped and cannot be started again")
        self._started = True
        self.sources = list(sources or [])
        try:
            self._enter_camera_session()
            await self.backend.start()
            self.app_context.monitor.start()
            await self.output_mgr.start()
            for src in list(self.sources):
                await src.start()
        except Exception:
            L.exception("Runtime start failed; rolling back partial startup")
            try:
                await self.stop()
            except Exception:
                L.exception("Runtime rollback stop failed")
            raise

    def request_stop(self):
        self._stop_evt.set()

    async def run(self, runtime_limit_s: float | None = None):
        if not self._started:
            raise RuntimeError("KioskRuntime.run() requires start() first")
        start_ts = time.perf_counter()
        next_heartbeat_ts = start_ts + 1.0
        try:
            while not self._stop_evt.is_set():
                try:
                    await asyncio.wait_for(self._stop_evt.wait(), timeout=0.1)
                except asyncio.TimeoutError:
                    pass
                now_ts = time.perf_counter()
                if now_ts >= next_heartbeat_ts:
                    self.output_mgr.tick()
                    next_heartbeat_ts = now_ts + 1.0
                self._raise_if_failed()
                if (
                    runtime_limit_s is not None
                    and (now_ts - start_ts) >= runtime_limit_s
                ):
                    L.info(
                        "Runtime limit reached (%ss); shutting down service",
                        runtime_limit_s,
                    )
                    self.request_stop()
        finally:
            await self.stop()

    def _raise_if_failed(self):
        self.app_context.monitor.raise_if_failed()
        self.tasks.raise_if_failed()
        for src in self.sources:
            src.raise_if_failed()
        self.output_mgr.raise_if_failed()

    def reset_system(self) -> bool:
        return self.app_context.reset()

    def _on_snapshot(self, snap: RecognitionSnapshot):
        if not snap.is_terminal or self.result_hold_s <= 0:
            return
        seq = snap.seq

        def _auto_reset():
            current = self.app_context.state.snapshot
            if current.seq == seq and current.is_terminal:
                L.debug("Result hold elapsed for cycle #%d; back to waiting", seq)
                self.app_context.reset()

        self.tasks.call_later(self.result_hold_s, _auto_reset, name="runtime.result_hold")

    async def stop(self):
        if self._stopped:
            return
        self._stopped = True
        stop_t0 = time.perf_counter()
        stage_t0 = stop_t0

        def _log_stage(name: str):
            nonlocal stage_t0
            now = time.perf_counter()
            L.debug("Shutdown stage=%s elapsed=%.1fms", name, (now - stage_t0) * 1000)
            stage_t0 = now

        async def _run_stage(name: str, fn: Callable[[], Awaitable[None] | None]):
            try:
                result = fn()
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                L.exception("Shutdown stage failed: %s", name)
            finally:
                _log_stage(name)

        async def _stop_sources():
            for src in list(self.sources):
                try:
                    await src.stop()
                except Exception:
                    L.exception("Recognizer source stop failed: %r", src)

        await _run_stage("sources", _stop_sources)
        # Let an in-flight submission resolve before the session goes away.
        await _run_stage("in_flight_cycles", self._finish_in_flight)
        await _run_stage("camera_monitor", self.app_context.monitor.stop)
        await _run_stage("output_manager", self.output_mgr.stop)
        await _run_stage("backend_client", self.backend.close)
        await _run_stage("camera_session", self._exit_camera_session)
        L.debug(
            "Shutdown stage=total elapsed=%.1fms",
            (time.perf_counter() - stop_t0) * 1000,
        )

    async def _finish_in_flight(self, timeout: float = 5.0):
        deadline = time.perf_counter() + timeout
        while (
            self.app_context.orchestrator.is_processing
            and time.perf_counter() < deadline
        ):
            await asyncio.sleep(0.05)
        await self.tasks.cancel_all(timeout=0.5)

    def _enter_camera_session(self):
        if self._camera_session_stack is not None:
            return
        stack = ExitStack()
        stack.enter_context(self.app_context.camera.session())
        self._camera_session_stack = stack

    def _exit_camera_session(self):
        stack = self._camera_session_stack
        if stack is None:
            return
        self._camera_session_stack = None
        stack.close()


def build_runtime(
    camera: VideoSource,
    detector: "FaceDetector",
    backend: "AttendanceApiClient",
    *,
    config: RuntimeBuildConfig | None = None,
) -> KioskRuntime:
    from output.hmi import HmiOutput
    from output.manager import CycleStore, OutputManager
    from output.work_hours import WorkHoursCache

    cfg = config or RuntimeBuildConfig()
    tasks = AsyncTaskOwner(logger=L, owner_name="kiosk")
    state = RecognitionStateMachine(EventType.parse(cfg.default_event_type))
    output_mgr = OutputManager(CycleStore(max_records=cfg.history_size))
    state.subscribe(output_mgr.on_snapshot)

    monitor = CameraReadinessMonitor(
        camera,
        poll_interval_s=cfg.poll_interval_s,
        log_every=cfg.log_every,
        startup_nudge_s=cfg.startup_nudge_s,
    )
    pipeline = CapturePipeline(
        camera,
        monitor,
        detector,
        settle_ms=cfg.settle_ms,
        preview_enabled=cfg.preview_enabled,
    )
    work_hours = WorkHoursCache(backend, tasks)
    orchestrator = AttendanceOrchestrator(
        camera=monitor,
        pipeline=pipeline,
        backend=backend,
        state=state,
        verify_enabled=cfg.verify_enabled,
        verify_window_s=cfg.verify_window_s,
        on_success=work_hours.invalidate,
        on_capture=output_mgr.on_capture,
        on_rejected=output_mgr.on_rejected,
    )
    controller = AutoProcessingController(
        orchestrator,
        tasks,
        mode=ProcessingMode(cfg.mode),
        cooldown_ms=cfg.cooldown_ms,
        descriptor_ttl_s=cfg.descriptor_ttl_s,
    )
    app_context = AppContext(
        camera=camera,
        monitor=monitor,
        state=state,
        orchestrator=orchestrator,
        controller=controller,
        results=output_mgr,
        work_hours=work_hours,
    )
    if cfg.enable_http:
        output_mgr.add_channel(HmiOutput(cfg.http_host, cfg.http_port, app_context))
    return KioskRuntime(
        app_context,
        backend,
        output_mgr,
        tasks,
        result_hold_s=cfg.result_hold_s,
    )


__all__ = [
    "RuntimeBuildConfig",
    "build_runtime_config_from_loaded_config",
    "AppContext",
    "KioskRuntime",
    "ResultReadApi",
    "build_runtime",
]
