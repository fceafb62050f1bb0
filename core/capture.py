# -- coding: utf-8 --
"""Capture pipeline: settle, pre-check, then full face analysis on one frame."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Protocol

from camera.base import VideoSource
from core.contracts import FaceDescriptor
from core.errors import (
    CameraNotReady,
    FeatureExtractionFailed,
    NoFaceDetected,
)
from detect.base import FaceBox, FaceDetector, draw_detection, encode_image_jpeg

L = logging.getLogger("attendance_kiosk.capture")

SETTLE_DELAY_MS = 300


class ReadinessProbe(Protocol):
    def poll(self, log_details: bool = False) -> bool: ...


@dataclass(slots=True)
class CaptureOutput:
    descriptor: FaceDescriptor
    box: FaceBox
    overlay: tuple[bytes, str] | None = None
    timings: dict[str, float] = field(default_factory=dict)

    @property
    def detection_info(self) -> dict[str, float | int]:
        return {
            "confidence": round(self.box.score, 4),
            "landmarks": len(self.box.landmarks),
            "face_w": int(self.box.w),
            "face_h": int(self.box.h),
        }


class CapturePipeline:
    def __init__(
        self,
        source: VideoSource,
        monitor: ReadinessProbe,
        detector: FaceDetector,
        *,
        settle_ms: int = SETTLE_DELAY_MS,
        preview_enabled: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.source = source
        self.monitor = monitor
        self.detector = detector
        self.settle_ms = max(int(settle_ms), 0)
        self.preview_enabled = preview_enabled
        self._sleep = sleep

    async def capture(self) -> CaptureOutput:
        if not self.monitor.poll():
            raise CameraNotReady()
        timings: dict[str, float] = {}

        # Let the feed stabilize before grabbing the frame.
        await self._sleep(self.settle_ms / 1000.0)

        t0 = time.perf_counter()
        frame = await asyncio.to_thread(self.source.read_frame)
        timings["grab_ms"] = (time.perf_counter() - t0) * 1000.0
        if frame is None:
            raise CameraNotReady("No frame available from the camera. Please try again.")

        t0 = time.perf_counter()
        box = await asyncio.to_thread(self.detector.detect_face, frame)
        timings["precheck_ms"] = (time.perf_counter() - t0) * 1000.0
        if box is None:
            raise NoFaceDetected()

        t0 = time.perf_counter()
        detection = await asyncio.to_thread(self.detector.detect_with_descriptor, frame)
        timings["extract_ms"] = (time.perf_counter() - t0) * 1000.0
        if detection is None:
            raise FeatureExtractionFailed()
        try:
            descriptor = FaceDescriptor.from_values(detection.descriptor)
        except ValueError as e:
            raise FeatureExtractionFailed() from e

        overlay = None
        if self.preview_enabled:
            t0 = time.perf_counter()
            overlay = await asyncio.to_thread(_render_overlay, frame, detection.box)
            timings["overlay_ms"] = (time.perf_counter() - t0) * 1000.0
        L.debug(
            "Capture ok: score=%.3f dims=%d timings=%s",
            detection.box.score,
            len(descriptor),
            {k: round(v, 1) for k, v in timings.items()},
        )
        return CaptureOutput(
            descriptor=descriptor, box=detection.box, overlay=overlay, timings=timings
        )


def _render_overlay(frame, box: FaceBox) -> tuple[bytes, str]:
    return encode_image_jpeg(draw_detection(frame, box))


__all__ = ["SETTLE_DELAY_MS", "CaptureOutput", "CapturePipeline"]
