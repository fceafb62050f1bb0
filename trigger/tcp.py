# -- coding: utf-8 --

import asyncio
import contextlib
import itertools
import json
import logging
from datetime import datetime, timezone

from core.contracts import FaceDescriptor, RecognitionEvent
from core.lifecycle import AsyncTaskOwner
from trigger.base import BaseRecognizerSource, SourceConfig, register_source

L = logging.getLogger("attendance_kiosk.trigger.tcp")


def parse_recognition_line(line: bytes) -> tuple[FaceDescriptor, dict | None]:
    """Decode one JSON line: ``{"descriptor": [...], "identity": {...}}``."""
    msg = json.loads(line.decode("utf-8"))
    if not isinstance(msg, dict):
        raise ValueError("message must be a JSON object")
    raw = msg.get("descriptor", msg.get("faceDescriptor"))
    if isinstance(raw, str):
        raw = [part for part in raw.split(",") if part.strip()]
    if not isinstance(raw, list):
        raise ValueError("descriptor must be a list of numbers")
    hint = msg.get("identity")
    return FaceDescriptor.from_values(raw), hint if isinstance(hint, dict) else None


@register_source("tcp")
class TcpRecognizerSource(BaseRecognizerSource):
    """Line-delimited JSON listener fed by an external recognizer process."""

    def __init__(self, cfg: SourceConfig, on_recognition):
        super().__init__(cfg, on_recognition)
        self._server: asyncio.AbstractServer | None = None
        self._serve_task: asyncio.Task | None = None
        self._tasks = AsyncTaskOwner(logger=L, owner_name="tcp_source")
        self._seq = itertools.count(1)
        # Empty whitelist means disabled; non-empty set enforces allowlist.
        self._whitelist = set(cfg.ip_whitelist) if cfg.ip_whitelist else None

    async def start(self):
        if self._server is not None:
            return
        self._server = await asyncio.start_server(
            self._handle_client,
            self.cfg.host,
            self.cfg.port,
            reuse_address=True,
            limit=self.cfg.max_line_bytes,
        )
        L.info("Recognizer socket listening on %s:%d", self.cfg.host, self.cfg.port)
        self._serve_task = self._tasks.spawn(
            self._server.serve_forever(), name="tcp_source.serve_forever"
        )

    async def stop(self):
        await self._tasks.cancel_all(timeout=0.5)
        self._serve_task = None
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
        self._server = None
        L.info("Recognizer socket stopped")

    def raise_if_failed(self):
        self._tasks.raise_if_failed()

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ):
        peer = writer.get_extra_info("peername")
        peer_ip = str(peer[0]) if isinstance(peer, tuple) and peer else str(peer)
        try:
            if self._whitelist is not None and peer_ip not in self._whitelist:
                L.debug("Reject recognizer connection from disallowed IP %s", peer_ip)
                return
            while True:
                try:
                    line = await reader.readline()
                except (asyncio.LimitOverrunError, ValueError):
                    L.warning("Recognizer line from %s exceeds limit; closing", peer_ip)
                    return
                if not line:
                    return
                if not line.strip():
                    continue
                try:
                    descriptor, hint = parse_recognition_line(line)
                except ValueError as e:
                    L.warning("Bad recognizer message from %s: %s", peer_ip, e)
                    continue
                self.on_recognition(
                    RecognitionEvent(
                        seq=next(self._seq),
                        source=f"TCP:{peer_ip}",
                        descriptor=descriptor,
                        identity_hint=hint,
                        received_at=datetime.now(timezone.utc),
                    )
                )
        except ConnectionError:
            L.debug("Recognizer connection from %s reset", peer_ip)
        finally:
            writer.close()
            with contextlib.suppress(ConnectionError):
                await writer.wait_closed()


__all__ = ["parse_recognition_line", "TcpRecognizerSource"]
