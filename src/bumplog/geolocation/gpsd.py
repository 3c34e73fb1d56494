"""
Native geolocation backend: the host's `gpsd` daemon.

gpsd speaks newline-delimited JSON over TCP (default 127.0.0.1:2947) or a unix
socket. After `?WATCH={"enable":true,"json":true}` it streams reports; only `TPV`
(time-position-velocity) reports carry fixes, with speed already in m/s.

Permission handling maps onto the socket: the OS refusing access to the gpsd
socket is a `PermissionDenied`, no daemon listening is a `SourceUnavailable`.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from bumplog.config.settings import GpsdSettings
from bumplog.core.errors import PermissionDenied, SourceUnavailable
from bumplog.core.time import parse_datetime, to_epoch_ms
from bumplog.domain.models import PositionSample
from bumplog.geolocation.base import (
    ErrorCallback,
    GeolocationSource,
    SampleCallback,
    Watch,
    WatchOptions,
)

logger = logging.getLogger(__name__)

WATCH_ENABLE = b'?WATCH={"enable":true,"json":true};\n'
WATCH_DISABLE = b'?WATCH={"enable":false};\n'

Connector = Callable[[], Awaitable[tuple[asyncio.StreamReader, asyncio.StreamWriter]]]


def parse_tpv(report: dict[str, Any], *, high_accuracy: bool = True) -> PositionSample | None:
    """Turn a gpsd TPV report into a `PositionSample` (None if it carries no usable fix).

    `high_accuracy` requires a 3D fix (mode 3); otherwise a 2D fix is enough.
    """
    if report.get("class") != "TPV":
        return None
    mode = int(report.get("mode") or 0)
    if mode < (3 if high_accuracy else 2):
        return None
    lat = report.get("lat")
    lon = report.get("lon")
    if lat is None or lon is None:
        return None

    ts = report.get("time")
    timestamp_ms = to_epoch_ms(parse_datetime(ts)) if ts else int(time.time() * 1000)

    accuracy = report.get("eph")
    if accuracy is None:
        errors = [float(report[k]) for k in ("epx", "epy") if report.get(k) is not None]
        accuracy = max(errors) if errors else None

    return PositionSample(
        latitude=float(lat),
        longitude=float(lon),
        timestamp_ms=timestamp_ms,
        speed_mps=report.get("speed"),
        accuracy_m=accuracy,
    )


@dataclass
class _GpsdWatch:
    watch: Watch
    writer: asyncio.StreamWriter
    task: asyncio.Task[None]


class GpsdGeolocationSource(GeolocationSource):
    """Streams fixes from gpsd; one socket connection per watch."""

    name = "native"
    default_timeout_ms = 5000
    stop_on_initial_timeout = False

    def __init__(self, settings: GpsdSettings | None = None, *, connector: Connector | None = None):
        self._settings = settings or GpsdSettings()
        self._connector = connector
        self._watches: dict[str, _GpsdWatch] = {}

    async def _open(self) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        if self._connector is not None:
            return await self._connector()
        s = self._settings
        if s.socket_path:
            coro = asyncio.open_unix_connection(s.socket_path)
        else:
            coro = asyncio.open_connection(s.host, s.port)
        return await asyncio.wait_for(coro, timeout=s.connect_timeout_seconds)

    async def _connect(self) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        try:
            return await self._open()
        except PermissionError as exc:
            raise PermissionDenied(f"Access to the gpsd socket was refused: {exc}") from exc
        except (OSError, asyncio.TimeoutError) as exc:
            raise SourceUnavailable(f"gpsd is not reachable: {exc}") from exc

    async def is_available(self) -> bool:
        try:
            _, writer = await self._connect()
        except PermissionDenied:
            # The capability exists; start_watching will report the denial.
            return True
        except SourceUnavailable:
            return False
        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()
        return True

    async def start_watching(
        self, options: WatchOptions, on_sample: SampleCallback, on_error: ErrorCallback
    ) -> str:
        reader, writer = await self._connect()
        writer.write(WATCH_ENABLE)
        await writer.drain()

        handle = f"gpsd-{uuid.uuid4().hex[:12]}"
        watch = Watch(handle, options, on_sample, on_error)
        task = asyncio.create_task(self._read_loop(watch, reader), name=f"gpsd-watch-{handle}")
        self._watches[handle] = _GpsdWatch(watch=watch, writer=writer, task=task)
        watch.arm_timer()
        logger.info("Opened gpsd watch %s", handle)
        return handle

    async def _read_loop(self, watch: Watch, reader: asyncio.StreamReader) -> None:
        while not watch.closed:
            try:
                line = await reader.readline()
            except ValueError:
                logger.debug("Skipping oversized gpsd line")
                continue
            except OSError as exc:
                watch.fail(SourceUnavailable(f"gpsd connection lost: {exc}"))
                return
            if not line:
                watch.fail(SourceUnavailable("gpsd closed the connection"))
                return
            try:
                report = json.loads(line)
                if not isinstance(report, dict):
                    continue
                sample = parse_tpv(report, high_accuracy=watch.options.high_accuracy)
            except (ValueError, TypeError):
                logger.debug("Skipping malformed gpsd line: %r", line[:80])
                continue
            if sample is None:
                continue
            try:
                watch.deliver(sample)
            except Exception as exc:
                logger.exception("gpsd fix handling failed on watch %s", watch.handle)
                watch.fail(SourceUnavailable(f"gpsd fix handling failed: {exc}"))
                return

    async def stop_watching(self, handle: str) -> None:
        entry = self._watches.pop(handle, None)
        if entry is None:
            return
        entry.watch.close()
        entry.task.cancel()
        try:
            entry.writer.write(WATCH_DISABLE)
            entry.writer.close()
            await entry.writer.wait_closed()
        except OSError as exc:
            logger.debug("gpsd socket teardown for %s failed: %s", handle, exc)
        with contextlib.suppress(asyncio.CancelledError):
            await entry.task
        logger.info("Closed gpsd watch %s", handle)
