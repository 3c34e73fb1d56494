"""
Realtime insert feed (Supabase Realtime over a Phoenix channel websocket).

The subscription joins `realtime:<schema>:<table>` with a `postgres_changes` filter
for INSERT events, keeps the socket alive with Phoenix heartbeats, and hands each
inserted row to `on_insert` as a `SpeedBumpEvent`. Dropped connections are retried
with exponential backoff until `close()` is called.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import json
import logging
from typing import Any, Callable
from urllib.parse import urlencode

import aiohttp
from pydantic import ValidationError

from bumplog.config.settings import StoreSettings
from bumplog.core.errors import StoreUnavailable
from bumplog.domain.models import SpeedBumpEvent

logger = logging.getLogger(__name__)

InsertCallback = Callable[[SpeedBumpEvent], None]


def realtime_url(store_url: str, anon_key: str) -> str:
    base = store_url.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://") :]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://") :]
    return f"{base}/realtime/v1/websocket?{urlencode({'apikey': anon_key, 'vsn': '1.0.0'})}"


def extract_inserted_record(message: dict[str, Any]) -> dict[str, Any] | None:
    """Return the inserted row carried by a channel message, if any.

    Handles both the `postgres_changes` envelope and the legacy per-event
    (`INSERT`) envelope.
    """
    event = message.get("event")
    payload = message.get("payload") or {}
    if event == "postgres_changes":
        data = payload.get("data") or {}
        if data.get("type") == "INSERT" and isinstance(data.get("record"), dict):
            return data["record"]
        return None
    if event == "INSERT" and isinstance(payload.get("record"), dict):
        return payload["record"]
    return None


class RealtimeSubscription:
    """Insert-only change feed scoped to the speed bump table."""

    def __init__(
        self,
        settings: StoreSettings,
        on_insert: InsertCallback,
        *,
        session_factory: Callable[[], aiohttp.ClientSession] | None = None,
    ):
        self._settings = settings
        self._on_insert = on_insert
        self._session_factory = session_factory or aiohttp.ClientSession
        self._task: asyncio.Task[None] | None = None
        self._closed = False
        self._established = False
        self._refs = itertools.count(1)

    @property
    def topic(self) -> str:
        return f"realtime:{self._settings.schema_name}:{self._settings.table}"

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _next_ref(self) -> str:
        return str(next(self._refs))

    def join_message(self) -> dict[str, Any]:
        ref = self._next_ref()
        return {
            "topic": self.topic,
            "event": "phx_join",
            "payload": {
                "config": {
                    "broadcast": {"self": False},
                    "presence": {"key": ""},
                    "postgres_changes": [
                        {
                            "event": "INSERT",
                            "schema": self._settings.schema_name,
                            "table": self._settings.table,
                        }
                    ],
                },
                "access_token": self._settings.anon_key,
            },
            "ref": ref,
            "join_ref": ref,
        }

    def handle_message(self, message: dict[str, Any]) -> SpeedBumpEvent | None:
        """Dispatch one decoded channel message; returns the event if it was an insert."""
        event = message.get("event")
        if event == "phx_reply":
            status = (message.get("payload") or {}).get("status")
            if status == "error":
                raise StoreUnavailable("subscribe", f"channel join rejected: {message.get('payload')}")
            return None
        if event == "system":
            payload = message.get("payload") or {}
            if payload.get("status") == "error":
                logger.warning("Realtime system error: %s", payload.get("message"))
            return None
        if event in {"phx_error", "phx_close"}:
            raise StoreUnavailable("subscribe", f"channel {event}")

        record = extract_inserted_record(message)
        if record is None:
            return None
        try:
            bump = SpeedBumpEvent.model_validate(record)
        except ValidationError as exc:
            logger.warning("Ignoring malformed realtime row: %s", exc)
            return None
        try:
            self._on_insert(bump)
        except Exception:
            # One bad row must not end the subscription for every later insert.
            logger.exception("Realtime insert handler failed for bump %s", bump.id)
            return None
        return bump

    def start(self) -> None:
        if self.running:
            return
        if not self._settings.url or not self._settings.anon_key:
            logger.warning("Realtime feed disabled: store credentials are not configured.")
            return
        self._closed = False
        self._task = asyncio.create_task(self._run(), name="realtime-subscription")
        self._task.add_done_callback(self._log_task_end)

    @staticmethod
    def _log_task_end(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Realtime feed stopped unexpectedly: %r", exc)

    async def _run(self) -> None:
        reconnect = self._settings.realtime.reconnect
        max_attempts = int(reconnect.max_attempts)
        attempt = 0
        while not self._closed:
            try:
                await self._connect_once()
            except (StoreUnavailable, aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
                if self._established:
                    # The last connection was healthy; back off from scratch.
                    attempt = 0
                if max_attempts and attempt >= max_attempts:
                    logger.error("Realtime feed giving up after %s attempts: %s", attempt, exc)
                    return
                delay = min(
                    float(reconnect.max_delay_seconds),
                    float(reconnect.base_delay_seconds) * (2**attempt),
                )
                logger.warning(
                    "Realtime feed error; reconnecting in %.2fs (attempt %s): %s", delay, attempt + 1, exc
                )
                attempt += 1
                await asyncio.sleep(delay)

    async def _heartbeat(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        interval = float(self._settings.realtime.heartbeat_seconds)
        while True:
            await asyncio.sleep(interval)
            await ws.send_json({"topic": "phoenix", "event": "heartbeat", "payload": {}, "ref": self._next_ref()})

    def _dispatch(self, raw: str) -> None:
        try:
            message = json.loads(raw)
        except ValueError:
            logger.warning("Ignoring undecodable realtime frame: %r", raw[:80])
            return
        if not isinstance(message, dict):
            logger.warning("Ignoring non-object realtime frame: %r", raw[:80])
            return
        self.handle_message(message)

    async def _connect_once(self) -> None:
        self._established = False
        url = realtime_url(self._settings.url or "", self._settings.anon_key or "")
        async with self._session_factory() as session:
            async with session.ws_connect(url) as ws:
                await ws.send_json(self.join_message())
                logger.info("Subscribed to realtime topic %s", self.topic)
                heartbeat = asyncio.create_task(self._heartbeat(ws))
                try:
                    async for msg in ws:
                        if msg.type == aiohttp.WSMsgType.TEXT:
                            self._dispatch(msg.data)
                            self._established = True
                        elif msg.type == aiohttp.WSMsgType.ERROR:
                            raise StoreUnavailable("subscribe", f"websocket error: {ws.exception()}")
                finally:
                    heartbeat.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await heartbeat
        if not self._closed:
            raise StoreUnavailable("subscribe", "realtime connection closed by server")

    async def close(self) -> None:
        self._closed = True
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Realtime subscription to %s closed", self.topic)
