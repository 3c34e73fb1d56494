"""
Pending-insert outbox (opt-in via `store.outbox.enabled`).

Without it a detection whose insert fails is dropped. With it, the insert payload
is kept in the local cache (bounded, oldest evicted first) and resent in order with
exponential backoff; entries survive restarts and are retried again on the next
`resume()`.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable

from pydantic import ValidationError

from bumplog.config.settings import OutboxSettings
from bumplog.core.cache import LocalCache
from bumplog.core.errors import StoreUnavailable
from bumplog.domain.models import NewSpeedBump, SpeedBumpEvent

logger = logging.getLogger(__name__)

Sender = Callable[[NewSpeedBump], Awaitable[SpeedBumpEvent]]
SentCallback = Callable[[SpeedBumpEvent], None]


class Outbox:
    def __init__(
        self,
        cache: LocalCache,
        key: str,
        settings: OutboxSettings,
        *,
        sender: Sender,
        on_sent: SentCallback,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._cache = cache
        self._key = key
        self._settings = settings
        self._sender = sender
        self._on_sent = on_sent
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None

    def pending(self) -> list[NewSpeedBump]:
        raw = self._cache.get(self._key)
        if not isinstance(raw, list):
            return []
        out: list[NewSpeedBump] = []
        for item in raw:
            try:
                out.append(NewSpeedBump.model_validate(item))
            except ValidationError:
                logger.warning("Dropping malformed outbox entry: %r", item)
        return out

    def _save(self, items: list[NewSpeedBump]) -> None:
        if items:
            self._cache.set(self._key, [i.model_dump(mode="json") for i in items])
        else:
            self._cache.delete(self._key)

    def enqueue(self, payload: NewSpeedBump) -> None:
        items = self.pending()
        items.append(payload)
        overflow = len(items) - int(self._settings.max_size)
        if overflow > 0:
            logger.warning("Outbox full; discarding %s oldest pending detection(s)", overflow)
            items = items[overflow:]
        self._save(items)
        self.resume()

    def resume(self) -> None:
        """Start the flush loop if there is anything pending and it isn't running."""
        if self._task is not None and not self._task.done():
            return
        if not self.pending():
            return
        self._task = asyncio.create_task(self._flush(), name="outbox-flush")

    async def _flush(self) -> None:
        retry = self._settings.retry
        attempt = 0
        while True:
            items = self.pending()
            if not items:
                return
            head = items[0]
            try:
                event = await self._sender(head)
            except StoreUnavailable as exc:
                if attempt >= int(retry.max_attempts):
                    logger.warning(
                        "Outbox flush paused after %s attempts; %s detection(s) kept for later: %s",
                        attempt,
                        len(items),
                        exc,
                    )
                    return
                delay = min(float(retry.max_delay_seconds), float(retry.base_delay_seconds) * (2**attempt))
                logger.info("Outbox send failed; retrying in %.2fs (attempt %s)", delay, attempt + 1)
                attempt += 1
                await self._sleep(delay)
                continue
            attempt = 0
            # Re-read: clear() may have run while the send was in flight.
            remaining = self.pending()
            if remaining and remaining[0] == head:
                self._save(remaining[1:])
            self._on_sent(event)

    async def wait(self) -> None:
        """Wait for the current flush loop (if any) to finish."""
        if self._task is not None:
            await self._task

    async def clear(self) -> None:
        await self.close()
        self._cache.delete(self._key)

    async def close(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
