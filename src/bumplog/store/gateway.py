"""
Dual-tier persistence gateway.

The remote store is authoritative; the local cache is a read-path fallback and a
mirror of whatever the user has seen. Store errors never escape this class:

- load:  remote → replace collection + overwrite snapshot; on failure use the snapshot.
- write: remote insert → merge + mirror; on failure drop (or queue in the outbox).
- feed:  realtime inserts go through the same `merge()` as writes (id dedup, one cache key).
- clear: remote delete of the trailing window, then unconditionally wipe local state.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from pydantic import ValidationError

from bumplog.config.settings import Settings
from bumplog.core.cache import LocalCache
from bumplog.core.errors import StoreUnavailable
from bumplog.core.time import days_ago, utc_now
from bumplog.domain.models import Detection, NewSpeedBump, SpeedBumpEvent
from bumplog.store.client import StoreClient
from bumplog.store.collection import BumpCollection
from bumplog.store.outbox import Outbox
from bumplog.store.realtime import InsertCallback, RealtimeSubscription

logger = logging.getLogger(__name__)

RealtimeFactory = Callable[[InsertCallback], RealtimeSubscription]


class PersistenceGateway:
    def __init__(
        self,
        settings: Settings,
        *,
        store: StoreClient,
        cache: LocalCache,
        collection: BumpCollection | None = None,
        realtime_factory: RealtimeFactory | None = None,
        now: Callable[[], datetime] = utc_now,
    ):
        self._settings = settings
        self._store = store
        self._cache = cache
        self.collection = collection if collection is not None else BumpCollection()
        self._realtime_factory = realtime_factory or (
            lambda on_insert: RealtimeSubscription(settings.store, on_insert)
        )
        self._realtime: RealtimeSubscription | None = None
        self._now = now
        self._outbox: Outbox | None = None
        if settings.store.outbox.enabled:
            self._outbox = Outbox(
                cache,
                settings.store.outbox_key,
                settings.store.outbox,
                sender=store.insert,
                on_sent=self.merge,
            )

    @property
    def outbox(self) -> Outbox | None:
        return self._outbox

    @property
    def realtime(self) -> RealtimeSubscription | None:
        return self._realtime

    async def activate(self) -> None:
        """Load the initial collection and open the realtime feed."""
        await self.load()
        if self._settings.store.realtime.enabled and self._realtime is None:
            self._realtime = self._realtime_factory(self.merge)
            self._realtime.start()
        if self._outbox is not None:
            self._outbox.resume()

    def cached_snapshot(self) -> list[SpeedBumpEvent] | None:
        raw = self._cache.get(self._settings.store.snapshot_key)
        if not isinstance(raw, list):
            return None
        events: list[SpeedBumpEvent] = []
        for item in raw:
            try:
                events.append(SpeedBumpEvent.model_validate(item))
            except ValidationError:
                logger.warning("Skipping malformed cached bump: %r", item)
        return events

    def _mirror(self) -> None:
        self._cache.set(self._settings.store.snapshot_key, self.collection.to_json())

    async def load(self) -> list[SpeedBumpEvent]:
        try:
            events = await self._store.select_recent(self._settings.store.load_limit)
        except StoreUnavailable as exc:
            cached = self.cached_snapshot()
            logger.warning(
                "Loading speed bumps failed (%s); using %s",
                exc,
                f"{len(cached)} cached bump(s)" if cached is not None else "an empty list",
            )
            self.collection.replace(cached or [])
            return self.collection.events

        self.collection.replace(events)
        self._mirror()
        logger.info("Loaded %s speed bump(s) from the store", len(events))
        return self.collection.events

    def merge(self, event: SpeedBumpEvent) -> bool:
        """Add an event seen locally or via the feed; mirrors the collection to the cache."""
        added = self.collection.merge(event)
        if added:
            self._mirror()
        return added

    async def write(self, detection: Detection) -> SpeedBumpEvent | None:
        payload = NewSpeedBump.from_detection(detection)
        try:
            event = await self._store.insert(payload)
        except StoreUnavailable as exc:
            if self._outbox is not None:
                logger.warning("Saving speed bump failed (%s); queued for retry", exc)
                self._outbox.enqueue(payload)
            else:
                logger.warning("Saving speed bump failed (%s); detection dropped", exc)
            return None

        logger.info("Speed bump saved: id=%s speed=%.1f km/h", event.id, event.speed)
        self.merge(event)
        return event

    async def clear(self) -> None:
        cutoff = days_ago(self._settings.store.clear_window_days, now=self._now())
        try:
            await self._store.delete_since(cutoff)
        except StoreUnavailable as exc:
            logger.warning("Clearing remote history failed (%s); clearing local state anyway", exc)
        else:
            logger.info("Deleted remote speed bumps detected since %s", cutoff.isoformat())

        self.collection.clear()
        self._cache.delete(self._settings.store.snapshot_key)
        if self._outbox is not None:
            await self._outbox.clear()

    async def close(self) -> None:
        if self._realtime is not None:
            await self._realtime.close()
            self._realtime = None
        if self._outbox is not None:
            await self._outbox.close()
        await self._store.aclose()
