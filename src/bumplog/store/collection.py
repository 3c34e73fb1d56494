"""
In-memory bump collection (most-recent-first).

Local detections and realtime notifications can arrive in either order, so
growth goes through `merge()`, which is order-independent: an event whose id is
already present is skipped, anything else is inserted at its `detected_at`
position (a plain prepend in the common case of a fresh event).

Only `replace()` is capped (by the caller's load limit); merged events accumulate
without eviction for the rest of the session.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterator

from bumplog.domain.models import SpeedBumpEvent

logger = logging.getLogger(__name__)

ChangeListener = Callable[[], None]


class BumpCollection:
    def __init__(self, events: list[SpeedBumpEvent] | None = None):
        self._events: list[SpeedBumpEvent] = []
        self._ids: set[str] = set()
        self._listeners: list[ChangeListener] = []
        if events:
            self._set(events)

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[SpeedBumpEvent]:
        return iter(list(self._events))

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._ids

    @property
    def events(self) -> list[SpeedBumpEvent]:
        return list(self._events)

    def head(self) -> SpeedBumpEvent | None:
        return self._events[0] if self._events else None

    def subscribe(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()

    def _set(self, events: list[SpeedBumpEvent]) -> None:
        ordered = sorted(events, key=lambda e: e.detected_at, reverse=True)
        seen: set[str] = set()
        self._events = []
        for e in ordered:
            if e.id in seen:
                continue
            seen.add(e.id)
            self._events.append(e)
        self._ids = seen

    def replace(self, events: list[SpeedBumpEvent]) -> None:
        self._set(events)
        self._notify()

    def merge(self, event: SpeedBumpEvent) -> bool:
        """Insert `event` unless its id is already present; returns True if added."""
        if event.id in self._ids:
            logger.debug("Skipping duplicate bump %s", event.id)
            return False
        idx = 0
        while idx < len(self._events) and self._events[idx].detected_at > event.detected_at:
            idx += 1
        self._events.insert(idx, event)
        self._ids.add(event.id)
        self._notify()
        return True

    def clear(self) -> None:
        self._events = []
        self._ids = set()
        self._notify()

    def to_json(self) -> list[dict[str, Any]]:
        return [e.model_dump(mode="json", exclude={"maps_url"}) for e in self._events]
