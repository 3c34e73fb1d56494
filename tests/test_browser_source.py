import asyncio

import pytest

from bumplog.config.settings import GeolocationSettings
from bumplog.core.errors import PermissionDenied, PositionTimeout, SourceUnavailable
from bumplog.geolocation.base import WatchOptions
from bumplog.geolocation.browser import BrowserGeolocationSource, parse_browser_position
from bumplog.geolocation.select import select_source, watch_options_for


def _position(ts: float, *, speed: float | None = 5.0, lat: float = 52.0) -> dict:
    return {
        "coords": {"latitude": lat, "longitude": 13.0, "accuracy": 12.0, "speed": speed},
        "timestamp": ts,
    }


class StubNative(BrowserGeolocationSource):
    name = "native"

    def __init__(self, available: bool):
        super().__init__()
        self._available = available

    async def is_available(self) -> bool:
        return self._available


def test_parse_browser_position_handles_null_speed():
    s = parse_browser_position(_position(1000, speed=None))

    assert s.speed_mps == 0
    assert s.accuracy_m == 12.0
    assert s.timestamp_ms == 1000


@pytest.mark.parametrize(
    "payload",
    [
        {"timestamp": 1},
        {"coords": {"latitude": 120, "longitude": 0}, "timestamp": 1},
        {"coords": {"longitude": 0}, "timestamp": 1},
    ],
)
def test_parse_browser_position_rejects_bad_payloads(payload):
    with pytest.raises(ValueError):
        parse_browser_position(payload)


@pytest.mark.asyncio
async def test_positions_are_relayed_and_stale_repeats_dropped():
    source = BrowserGeolocationSource()
    samples = []
    handle = await source.start_watching(WatchOptions(timeout_ms=0), samples.append, lambda e: None)

    assert source.push_position(handle, _position(1000)) is True
    assert source.push_position(handle, _position(1000)) is False
    assert source.push_position(handle, _position(900)) is False
    assert source.push_position(handle, _position(2000)) is True

    assert [s.timestamp_ms for s in samples] == [1000, 2000]
    await source.stop_watching(handle)


@pytest.mark.asyncio
async def test_closed_or_unknown_handles_raise_key_error():
    source = BrowserGeolocationSource()
    handle = await source.start_watching(WatchOptions(timeout_ms=0), lambda s: None, lambda e: None)
    await source.stop_watching(handle)

    with pytest.raises(KeyError):
        source.push_position(handle, _position(1))
    with pytest.raises(KeyError):
        source.push_error("web-nope", 1)
    assert source.get_watch(handle) is None


@pytest.mark.asyncio
async def test_unsupported_browser_cannot_start():
    source = BrowserGeolocationSource()
    source.report_capability(False)

    assert await source.is_available() is False
    with pytest.raises(SourceUnavailable):
        await source.start_watching(WatchOptions(), lambda s: None, lambda e: None)


@pytest.mark.asyncio
@pytest.mark.parametrize("code,expected", [(1, PermissionDenied), (2, SourceUnavailable), (3, PositionTimeout)])
async def test_error_codes_map_to_exceptions(code, expected):
    source = BrowserGeolocationSource()
    errors = []
    handle = await source.start_watching(WatchOptions(timeout_ms=0), lambda s: None, errors.append)

    source.push_error(handle, code, "from the page")

    assert type(errors[0]) is expected
    assert errors[0].code == code
    await source.stop_watching(handle)


@pytest.mark.asyncio
async def test_fix_timer_reports_timeout_and_rearms_on_fix():
    source = BrowserGeolocationSource()
    errors = []
    handle = await source.start_watching(WatchOptions(timeout_ms=200), lambda s: None, errors.append)

    await asyncio.sleep(0.1)
    source.push_position(handle, _position(1000))
    await asyncio.sleep(0.12)
    assert errors == []

    await asyncio.sleep(0.25)
    assert errors and isinstance(errors[0], PositionTimeout)
    await source.stop_watching(handle)


@pytest.mark.asyncio
async def test_select_source_prefers_reachable_native():
    settings = GeolocationSettings()
    web = BrowserGeolocationSource()

    assert (await select_source(settings, native=StubNative(True), web=web)).name == "native"
    assert await select_source(settings, native=StubNative(False), web=web) is web
    forced = GeolocationSettings(backend="web")
    assert await select_source(forced, native=StubNative(True), web=web) is web


def test_watch_options_use_backend_timeout():
    settings = GeolocationSettings()

    assert watch_options_for(BrowserGeolocationSource(), settings).timeout_ms == 10_000
    assert watch_options_for(StubNative(True), settings).timeout_ms == 5000
    assert watch_options_for(StubNative(True), settings).max_cached_age_ms == 0
