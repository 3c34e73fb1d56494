# src/bumplog/config/settings.py
"""
Application settings (Pydantic).

Settings are loaded from `src/bumplog/config/defaults.yaml`, then optionally overridden by:
- an external YAML file via `BUMPLOG_CONFIG_PATH`
- environment variables (e.g., `SUPABASE_URL`, `SUPABASE_ANON_KEY`)

Design rule:
- Detection thresholds and timeouts live in YAML, not hard-coded in business logic.
"""

from __future__ import annotations

import os
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field

from bumplog.core.env import load_dotenv_if_present


def _read_package_yaml(filename: str) -> dict[str, Any]:
    """Read a YAML file packaged inside `bumplog.config`."""
    text = resources.files("bumplog.config").joinpath(filename).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {filename}; expected a mapping.")
    return data


def _read_yaml_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML file from disk and return its mapping root."""
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {path}; expected a mapping.")
    return data


class AppSettings(BaseModel):
    name: str = "Speed Bump Logger"
    http_timeout_seconds: float = 10
    log_level: str = "INFO"


class CacheSettings(BaseModel):
    enabled: bool = True
    dir: str = ".cache/bumplog"


class RetrySettings(BaseModel):
    max_attempts: int = Field(5, ge=0)
    base_delay_seconds: float = Field(2.0, ge=0)
    max_delay_seconds: float = Field(60.0, ge=0)


class RealtimeSettings(BaseModel):
    enabled: bool = True
    heartbeat_seconds: float = Field(30.0, gt=0)
    reconnect: RetrySettings = Field(
        default_factory=lambda: RetrySettings(max_attempts=0, base_delay_seconds=1.0, max_delay_seconds=30.0)
    )


class OutboxSettings(BaseModel):
    enabled: bool = False
    max_size: int = Field(50, ge=1)
    retry: RetrySettings = Field(default_factory=RetrySettings)


class StoreSettings(BaseModel):
    url: str | None = None
    anon_key: str | None = None
    schema_name: str = "public"
    table: str = "speed_bumps"
    load_limit: int = Field(100, ge=1)
    clear_window_days: int = Field(30, ge=0)
    snapshot_key: str = "speed_bumps"
    outbox_key: str = "speed_bumps_outbox"
    realtime: RealtimeSettings = Field(default_factory=RealtimeSettings)
    outbox: OutboxSettings = Field(default_factory=OutboxSettings)


class DetectionSettings(BaseModel):
    min_previous_speed_kmh: float = 15.0
    drop_threshold_kmh: float = 10.0
    near_stop_speed_kmh: float = 8.0
    window_size: int = Field(1, ge=1)


class GpsdSettings(BaseModel):
    host: str = "127.0.0.1"
    port: int = 2947
    socket_path: str | None = None
    connect_timeout_seconds: float = 2.0


class GeolocationSettings(BaseModel):
    backend: Literal["auto", "native", "web"] = "auto"
    high_accuracy: bool = True
    native_timeout_ms: int = Field(5000, ge=0)
    web_timeout_ms: int = Field(10000, ge=0)
    max_cached_age_ms: int = Field(0, ge=0)
    gpsd: GpsdSettings = Field(default_factory=GpsdSettings)


class MapSettings(BaseModel):
    access_token: str | None = None
    style: str = "mapbox://styles/mapbox/dark-v11"


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    detection: DetectionSettings = Field(default_factory=DetectionSettings)
    geolocation: GeolocationSettings = Field(default_factory=GeolocationSettings)
    map: MapSettings = Field(default_factory=MapSettings)


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay selected environment variables onto raw settings payload.

    Note: We intentionally keep this whitelist small to avoid exposing unsafe overrides.
    """
    load_dotenv_if_present()
    data = dict(data)
    cache_dir = os.getenv("BUMPLOG_CACHE_DIR")
    if cache_dir:
        data.setdefault("cache", {})["dir"] = cache_dir

    log_level = os.getenv("BUMPLOG_LOG_LEVEL")
    if log_level:
        data.setdefault("app", {})["log_level"] = log_level

    backend = os.getenv("BUMPLOG_GEOLOCATION_BACKEND")
    if backend:
        data.setdefault("geolocation", {})["backend"] = backend.strip().lower()

    store_url = os.getenv("SUPABASE_URL")
    store_key = os.getenv("SUPABASE_ANON_KEY")
    if store_url:
        data.setdefault("store", {})["url"] = store_url
    if store_key:
        data.setdefault("store", {})["anon_key"] = store_key

    map_token = os.getenv("MAPBOX_ACCESS_TOKEN")
    if map_token:
        data.setdefault("map", {})["access_token"] = map_token

    return data


@lru_cache
def get_settings() -> Settings:
    """Load and validate settings (cached)."""
    load_dotenv_if_present()
    config_path = os.getenv("BUMPLOG_CONFIG_PATH")
    raw = _read_yaml_file(config_path) if config_path else _read_package_yaml("defaults.yaml")
    raw = _apply_env_overrides(raw)
    return Settings.model_validate(raw)


@lru_cache
def get_logging_config() -> dict[str, Any]:
    """Load logging configuration (cached)."""
    return _read_package_yaml("logging.yaml")
