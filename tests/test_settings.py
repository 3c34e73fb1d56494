import pytest

from bumplog.config.settings import get_logging_config, get_settings

ENV_VARS = (
    "BUMPLOG_CONFIG_PATH",
    "BUMPLOG_CACHE_DIR",
    "BUMPLOG_LOG_LEVEL",
    "BUMPLOG_GEOLOCATION_BACKEND",
    "SUPABASE_URL",
    "SUPABASE_ANON_KEY",
    "MAPBOX_ACCESS_TOKEN",
)


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_packaged_defaults():
    s = get_settings()

    assert s.detection.min_previous_speed_kmh == 15
    assert s.detection.drop_threshold_kmh == 10
    assert s.detection.near_stop_speed_kmh == 8
    assert s.detection.window_size == 1
    assert s.store.table == "speed_bumps"
    assert s.store.load_limit == 100
    assert s.store.clear_window_days == 30
    assert s.store.outbox.enabled is False
    assert s.geolocation.native_timeout_ms == 5000
    assert s.geolocation.web_timeout_ms == 10000
    assert s.geolocation.max_cached_age_ms == 0


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://proj.supabase.co")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon")
    monkeypatch.setenv("BUMPLOG_GEOLOCATION_BACKEND", " WEB ")
    monkeypatch.setenv("BUMPLOG_LOG_LEVEL", "DEBUG")

    s = get_settings()

    assert s.store.url == "https://proj.supabase.co"
    assert s.store.anon_key == "anon"
    assert s.geolocation.backend == "web"
    assert s.app.log_level == "DEBUG"


def test_external_config_file(monkeypatch, tmp_path):
    cfg = tmp_path / "bumplog.yaml"
    cfg.write_text(
        "detection:\n  drop_threshold_kmh: 12\n  window_size: 3\nstore:\n  outbox:\n    enabled: true\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("BUMPLOG_CONFIG_PATH", str(cfg))

    s = get_settings()

    assert s.detection.drop_threshold_kmh == 12
    assert s.detection.window_size == 3
    assert s.detection.near_stop_speed_kmh == 8
    assert s.store.outbox.enabled is True


def test_invalid_backend_is_rejected(monkeypatch):
    monkeypatch.setenv("BUMPLOG_GEOLOCATION_BACKEND", "carrier-pigeon")

    with pytest.raises(ValueError):
        get_settings()


def test_logging_config_is_a_dictconfig():
    cfg = get_logging_config()

    assert cfg["version"] == 1
    assert "console" in cfg["handlers"]
