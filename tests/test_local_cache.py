from bumplog.core.cache import LocalCache


def test_values_survive_a_new_instance(tmp_path):
    LocalCache(tmp_path).set("speed_bumps", [{"id": "a"}])
    assert LocalCache(tmp_path).get("speed_bumps") == [{"id": "a"}]


def test_missing_key_returns_none(tmp_path):
    assert LocalCache(tmp_path).get("nope") is None


def test_delete_is_idempotent(tmp_path):
    cache = LocalCache(tmp_path)
    cache.set("k", 1)
    cache.delete("k")
    cache.delete("k")
    assert cache.get("k") is None


def test_disabled_cache_stores_nothing(tmp_path):
    cache = LocalCache(tmp_path, enabled=False)
    cache.set("k", 1)
    assert cache.get("k") is None
    assert not any(tmp_path.iterdir())


def test_corrupt_entry_reads_as_missing(tmp_path):
    cache = LocalCache(tmp_path)
    cache.set("k", {"v": 1})
    path = next((tmp_path / "local").glob("*.json"))
    path.write_text("{not json", encoding="utf-8")
    assert cache.get("k") is None
