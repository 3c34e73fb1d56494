from __future__ import annotations

import json
import logging
import time
from hashlib import sha256
from pathlib import Path
from typing import Any

"""
Local key/value cache on disk.

This is the fallback tier of the persistence gateway:
- It stores JSON-serializable values on disk under `.cache/bumplog/` by default.
- Keys are hashed (SHA-256) to avoid filesystem path issues.
- Values survive process restart and are the only bump data available when the
  authoritative store is unreachable.

There is no TTL: a snapshot is exactly as fresh as the last successful load or write.
"""

logger = logging.getLogger(__name__)


class LocalCache:
    """A filesystem-backed key/value store keyed by (namespace, key)."""

    def __init__(self, base_dir: Path, enabled: bool = True, namespace: str = "local"):
        self._base_dir = base_dir
        self._enabled = enabled
        self._namespace = namespace

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _key_path(self, key: str) -> Path:
        """Return the file path for a cache entry (hash-based)."""
        digest = sha256(f"{self._namespace}:{key}".encode("utf-8")).hexdigest()
        return self._base_dir / self._namespace / f"{digest}.json"

    def get(self, key: str) -> Any | None:
        """Read a stored value; None when missing, disabled or unreadable."""
        if not self._enabled:
            return None

        path = self._key_path(key)
        if not path.exists():
            return None

        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return raw["value"]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Ignoring unreadable cache entry %r: %s", key, exc)
            return None

    def set(self, key: str, value: Any) -> None:
        """Write a JSON-serializable value to disk.

        Notes:
        - Writes via a temporary file + atomic replace to avoid partial/corrupt cache files.
        """
        if not self._enabled:
            return None

        path = self._key_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)

        payload = {
            "key": key,
            "updated_at_unix": int(time.time()),
            "value": value,
        }
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
        tmp.replace(path)

    def delete(self, key: str) -> None:
        if not self._enabled:
            return None
        self._key_path(key).unlink(missing_ok=True)
