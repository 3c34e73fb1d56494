"""
Authoritative store client (Supabase / PostgREST).

This module is responsible only for talking to the `speed_bumps` table:
- ordered, limited select of the most recent rows,
- single-row insert returning the stored row,
- range delete by `detected_at`.

Every failure (transport, non-2xx, malformed body) surfaces as `StoreUnavailable`;
deciding what to do about it is the gateway's job.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from bumplog.config.settings import Settings
from bumplog.core.errors import StoreUnavailable
from bumplog.core.http import build_async_client, request_json
from bumplog.core.time import to_iso
from bumplog.domain.models import NewSpeedBump, SpeedBumpEvent

logger = logging.getLogger(__name__)


class StoreClient(Protocol):
    async def select_recent(self, limit: int) -> list[SpeedBumpEvent]: ...

    async def insert(self, payload: NewSpeedBump) -> SpeedBumpEvent: ...

    async def delete_since(self, cutoff: datetime) -> None: ...

    async def aclose(self) -> None: ...


class SupabaseStoreClient:
    """PostgREST client for the speed bump table."""

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None):
        self._settings = settings
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def _path(self) -> str:
        return f"/rest/v1/{self._settings.store.table}"

    def _require_credentials(self) -> tuple[str, str]:
        """Return (url, anon_key) or raise if missing."""
        url = self._settings.store.url
        key = self._settings.store.anon_key
        if not url or not key:
            raise StoreUnavailable(
                "configure", "Store credentials are not configured. Set SUPABASE_URL and SUPABASE_ANON_KEY."
            )
        return url.rstrip("/"), key

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            url, key = self._require_credentials()
            headers = {"apikey": key, "Authorization": f"Bearer {key}"}
            schema = self._settings.store.schema_name
            if schema != "public":
                headers["Accept-Profile"] = schema
                headers["Content-Profile"] = schema
            self._client = build_async_client(
                base_url=url,
                headers=headers,
                timeout_seconds=self._settings.app.http_timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def _call(
        self,
        operation: str,
        method: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        try:
            return await request_json(
                self._http(), method, self._path, params=params, json=json, headers=headers
            )
        except httpx.HTTPStatusError as exc:
            raise StoreUnavailable(
                operation, f"HTTP {exc.response.status_code}: {exc.response.text[:200]}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise StoreUnavailable(operation, str(exc) or exc.__class__.__name__) from exc

    async def select_recent(self, limit: int) -> list[SpeedBumpEvent]:
        rows = await self._call(
            "select",
            "GET",
            params={"select": "*", "order": "detected_at.desc", "limit": str(int(limit))},
        )
        if not isinstance(rows, list):
            raise StoreUnavailable("select", "expected a JSON array of rows")
        try:
            return [SpeedBumpEvent.model_validate(row) for row in rows]
        except ValidationError as exc:
            raise StoreUnavailable("select", f"malformed row: {exc}") from exc

    async def insert(self, payload: NewSpeedBump) -> SpeedBumpEvent:
        rows = await self._call(
            "insert",
            "POST",
            json=payload.model_dump(mode="json"),
            headers={"Prefer": "return=representation"},
        )
        row = rows[0] if isinstance(rows, list) and rows else rows
        if not isinstance(row, dict):
            raise StoreUnavailable("insert", "insert did not return the stored row")
        try:
            return SpeedBumpEvent.model_validate(row)
        except ValidationError as exc:
            raise StoreUnavailable("insert", f"malformed row: {exc}") from exc

    async def delete_since(self, cutoff: datetime) -> None:
        await self._call("delete", "DELETE", params={"detected_at": f"gte.{to_iso(cutoff)}"})

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
