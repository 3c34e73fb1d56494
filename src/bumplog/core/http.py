"""
HTTP helpers.

This module centralizes the minimal HTTP client setup used by the store client.

Design goals:
- One shared `httpx.AsyncClient` per gateway (connection reuse on a mobile link).
- Deterministic defaults (timeout + User-Agent).
- Raise on non-2xx so callers can decide how to fail (the gateway always "fails local").
"""

from __future__ import annotations

from typing import Any

import httpx


DEFAULT_USER_AGENT = "bumplog/0.1.0 (+https://local)"


def build_async_client(
    *,
    base_url: str,
    headers: dict[str, str] | None = None,
    timeout_seconds: float = 10,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Return an `httpx.AsyncClient` with the package defaults applied.

    `transport` is exposed so tests can plug in `httpx.MockTransport`.
    """
    request_headers = {"User-Agent": DEFAULT_USER_AGENT}
    if headers:
        request_headers.update(headers)
    return httpx.AsyncClient(
        base_url=base_url,
        headers=request_headers,
        timeout=timeout_seconds,
        transport=transport,
    )


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    params: dict[str, Any] | None = None,
    json: Any = None,
    headers: dict[str, str] | None = None,
) -> Any:
    """Send a request and return the decoded JSON body (None for empty bodies).

    Raises:
        httpx.HTTPError: On transport errors or non-2xx status codes.
        ValueError: If a non-empty response body is not valid JSON.
    """
    resp = await client.request(method, url, params=params, json=json, headers=headers)
    resp.raise_for_status()
    if not resp.content:
        return None
    return resp.json()
