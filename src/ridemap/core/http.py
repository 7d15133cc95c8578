"""
JSON-over-HTTP helpers shared by the routing providers and the driver listing.

Every request carries the ridemap User-Agent and an explicit timeout. Errors are
not handled here: non-2xx responses raise `httpx.HTTPStatusError` and bad bodies
raise `ValueError`, and each caller applies its own policy (the estimator drops
the marker, route calculation tries the next provider, the listing sets its
error flag).
"""

from __future__ import annotations

from typing import Any

import httpx


DEFAULT_USER_AGENT = "ridemap/0.1.0 (+https://local)"


def _headers(extra: dict[str, str] | None) -> dict[str, str]:
    request_headers = {"User-Agent": DEFAULT_USER_AGENT}
    if extra:
        request_headers.update(extra)
    return request_headers


def get_json(
    url: str,
    *,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    timeout_seconds: float = 15,
) -> Any:
    """GET `url` and return the decoded JSON response.

    Raises:
        httpx.HTTPError: On transport errors or non-2xx status codes.
        ValueError: If the response body is not valid JSON.
    """
    with httpx.Client(timeout=timeout_seconds) as client:
        resp = client.get(url, params=params, headers=_headers(headers))
        resp.raise_for_status()
        return resp.json()


async def get_json_async(
    url: str,
    *,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    timeout_seconds: float = 15,
    client: httpx.AsyncClient | None = None,
) -> Any:
    """Async variant of `get_json`.

    Pass a shared `client` when fanning out many requests (one connection pool per batch);
    otherwise a short-lived client is created for this call.

    Raises:
        httpx.HTTPError: On transport errors or non-2xx status codes.
        ValueError: If the response body is not valid JSON.
    """
    if client is not None:
        resp = await client.get(url, params=params, headers=_headers(headers), timeout=timeout_seconds)
        resp.raise_for_status()
        return resp.json()

    async with httpx.AsyncClient(timeout=timeout_seconds) as own_client:
        resp = await own_client.get(url, params=params, headers=_headers(headers))
        resp.raise_for_status()
        return resp.json()
