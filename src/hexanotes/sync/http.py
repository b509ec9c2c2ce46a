"""Authorised request helper that maps HTTP failures onto the error taxonomy."""

from __future__ import annotations

from typing import Any

import httpx

from hexanotes.errors import AuthExpired, RemoteUnavailable
from hexanotes.sync.auth import TokenProvider

_AUTH_STATUSES = {401, 403}


async def send(
    client: httpx.AsyncClient,
    tokens: TokenProvider,
    method: str,
    url: str,
    *,
    allow_404: bool = False,
    headers: dict[str, str] | None = None,
    **kwargs: Any,
) -> httpx.Response:
    """Send an authorised request.

    Raises :class:`AuthExpired` on 401/403 (after invalidating the cached
    token) and :class:`RemoteUnavailable` on request errors and any other
    error status.  With ``allow_404`` a 404 response is returned to the caller.
    """
    token = await tokens.acquire_token()
    merged = {"Authorization": f"Bearer {token}", **(headers or {})}
    try:
        r = await client.request(method, url, headers=merged, **kwargs)
    except httpx.RequestError as exc:
        raise RemoteUnavailable(f"{method} {url} failed: {exc}") from exc

    if r.status_code in _AUTH_STATUSES:
        tokens.invalidate()
        raise AuthExpired(f"{method} {url} rejected with {r.status_code}")
    if r.status_code == 404 and allow_404:
        return r
    try:
        r.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise RemoteUnavailable(f"{method} {url} returned {r.status_code}") from exc
    return r
