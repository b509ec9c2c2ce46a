"""Access-token providers.

The sync layer never runs an OAuth handshake.  It awaits
``acquire_token()`` before each remote call; a provider that cannot produce a
valid token raises :class:`~hexanotes.errors.AuthExpired` so the caller can
re-run its sign-in flow.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable

from hexanotes.errors import AuthExpired


@runtime_checkable
class TokenProvider(Protocol):
    async def acquire_token(self) -> str: ...

    def invalidate(self) -> None:
        """Forget the cached token after the remote rejected it."""
        ...


class StaticTokenProvider:
    """Serves one token obtained by an external sign-in flow."""

    def __init__(self, token: str | None) -> None:
        self._token = token or None

    async def acquire_token(self) -> str:
        if self._token is None:
            raise AuthExpired("No access token; sign in again")
        return self._token

    def invalidate(self) -> None:
        self._token = None

    def set_token(self, token: str) -> None:
        self._token = token


class CallbackTokenProvider:
    """Fetches a token through an async callback and caches it until invalidated."""

    def __init__(self, fetch: Callable[[], Awaitable[str | None]]) -> None:
        self._fetch = fetch
        self._token: str | None = None

    async def acquire_token(self) -> str:
        if self._token is None:
            token = await self._fetch()
            if not token:
                raise AuthExpired("Sign-in flow returned no token")
            self._token = token
        return self._token

    def invalidate(self) -> None:
        self._token = None
