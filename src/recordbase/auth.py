"""
Request authorization for the REST transport.

SessionAuth plugs into httpx as the client-wide auth flow and stamps the
current session token onto every outgoing request.
"""

from typing import AsyncGenerator, Generator

import httpx

from .session import SessionStore

# Login requests must go out without a (possibly stale) token
BOOTSTRAP_PATH_FRAGMENT = "auth-with-password"


class SessionAuth(httpx.Auth):
    """Attach the SessionStore token to outgoing requests."""

    def __init__(self, store: SessionStore):
        self.store = store

    def sync_auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        raise RuntimeError("SessionAuth can only be used with httpx.AsyncClient")

    async def async_auth_flow(self, request: httpx.Request) -> AsyncGenerator[httpx.Request, httpx.Response]:
        if BOOTSTRAP_PATH_FRAGMENT not in request.url.path:
            # Raising here aborts the request before it is sent
            token = await self.store.token()
            if token:
                request.headers["Authorization"] = token
        yield request
