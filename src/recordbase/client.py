"""
recordbase client.

Wires the session store, the authorized REST transport and the realtime
subscriber together, and provides the login/logout entry points.
"""

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from .auth import SessionAuth
from .connection import create_ssl_context, normalize_base_url
from .errors import APIError, AuthenticationError, TransportError, parse_api_error
from .models import AuthResponse
from .realtime import RealtimeSubscriber
from .refresh import CredentialRefresher
from .session import (
    CONNECT_TIMEOUT,
    REQUEST_TIMEOUT,
    SUBSCRIBE_TIMEOUT,
    AdminPrincipal,
    Credential,
    Principal,
    RecordPrincipal,
    SessionStore,
)

logger = logging.getLogger(__name__)

ADMIN_LOGIN_PATH = "/api/admins/auth-with-password"
RECORD_LOGIN_PATH = "/api/collections/{collection}/auth-with-password"
HEALTH_PATH = "/api/health"


class Client:
    """Async client for a recordbase server."""

    def __init__(
        self,
        base_url: str,
        token_ttl: Optional[float] = None,
        verify_ssl: Optional[bool] = None,
        ca_bundle: Optional[str] = None,
        request_timeout: float = REQUEST_TIMEOUT,
        connect_timeout: float = CONNECT_TIMEOUT,
        subscribe_timeout: float = SUBSCRIBE_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Server hostname or URL (e.g., https://db.example.com)
            token_ttl: Seconds a fresh token is trusted before it is refreshed.
                       Defaults to RECORDBASE_TOKEN_TTL (50 minutes).
            verify_ssl: Whether to verify SSL certificates. Defaults to the
                        RECORDBASE_VERIFY_SSL env var (True if not set).
            ca_bundle: Path to a custom CA certificate file.
            request_timeout: Timeout for regular API requests in seconds
            connect_timeout: Connection establishment timeout in seconds
            subscribe_timeout: Default realtime handshake + confirmation deadline
            transport: Optional httpx transport, e.g. for testing
        """
        self.base_url = normalize_base_url(base_url)
        ssl_context = create_ssl_context(verify=verify_ssl, ca_bundle=ca_bundle)

        self.auth_store = SessionStore(self._refresh_credential, token_ttl=token_ttl)
        self.http = httpx.AsyncClient(
            base_url=self.base_url,
            auth=SessionAuth(self.auth_store),
            verify=ssl_context,
            timeout=httpx.Timeout(request_timeout, connect=connect_timeout),
            transport=transport,
        )
        self.refresher = CredentialRefresher(self.http)
        self.realtime = RealtimeSubscriber(
            self.base_url,
            self.http,
            self.auth_store,
            ssl_context=ssl_context,
            connect_timeout=connect_timeout,
            subscribe_timeout=subscribe_timeout,
        )

    async def __aenter__(self) -> "Client":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _refresh_credential(self, credential: Credential) -> AuthResponse:
        return await self.refresher.refresh(credential)

    async def send(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: Optional[dict[str, str]] = None,
    ) -> Any:
        """
        Send an authorized API request and return the decoded JSON body.

        Returns:
            The decoded response body, or None for empty responses.

        Raises:
            APIError: If the server answers with an error status.
            TransportError: If the request cannot be completed.
            RefreshError: If the session token cannot be refreshed.
        """
        try:
            response = await self.http.request(method, path, json=json, params=params)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            raise parse_api_error(response.status_code, response.content, path)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"{method} {path} returned invalid JSON: {e}") from e

    async def _login(self, path: str, principal: Principal, identity: str, password: str) -> AuthResponse:
        try:
            body = await self.send("POST", path, json={"identity": identity, "password": password})
            response = AuthResponse.from_dict(body, principal)
        except APIError as e:
            self.auth_store.clear()
            raise AuthenticationError(f"Authentication failed: {e}", api_error=e) from e
        except ValueError as e:
            self.auth_store.clear()
            raise AuthenticationError(f"Invalid authentication response: {e}") from e

        self.auth_store.set(response.token, principal)
        logger.info(f"Authenticated as {identity}")
        return response

    async def auth_with_password(self, collection: str, identity: str, password: str) -> AuthResponse:
        """
        Log in as a record of an auth collection.

        Raises:
            AuthenticationError: If the server rejects the credentials.
        """
        if not collection:
            raise ValueError("collection must not be empty")
        path = RECORD_LOGIN_PATH.format(collection=quote(collection, safe=""))
        return await self._login(path, RecordPrincipal(collection), identity, password)

    async def auth_as_admin(self, email: str, password: str) -> AuthResponse:
        """
        Log in as a superuser.

        Raises:
            AuthenticationError: If the server rejects the credentials.
        """
        return await self._login(ADMIN_LOGIN_PATH, AdminPrincipal(), email, password)

    def use_token(self, token: str, principal: Principal) -> None:
        """Install a token obtained elsewhere (OAuth2, impersonation, ...)."""
        if not token:
            self.auth_store.clear()
            return
        self.auth_store.set(token, principal)

    async def auth_refresh(self) -> str:
        """Refresh the current session token now and return it."""
        return await self.auth_store.refresh()

    def logout(self) -> None:
        """Forget the current credential."""
        self.auth_store.clear()
        logger.info("Logged out")

    async def health_check(self) -> dict:
        """Return the server health status."""
        result = await self.send("GET", HEALTH_PATH)
        return result if isinstance(result, dict) else {}

    async def close(self) -> None:
        """Close realtime subscriptions and HTTP connections."""
        await self.realtime.close()
        await self.http.aclose()
