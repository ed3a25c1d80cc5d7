"""
Credential refresh.

Knows which endpoint re-issues a token for each kind of principal.
"""

import logging
from urllib.parse import quote

import httpx

from .connection import build_auth_headers
from .errors import RefreshError, parse_api_error
from .models import AuthResponse
from .session import AdminPrincipal, Credential, Principal, RecordPrincipal

logger = logging.getLogger(__name__)

ADMIN_REFRESH_PATH = "/api/admins/auth-refresh"
RECORD_REFRESH_PATH = "/api/collections/{collection}/auth-refresh"


def refresh_path(principal: Principal) -> str:
    """
    Return the refresh endpoint for a principal.

    Raises:
        RefreshError: If a record principal has no collection name.
        TypeError: If the principal is neither an admin nor a record.
    """
    if isinstance(principal, AdminPrincipal):
        return ADMIN_REFRESH_PATH
    if isinstance(principal, RecordPrincipal):
        if not principal.collection:
            raise RefreshError("Record principal has no collection name")
        return RECORD_REFRESH_PATH.format(collection=quote(principal.collection, safe=""))
    raise TypeError(f"Unsupported principal type: {type(principal).__name__}")


class CredentialRefresher:
    """Exchanges a stale credential for a fresh one."""

    def __init__(self, http: httpx.AsyncClient):
        self._http = http

    async def refresh(self, credential: Credential) -> AuthResponse:
        """
        Request a new token for the credential's principal.

        The stale token is sent explicitly and client-level auth is bypassed,
        so a refresh never waits on the store that triggered it.

        Raises:
            RefreshError: On transport failure, error status, or invalid body.
        """
        path = refresh_path(credential.principal)
        logger.debug(f"Refreshing credential via {path}")

        try:
            response = await self._http.post(
                path,
                headers=build_auth_headers(credential.token),
                auth=None,
            )
        except httpx.HTTPError as e:
            raise RefreshError(f"Refresh request failed: {e}") from e

        if response.status_code >= 400:
            api_error = parse_api_error(response.status_code, response.content, path)
            raise RefreshError(f"Refresh rejected: {api_error}", api_error=api_error)

        try:
            return AuthResponse.from_dict(response.json(), credential.principal)
        except ValueError as e:
            raise RefreshError(f"Invalid refresh response: {e}") from e
