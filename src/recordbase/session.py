"""
Session management for the recordbase client.

Contains the credential store that hands out bearer tokens, the principal
types that own a session, and shared configuration constants.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Union

from .errors import RefreshError
from .token import get_token_remaining_seconds

if TYPE_CHECKING:
    from .models import AuthResponse

logger = logging.getLogger(__name__)


def get_int_env(name: str, default: int) -> int:
    """Get an integer from environment variable, with fallback to default."""
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


# Session constants - configurable via environment variables
TOKEN_TTL = get_int_env("RECORDBASE_TOKEN_TTL", 3000)  # seconds - trusted lifetime of a fresh token (server issues 60 min)
EXPIRY_SKEW = 60  # seconds - refresh this long before a JWT's own exp claim
SUBSCRIBE_TIMEOUT = get_int_env("RECORDBASE_SUBSCRIBE_TIMEOUT", 30)  # seconds - handshake + confirmation
CONTROL_TIMEOUT = get_int_env("RECORDBASE_CONTROL_TIMEOUT", 10)  # seconds - subscription control POST
CONNECT_TIMEOUT = get_int_env("RECORDBASE_CONNECT_TIMEOUT", 30)  # seconds - connection establishment
REQUEST_TIMEOUT = get_int_env("RECORDBASE_REQUEST_TIMEOUT", 30)  # seconds - regular API requests


@dataclass(frozen=True)
class AdminPrincipal:
    """Superuser identity, refreshed through the admin endpoint."""


@dataclass(frozen=True)
class RecordPrincipal:
    """Auth-collection record identity."""

    collection: str


Principal = Union[AdminPrincipal, RecordPrincipal]


@dataclass(frozen=True)
class Credential:
    """A bearer token together with its owner and local expiry."""

    token: str
    principal: Principal
    expires_at: float  # monotonic clock seconds

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


# Type alias for the callable that exchanges a stale credential for a fresh one
RefreshCallback = Callable[[Credential], Awaitable["AuthResponse"]]


class SessionStore:
    """
    Holds the current credential and coordinates its refresh.

    Concurrent callers that observe an expired credential share a single
    in-flight refresh and all receive its outcome.
    """

    def __init__(
        self,
        refresh_callback: Optional[RefreshCallback] = None,
        token_ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the store.

        Args:
            refresh_callback: Async callable that obtains a new credential for
                              an expired one. Without it, expired tokens fail.
            token_ttl: Seconds a freshly installed token is trusted. Defaults to
                       RECORDBASE_TOKEN_TTL (50 minutes).
            clock: Monotonic time source, replaceable in tests.
        """
        self.refresh_callback = refresh_callback
        self.token_ttl = TOKEN_TTL if token_ttl is None else token_ttl
        self._clock = clock
        self._credential: Optional[Credential] = None
        self._lock = asyncio.Lock()
        self._refresh_task: Optional[asyncio.Task] = None

    @property
    def principal(self) -> Optional[Principal]:
        credential = self._credential
        return credential.principal if credential else None

    @property
    def is_authenticated(self) -> bool:
        """True while a credential is installed and not yet expired."""
        credential = self._credential
        return credential is not None and not credential.expired(self._clock())

    @property
    def expires_in(self) -> Optional[float]:
        """Seconds until the current credential expires, or None."""
        credential = self._credential
        if credential is None:
            return None
        return credential.expires_at - self._clock()

    def set(self, token: str, principal: Principal) -> None:
        """Install a freshly obtained credential, replacing any previous one."""
        now = self._clock()
        lifetime = float(self.token_ttl)

        # Never trust a JWT past its own deadline. Tokens shorter-lived than
        # the skew keep half their lifetime so a fresh one is never born stale.
        remaining = get_token_remaining_seconds(token)
        if remaining is not None:
            lifetime = min(lifetime, max(remaining / 2, remaining - EXPIRY_SKEW))

        self._credential = Credential(
            token=token,
            principal=principal,
            expires_at=now + lifetime,
        )
        logger.debug(f"Credential installed for {principal}, valid for {int(lifetime)}s")

    def clear(self) -> None:
        """Revert to the unauthenticated state."""
        self._credential = None
        logger.debug("Credential cleared")

    async def token(self) -> str:
        """
        Return a currently valid token.

        Returns:
            The cached token if it has not expired, a refreshed token if it has,
            or an empty string when no credential is installed.

        Raises:
            RefreshError: If the refresh fails. Every concurrent waiter
                          receives the same error.
        """
        credential = self._credential
        if credential is None:
            return ""
        if not credential.expired(self._clock()):
            return credential.token

        async with self._lock:
            # Another caller may have installed a new credential meanwhile
            current = self._credential
            if current is None:
                return ""
            if not current.expired(self._clock()):
                return current.token

            task = self._join_refresh(current)

        # Shield so a cancelled waiter does not abort the shared refresh
        return await asyncio.shield(task)

    async def refresh(self) -> str:
        """
        Refresh the current credential now, regardless of its expiry.

        Joins a refresh that is already in flight.

        Raises:
            RefreshError: If no credential is installed or the refresh fails.
        """
        async with self._lock:
            current = self._credential
            if current is None:
                raise RefreshError("No credential to refresh")
            task = self._join_refresh(current)
        return await asyncio.shield(task)

    def _join_refresh(self, credential: Credential) -> asyncio.Task:
        """Return the in-flight refresh task, starting one if needed. Call with the lock held."""
        task = self._refresh_task
        if task is None:
            task = asyncio.get_running_loop().create_task(self._refresh(credential))
            self._refresh_task = task
        return task

    async def _refresh(self, credential: Credential) -> str:
        """Run one refresh and install its result."""
        try:
            if self.refresh_callback is None:
                raise RefreshError("Token expired and no refresh is configured")

            logger.info(f"Refreshing credential for {credential.principal}")
            response = await self.refresh_callback(credential)
            if not response.token:
                raise RefreshError("Refresh response did not contain a token")

            # Logged out or re-authenticated while the refresh was in flight
            if self._credential is not credential:
                logger.info("Credential changed during refresh, discarding result")
                current = self._credential
                return current.token if current else ""

            self.set(response.token, response.principal)
            logger.info("Token refreshed successfully")
            return response.token
        except RefreshError as e:
            logger.error(f"Token refresh failed: {e}")
            raise
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Token refresh failed: {type(e).__name__}: {e}")
            raise RefreshError(f"Token refresh failed: {e}") from e
        finally:
            self._refresh_task = None
