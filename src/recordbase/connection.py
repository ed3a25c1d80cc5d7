"""
Connection utilities for the recordbase client.

Contains SSL context, timeout, and connector factory functions shared by
the REST transport and the long-lived realtime stream.
"""

import logging
import os
import ssl
from typing import Optional

import aiohttp

from .session import CONNECT_TIMEOUT

logger = logging.getLogger(__name__)


def _get_bool_env(name: str, default: bool) -> bool:
    """Get a boolean from environment variable."""
    value = os.environ.get(name, "").lower()
    if not value:
        return default
    return value in ("1", "true", "yes", "on")


# Default to True for security, allow override via environment
VERIFY_SSL_DEFAULT = _get_bool_env("RECORDBASE_VERIFY_SSL", True)
ALLOW_INSECURE = _get_bool_env("RECORDBASE_ALLOW_INSECURE", False)
CA_BUNDLE_DEFAULT = os.environ.get("RECORDBASE_CA_BUNDLE", "")


def normalize_base_url(base_url: str) -> str:
    """Normalize a server address to a base URL without trailing slash.

    Accepts: bare hostname, or URL with http/https scheme.
    """
    base_url = base_url.strip().rstrip("/")
    if not base_url.startswith(("http://", "https://")):
        return f"https://{base_url}"
    return base_url


def create_ssl_context(
    verify: Optional[bool] = None,
    ca_bundle: Optional[str] = None,
) -> ssl.SSLContext:
    """
    Build the TLS context used by both REST calls and the realtime stream.

    A CA bundle (argument, else RECORDBASE_CA_BUNDLE) is added to the system
    trust store. Skipping verification (argument, else RECORDBASE_VERIFY_SSL)
    only takes effect with RECORDBASE_ALLOW_INSECURE set; without it the
    request is logged and the server is still verified.
    """
    ssl_ctx = ssl.create_default_context()
    ca_bundle = ca_bundle or CA_BUNDLE_DEFAULT
    if ca_bundle:
        ssl_ctx.load_verify_locations(cafile=ca_bundle)

    if VERIFY_SSL_DEFAULT if verify is None else verify:
        return ssl_ctx
    if not ALLOW_INSECURE:
        logger.warning("Server certificate is still verified: RECORDBASE_ALLOW_INSECURE is not set")
        return ssl_ctx

    ssl_ctx.check_hostname = False
    ssl_ctx.verify_mode = ssl.CERT_NONE
    logger.warning("Server certificate is NOT verified; tokens may be sent to an impostor")
    return ssl_ctx


def create_stream_timeout(
    connect_timeout: float = CONNECT_TIMEOUT,
) -> aiohttp.ClientTimeout:
    """
    Create a ClientTimeout for the realtime event stream.

    Only connection establishment is bounded; the stream itself has no
    total or read timeout and is torn down by cancellation.
    """
    return aiohttp.ClientTimeout(
        total=None,
        sock_read=None,
        connect=connect_timeout,
        sock_connect=connect_timeout,
    )


def create_stream_connector(
    ssl_context: Optional[ssl.SSLContext] = None,
    verify_ssl: Optional[bool] = None,
    ca_bundle: Optional[str] = None,
) -> aiohttp.TCPConnector:
    """Connector for the realtime stream session; reuses the client's TLS context when given."""
    if ssl_context is None:
        ssl_context = create_ssl_context(verify=verify_ssl, ca_bundle=ca_bundle)
    return aiohttp.TCPConnector(ssl=ssl_context)


def build_auth_headers(auth_token: Optional[str] = None) -> dict[str, str]:
    """
    Build HTTP headers for an authorized request.

    The token is sent verbatim; the server does not expect a scheme prefix.
    """
    headers = {}
    if auth_token:
        headers["Authorization"] = auth_token
    return headers
