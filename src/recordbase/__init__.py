"""
Async client for a recordbase server.

Keeps a session token fresh for every request and delivers realtime
record changes over a server-sent-events stream.
"""

__version__ = "0.1.0"

from .errors import (
    RecordbaseError,
    APIError,
    FieldError,
    AuthenticationError,
    RefreshError,
    HandshakeError,
    SubscriptionRejected,
    DecodeError,
    SubscriptionCancelled,
    SubscriptionTimeout,
    TransportError,
    parse_api_error,
    register_message_alias,
)
from .session import (
    get_int_env,
    AdminPrincipal,
    RecordPrincipal,
    Principal,
    Credential,
    SessionStore,
    TOKEN_TTL,
    SUBSCRIBE_TIMEOUT,
    CONTROL_TIMEOUT,
    CONNECT_TIMEOUT,
    REQUEST_TIMEOUT,
)
from .models import Record, AdminModel, AuthResponse, RealtimeEvent
from .auth import SessionAuth
from .refresh import CredentialRefresher, refresh_path
from .realtime import (
    RealtimeSubscriber,
    RealtimeCallback,
    Subscription,
    SubscriptionState,
)
from .client import Client

__all__ = [
    "__version__",
    # Client
    "Client",
    # Session management
    "get_int_env",
    "AdminPrincipal",
    "RecordPrincipal",
    "Principal",
    "Credential",
    "SessionStore",
    "SessionAuth",
    "CredentialRefresher",
    "refresh_path",
    # Realtime
    "RealtimeSubscriber",
    "RealtimeCallback",
    "Subscription",
    "SubscriptionState",
    # Models
    "Record",
    "AdminModel",
    "AuthResponse",
    "RealtimeEvent",
    # Errors
    "RecordbaseError",
    "APIError",
    "FieldError",
    "AuthenticationError",
    "RefreshError",
    "HandshakeError",
    "SubscriptionRejected",
    "DecodeError",
    "SubscriptionCancelled",
    "SubscriptionTimeout",
    "TransportError",
    "parse_api_error",
    "register_message_alias",
    # Configuration
    "TOKEN_TTL",
    "SUBSCRIBE_TIMEOUT",
    "CONTROL_TIMEOUT",
    "CONNECT_TIMEOUT",
    "REQUEST_TIMEOUT",
]
