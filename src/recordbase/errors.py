"""
Error types raised by the recordbase client.

Every error derives from RecordbaseError. Non-2xx API responses are parsed
into APIError, which normalizes known server messages to stable alias codes.
"""

import json
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any, Optional


class RecordbaseError(Exception):
    """Base class for all client errors."""
    pass


@dataclass
class FieldError:
    """Validation failure for a single request field."""
    code: str
    message: str


class APIError(RecordbaseError):
    """Raised when the server answers with an error status."""

    def __init__(
        self,
        status: int,
        message: str = "",
        data: Optional[dict[str, FieldError]] = None,
        code: str = "",
        endpoint: str = "",
        raw_body: bytes = b"",
    ):
        self.status = status
        self.message = message
        self.data = data or {}
        self.code = code
        self.endpoint = endpoint
        self.raw_body = raw_body
        super().__init__(self._describe())

    def _describe(self) -> str:
        try:
            parts = [f"{self.status} {HTTPStatus(self.status).phrase}"]
        except ValueError:
            parts = [str(self.status)]
        if self.code:
            parts.append(f"code={self.code}")
        if self.message:
            parts.append(f"msg={self.message}")
        if self.data:
            parts.append(f"data={len(self.data)} field error(s)")
        if self.endpoint:
            parts.append(f"at={self.endpoint}")
        return " ".join(parts)

    def is_auth(self) -> bool:
        return self.status == 401

    def is_forbidden(self) -> bool:
        return self.status == 403

    def is_not_found(self) -> bool:
        return self.status == 404

    def is_rate_limited(self) -> bool:
        return self.status == 429

    def is_validation(self) -> bool:
        """400 with per-field errors."""
        return self.status == 400 and bool(self.data)

    def log_fields(self) -> dict[str, Any]:
        """Structured representation for logging."""
        fields: dict[str, Any] = {"status": self.status, "message": self.message}
        if self.code:
            fields["code"] = self.code
        if self.endpoint:
            fields["endpoint"] = self.endpoint
        if self.data:
            fields["field_errors"] = len(self.data)
        return fields


class AuthenticationError(RecordbaseError):
    """Raised when credentials are rejected or cannot be obtained."""

    def __init__(self, message: str, api_error: Optional[APIError] = None):
        super().__init__(message)
        self.api_error = api_error


class RefreshError(AuthenticationError):
    """Raised when an expired credential cannot be refreshed."""
    pass


class HandshakeError(RecordbaseError):
    """Raised when the realtime stream does not open with a valid connect event."""
    pass


class SubscriptionRejected(RecordbaseError):
    """Raised when the server refuses the subscription control request."""

    def __init__(self, status: int, api_error: Optional[APIError] = None):
        detail = f": {api_error.message}" if api_error and api_error.message else ""
        super().__init__(f"Subscription request failed with status {status}{detail}")
        self.status = status
        self.api_error = api_error


class DecodeError(RecordbaseError):
    """Raised for a single realtime event whose payload cannot be decoded."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class SubscriptionCancelled(RecordbaseError):
    """Raised when a subscription is cancelled before it was confirmed."""
    pass


class SubscriptionTimeout(RecordbaseError, TimeoutError):
    """Raised when handshake and confirmation miss their deadline."""
    pass


class TransportError(RecordbaseError):
    """Raised on network-level failures."""
    pass


# Server messages mapped to stable alias codes
_MESSAGE_ALIASES: dict[str, str] = {
    # Authentication
    "Missing or invalid authentication.": "invalid_authentication",
    "Missing or invalid authentication token.": "invalid_auth_token",
    "Missing or invalid admin authorization token.": "invalid_admin_auth_token",
    "Missing or invalid record authorization token.": "invalid_record_auth_token",
    "Failed to authenticate.": "failed_authentication",
    # Authorization
    "You are not allowed to perform this request.": "forbidden_generic",
    "The authorized record is not allowed to perform this action.": "record_forbidden",
    "The authorized admin is not allowed to perform this action.": "admin_forbidden",
    "The request can be accessed only by authenticated admins.": "only_admins",
    "The request can be accessed only by authenticated records.": "only_records",
    "The request requires valid admin authorization token.": "require_admin_token",
    "The request requires valid record authorization token.": "require_record_token",
    # Request format
    "Invalid request payload.": "invalid_request_payload",
    "Invalid request body.": "invalid_request_body",
    "Missing or invalid client id.": "invalid_client_id",
    # Not found
    "The requested resource wasn't found.": "resource_not_found",
    "Collection not found.": "collection_not_found",
    "Record not found.": "record_not_found",
    # Limits and internal
    "Too Many Requests.": "too_many_requests",
    "Something went wrong while processing your request.": "internal_generic",
}


def register_message_alias(server_message: str, alias: str) -> None:
    """Add or override a server message -> alias code mapping."""
    _MESSAGE_ALIASES[server_message] = alias


def parse_api_error(status: int, body: bytes, endpoint: str = "") -> APIError:
    """
    Build an APIError from an error response.

    Invalid or non-object JSON bodies are tolerated; the error then carries
    only the status code.
    """
    message = ""
    data: dict[str, FieldError] = {}
    try:
        wire = json.loads(body) if body else {}
    except (ValueError, UnicodeDecodeError):
        wire = {}

    if isinstance(wire, dict):
        raw_message = wire.get("message")
        if isinstance(raw_message, str):
            message = raw_message.strip()
        raw_data = wire.get("data")
        if isinstance(raw_data, dict):
            for name, item in raw_data.items():
                if isinstance(item, dict):
                    data[name] = FieldError(
                        code=str(item.get("code", "")),
                        message=str(item.get("message", "")),
                    )

    return APIError(
        status=status,
        message=message,
        data=data,
        code=_MESSAGE_ALIASES.get(message, ""),
        endpoint=endpoint,
        raw_body=bytes(body),
    )
