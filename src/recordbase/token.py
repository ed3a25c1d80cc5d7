"""
Bearer token inspection.

Server tokens are JWTs; the client never verifies them, it only reads the
expiry claim to avoid presenting a token the server will reject.
"""

import base64
import json
import time
from typing import Optional


# Minimum token validity required (seconds) for a token supplied by the user
MIN_TOKEN_VALIDITY = 300  # 5 minutes


def decode_jwt_payload(token: str) -> dict:
    """
    Decode the payload of a JWT token without verification.

    Args:
        token: The JWT token string.

    Returns:
        The decoded payload as a dictionary.

    Raises:
        ValueError: If the token format is invalid.
    """
    try:
        # JWT format: header.payload.signature
        parts = token.split(".")
        if len(parts) != 3:
            raise ValueError("Invalid JWT format")

        # Decode payload (add padding if needed)
        payload_b64 = parts[1]
        padding = 4 - len(payload_b64) % 4
        if padding != 4:
            payload_b64 += "=" * padding

        payload = json.loads(base64.urlsafe_b64decode(payload_b64))
    except Exception as e:
        raise ValueError(f"Failed to decode JWT: {e}") from e

    if not isinstance(payload, dict):
        raise ValueError("Failed to decode JWT: payload is not an object")
    return payload


def get_token_remaining_seconds(token: str) -> Optional[float]:
    """
    Get the remaining validity of a token in seconds.

    Args:
        token: The JWT token string.

    Returns:
        Remaining seconds until expiration, or None if the token is not a
        JWT or carries no numeric exp claim.
    """
    try:
        payload = decode_jwt_payload(token)
    except ValueError:
        return None
    exp = payload.get("exp")
    if not isinstance(exp, (int, float)) or isinstance(exp, bool):
        return None
    return exp - time.time()


def check_token_expiration(token: str, min_validity_seconds: int = MIN_TOKEN_VALIDITY) -> tuple[bool, str]:
    """
    Check if a token is expired or about to expire.

    Opaque (non-JWT) tokens are accepted as-is since their lifetime is unknown.

    Returns:
        Tuple of (is_valid, message).
    """
    remaining = get_token_remaining_seconds(token)
    if remaining is None:
        return True, "Token expiry unknown"

    if remaining <= 0:
        expired_ago = int(-remaining)
        if expired_ago < 60:
            return False, f"Token expired {expired_ago} seconds ago"
        elif expired_ago < 3600:
            return False, f"Token expired {expired_ago // 60} minutes ago"
        else:
            return False, f"Token expired {expired_ago // 3600} hours ago"

    if remaining < min_validity_seconds:
        return False, f"Token expires in {int(remaining)} seconds (minimum {min_validity_seconds}s required)"

    return True, f"Token valid for {int(remaining // 60)} more minutes"
