"""
Data models exchanged with the server.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from .errors import DecodeError
from .session import Principal

# Use orjson for faster JSON parsing if available
try:
    import orjson
    def json_dumps(obj: Any) -> str:
        return orjson.dumps(obj).decode("utf-8")
    def json_loads(s: str | bytes) -> Any:
        return orjson.loads(s)
except ImportError:
    import json
    json_dumps = json.dumps
    json_loads = json.loads


# Fields every record carries; everything else lands in Record.data
_RECORD_BASE_FIELDS = ("id", "created", "updated", "collectionId", "collectionName", "expand")


@dataclass
class Record:
    """A record snapshot. Collection-specific fields are kept in ``data``."""

    id: str = ""
    collection_id: str = ""
    collection_name: str = ""
    created: str = ""
    updated: str = ""
    expand: dict[str, Any] = field(default_factory=dict)
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: dict) -> "Record":
        expand = raw.get("expand")
        return cls(
            id=str(raw.get("id") or ""),
            collection_id=str(raw.get("collectionId") or ""),
            collection_name=str(raw.get("collectionName") or ""),
            created=str(raw.get("created") or ""),
            updated=str(raw.get("updated") or ""),
            expand=expand if isinstance(expand, dict) else {},
            data={k: v for k, v in raw.items() if k not in _RECORD_BASE_FIELDS},
        )

    def to_dict(self) -> dict:
        d = dict(self.data)
        d.update({
            "id": self.id,
            "collectionId": self.collection_id,
            "collectionName": self.collection_name,
            "created": self.created,
            "updated": self.updated,
        })
        if self.expand:
            d["expand"] = self.expand
        return d

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def get_str(self, key: str) -> str:
        value = self.data.get(key)
        return value if isinstance(value, str) else ""

    def get_bool(self, key: str) -> bool:
        value = self.data.get(key)
        return value if isinstance(value, bool) else False

    def get_float(self, key: str) -> float:
        value = self.data.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return 0.0
        return float(value)

    def get_list(self, key: str) -> list[str]:
        value = self.data.get(key)
        if not isinstance(value, list):
            return []
        return [v for v in value if isinstance(v, str)]


@dataclass
class AdminModel:
    """A superuser account."""

    id: str = ""
    email: str = ""
    avatar: int = 0
    created: str = ""
    updated: str = ""

    @classmethod
    def from_dict(cls, raw: dict) -> "AdminModel":
        avatar = raw.get("avatar")
        return cls(
            id=str(raw.get("id") or ""),
            email=str(raw.get("email") or ""),
            avatar=avatar if isinstance(avatar, int) else 0,
            created=str(raw.get("created") or ""),
            updated=str(raw.get("updated") or ""),
        )


@dataclass
class AuthResponse:
    """Result of a login or refresh request."""

    token: str
    principal: Principal
    admin: Optional[AdminModel] = None
    record: Optional[Record] = None

    @classmethod
    def from_dict(cls, raw: Any, principal: Principal) -> "AuthResponse":
        """
        Parse an auth response body for the principal that requested it.

        Raises:
            ValueError: If the body is not an object carrying a string token.
        """
        if not isinstance(raw, dict):
            raise ValueError("auth response is not a JSON object")
        token = raw.get("token")
        if not isinstance(token, str) or not token:
            raise ValueError("auth response has no token")

        admin = raw.get("admin")
        record = raw.get("record")
        return cls(
            token=token,
            principal=principal,
            admin=AdminModel.from_dict(admin) if isinstance(admin, dict) else None,
            record=Record.from_dict(record) if isinstance(record, dict) else None,
        )


@dataclass
class RealtimeEvent:
    """A change notification delivered over the realtime stream."""

    action: str
    record: Record

    @classmethod
    def from_json(cls, raw: str) -> "RealtimeEvent":
        """
        Decode an event payload.

        Raises:
            DecodeError: If the payload is not a JSON object with an action.
        """
        try:
            payload = json_loads(raw)
        except ValueError as e:
            raise DecodeError(f"Failed to decode realtime event: {e}", raw=raw) from e

        if not isinstance(payload, dict):
            raise DecodeError("Realtime event is not a JSON object", raw=raw)
        action = payload.get("action")
        if not isinstance(action, str) or not action:
            raise DecodeError("Realtime event has no action", raw=raw)
        record = payload.get("record")
        if record is None:
            record = {}
        elif not isinstance(record, dict):
            raise DecodeError("Realtime event record is not a JSON object", raw=raw)

        return cls(action=action, record=Record.from_dict(record))
