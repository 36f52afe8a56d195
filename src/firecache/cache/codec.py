"""Cache entry model and its document representation.

Document layout (one per cache key, the key being the document id):

    {
        "payload": "<JSON string>",
        "expireAt": <timestamp> | null,
        "typenames": ["User", "Comment"],
        "entityIds": ["User#1", "Comment#7"]
    }

Timestamps are stored in the store's native type and normalized to aware
UTC datetimes on the way out.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import orjson
from google.protobuf.timestamp_pb2 import Timestamp

PAYLOAD_FIELD = "payload"
EXPIRE_AT_FIELD = "expireAt"
TYPENAMES_FIELD = "typenames"
ENTITY_IDS_FIELD = "entityIds"


def encode_payload(value: Any) -> str:
    """Serialize a cached result to its stored JSON string."""
    return orjson.dumps(value).decode()


def decode_payload(payload: str | bytes) -> Any:
    """Deserialize a stored payload.

    Raises:
        orjson.JSONDecodeError: If the stored payload is not valid JSON
    """
    return orjson.loads(payload)


def to_epoch_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def from_epoch_ms(value: int | float) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def normalize_timestamp(value: Any) -> datetime | None:
    """Coerce a stored timestamp into an aware UTC datetime.

    Accepts datetimes (Firestore returns DatetimeWithNanoseconds, a datetime
    subclass; naive values are taken as UTC), protobuf Timestamps, and epoch
    milliseconds. Empty values mean "no expiry".
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, Timestamp):
        return value.ToDatetime(tzinfo=timezone.utc)
    if isinstance(value, (bytes, str)):
        return from_epoch_ms(float(value)) if value else None
    if isinstance(value, (int, float)):
        return from_epoch_ms(value)
    raise TypeError(f"Unsupported timestamp type: {type(value).__name__}")


@dataclass
class CacheEntry:
    """A cached result and the index fields used to invalidate it."""

    key: str
    payload: str
    expire_at: datetime | None = None
    typenames: list[str] = field(default_factory=list)
    entity_ids: list[str] = field(default_factory=list)

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expire_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return self.expire_at <= now

    def to_document(self) -> dict[str, Any]:
        """Firestore document body (the key is the document id)."""
        return {
            PAYLOAD_FIELD: self.payload,
            EXPIRE_AT_FIELD: self.expire_at,
            TYPENAMES_FIELD: list(self.typenames),
            ENTITY_IDS_FIELD: list(self.entity_ids),
        }

    @classmethod
    def from_document(cls, key: str, data: dict[str, Any]) -> "CacheEntry":
        return cls(
            key=key,
            payload=data.get(PAYLOAD_FIELD, ""),
            expire_at=normalize_timestamp(data.get(EXPIRE_AT_FIELD)),
            typenames=list(data.get(TYPENAMES_FIELD) or []),
            entity_ids=list(data.get(ENTITY_IDS_FIELD) or []),
        )
