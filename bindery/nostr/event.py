"""Wire events, templates and subscription filters."""

import hashlib
import json
import time
from dataclasses import dataclass, field
from typing import Any

from ..errors import MalformedPayload
from .tags import Tag, parse_tags, serialize_tags

_HEX = set("0123456789abcdef")


def _is_hex(value: Any, length: int) -> bool:
    return isinstance(value, str) and len(value) == length and set(value) <= _HEX


def now_seconds() -> int:
    return int(time.time())


def compute_event_id(
    pubkey: str, created_at: int, kind: int, tags: list[list[str]], content: str
) -> str:
    """Compute the content-addressed event id (NIP-01)."""
    serialized = json.dumps(
        [0, pubkey, created_at, kind, tags, content],
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


@dataclass
class EventTemplate:
    """An unsigned event."""

    kind: int
    content: str
    tags: list[Tag] = field(default_factory=list)
    created_at: int = field(default_factory=now_seconds)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "created_at": self.created_at,
            "tags": serialize_tags(self.tags),
            "content": self.content,
        }


@dataclass
class Event:
    """A signed event as relays store and serve it."""

    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: list[Tag]
    content: str
    sig: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": serialize_tags(self.tags),
            "content": self.content,
            "sig": self.sig,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Event":
        """Parse and shape-check an event received from the wire.

        Raises:
            MalformedPayload: If a field is missing or has the wrong type.
        """
        if not isinstance(data, dict):
            raise MalformedPayload("Event must be a JSON object")
        try:
            event = cls(
                id=data["id"],
                pubkey=data["pubkey"],
                created_at=data["created_at"],
                kind=data["kind"],
                tags=parse_tags(data.get("tags", [])),
                content=data["content"],
                sig=data["sig"],
            )
        except KeyError as e:
            raise MalformedPayload(f"Event is missing field {e}") from e

        if not _is_hex(event.id, 64) or not _is_hex(event.pubkey, 64):
            raise MalformedPayload("Event id and pubkey must be 32-byte hex")
        if not _is_hex(event.sig, 128):
            raise MalformedPayload("Event signature must be 64-byte hex")
        if not isinstance(event.created_at, int) or not isinstance(event.kind, int):
            raise MalformedPayload("Event created_at and kind must be integers")
        if not isinstance(event.content, str):
            raise MalformedPayload("Event content must be a string")
        return event

    def computed_id(self) -> str:
        return compute_event_id(
            self.pubkey,
            self.created_at,
            self.kind,
            serialize_tags(self.tags),
            self.content,
        )

    def has_valid_id(self) -> bool:
        return self.computed_id() == self.id


@dataclass
class Filter:
    """Subscription filter sent in a REQ message."""

    kinds: list[int] = field(default_factory=list)
    authors: list[str] = field(default_factory=list)
    tags: dict[str, list[str]] = field(default_factory=dict)
    limit: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.kinds:
            data["kinds"] = list(self.kinds)
        if self.authors:
            data["authors"] = list(self.authors)
        for name, values in self.tags.items():
            data[f"#{name}"] = list(values)
        if self.limit is not None:
            data["limit"] = self.limit
        return data
