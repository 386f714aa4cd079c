"""Typed event tags.

Events carry tags as positional string arrays (``["d", "book-x"]``). The
classes here give the tags the sync core cares about a name and a shape.
A parsed tag keeps its wire array, so extra positions and the exact value
spelling survive a parse/serialize cycle and signatures still verify.
Anything without a dedicated type is kept as a RawTag.
"""

from dataclasses import dataclass, field
from typing import TypeVar

from ..errors import MalformedPayload

SYNC_MARKER_TAG = "binder-sync"
SYNC_KEY_TAG = "binder-sync-key"


@dataclass(frozen=True)
class Tag:
    """Base class for typed tags."""

    name = ""

    # Wire array as received; empty for tags built locally
    raw: tuple[str, ...] = field(default=(), compare=False, repr=False, kw_only=True)

    def serialize(self) -> list[str]:
        if self.raw:
            return list(self.raw)
        return self._serialize()

    def _serialize(self) -> list[str]:
        raise NotImplementedError


@dataclass(frozen=True)
class DTag(Tag):
    """Stable coordinate identifier (``kind:pubkey:d``)."""

    value: str
    name = "d"

    def _serialize(self) -> list[str]:
        return ["d", self.value]


@dataclass(frozen=True)
class SyncMarkerTag(Tag):
    """Marks an event as a sync snapshot and says which kind."""

    value: str
    name = SYNC_MARKER_TAG

    def _serialize(self) -> list[str]:
        return [SYNC_MARKER_TAG, self.value]


@dataclass(frozen=True)
class SyncKeyTag(Tag):
    """Derived public key of the scope that can decrypt the content."""

    pubkey: str
    name = SYNC_KEY_TAG

    def _serialize(self) -> list[str]:
        return [SYNC_KEY_TAG, self.pubkey]


@dataclass(frozen=True)
class VersionTag(Tag):
    version: int
    name = "version"

    def _serialize(self) -> list[str]:
        return ["version", str(self.version)]


@dataclass(frozen=True)
class ActionTag(Tag):
    action: str
    name = "action"

    def _serialize(self) -> list[str]:
        return ["action", self.action]


@dataclass(frozen=True)
class RawTag(Tag):
    """Any tag without a dedicated type."""

    values: tuple[str, ...]

    @property
    def name(self) -> str:  # type: ignore[override]
        return self.values[0]

    def _serialize(self) -> list[str]:
        return list(self.values)


T = TypeVar("T", bound=Tag)


def parse_tag(raw: list[str]) -> Tag:
    """Parse a positional tag array into a typed tag.

    Raises:
        MalformedPayload: If the array is empty, holds non-strings, or a
            known tag is missing its value.
    """
    if not isinstance(raw, (list, tuple)) or not raw:
        raise MalformedPayload(f"Invalid tag: {raw!r}")
    if not all(isinstance(v, str) for v in raw):
        raise MalformedPayload(f"Tag values must be strings: {raw!r}")

    name = raw[0]
    wire = tuple(raw)
    known = name in ("d", SYNC_MARKER_TAG, SYNC_KEY_TAG, "version", "action")
    if known and len(raw) < 2:
        raise MalformedPayload(f"Tag '{name}' is missing its value")

    if name == "d":
        return DTag(raw[1], raw=wire)
    if name == SYNC_MARKER_TAG:
        return SyncMarkerTag(raw[1], raw=wire)
    if name == SYNC_KEY_TAG:
        return SyncKeyTag(raw[1], raw=wire)
    if name == "version":
        try:
            return VersionTag(int(raw[1]), raw=wire)
        except ValueError as e:
            raise MalformedPayload(f"Invalid version tag: {raw[1]!r}", e) from e
    if name == "action":
        return ActionTag(raw[1], raw=wire)
    return RawTag(wire)


def parse_tags(raw_tags: list[list[str]]) -> list[Tag]:
    return [parse_tag(t) for t in raw_tags]


def serialize_tags(tags: list[Tag]) -> list[list[str]]:
    return [t.serialize() for t in tags]


def find_tag(tags: list[Tag], tag_type: type[T]) -> T | None:
    """Return the first tag of the given type, or None."""
    for tag in tags:
        if isinstance(tag, tag_type):
            return tag
    return None
