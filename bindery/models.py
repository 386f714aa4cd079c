"""Domain models for local drafts and the encrypted sync payload.

All entity timestamps are wall-clock milliseconds. Serialization uses the
camelCase field names of the web client so payloads stay interoperable.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


def now_ms() -> int:
    """Current wall-clock time in milliseconds."""
    return int(time.time() * 1000)


class ChapterStatus(str, Enum):
    DRAFT = "draft"
    READY = "ready"


class SnapshotAction(str, Enum):
    SNAPSHOT = "snapshot"
    DELETE = "delete"


def _put_optional(data: dict[str, Any], key: str, value: Any) -> None:
    if value is not None:
        data[key] = value


@dataclass
class Book:
    """A book: ordered collection of chapters."""

    id: str
    d: str
    title: str
    summary: str | None = None
    cover: str | None = None
    tags: list[str] = field(default_factory=list)
    topics: list[str] = field(default_factory=list)
    co_authors: list[str] = field(default_factory=list)
    chapter_order: list[str] = field(default_factory=list)
    created_at: int = 0
    updated_at: int = 0
    published_hash: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data: dict[str, Any] = {
            "id": self.id,
            "d": self.d,
            "title": self.title,
            "tags": list(self.tags),
            "topics": list(self.topics),
            "coAuthors": list(self.co_authors),
            "chapterOrder": list(self.chapter_order),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        _put_optional(data, "summary", self.summary)
        _put_optional(data, "cover", self.cover)
        _put_optional(data, "publishedHash", self.published_hash)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Book":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            d=data.get("d", ""),
            title=data.get("title", ""),
            summary=data.get("summary"),
            cover=data.get("cover"),
            tags=list(data.get("tags", [])),
            topics=list(data.get("topics", [])),
            co_authors=list(data.get("coAuthors", [])),
            chapter_order=list(data.get("chapterOrder", [])),
            created_at=data.get("createdAt", 0),
            updated_at=data.get("updatedAt", 0),
            published_hash=data.get("publishedHash"),
        )


@dataclass
class ChapterDraft:
    """A chapter draft owned by a book."""

    id: str
    d: str
    book_id: str
    title: str
    content_md: str = ""
    status: ChapterStatus = ChapterStatus.DRAFT
    created_at: int = 0
    updated_at: int = 0
    pubkey: str | None = None
    published_hash: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data: dict[str, Any] = {
            "id": self.id,
            "d": self.d,
            "bookId": self.book_id,
            "title": self.title,
            "contentMd": self.content_md,
            "status": ChapterStatus(self.status).value,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        _put_optional(data, "pubkey", self.pubkey)
        _put_optional(data, "publishedHash", self.published_hash)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChapterDraft":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            d=data.get("d", ""),
            book_id=data["bookId"],
            title=data.get("title", ""),
            content_md=data.get("contentMd", ""),
            status=ChapterStatus(data.get("status", "draft")),
            created_at=data.get("createdAt", 0),
            updated_at=data.get("updatedAt", 0),
            pubkey=data.get("pubkey"),
            published_hash=data.get("publishedHash"),
        )


@dataclass(frozen=True)
class DraftSnapshot:
    """An immutable revision of a chapter's content."""

    id: str
    chapter_id: str
    content_md: str
    reason: str
    created_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "chapterId": self.chapter_id,
            "contentMd": self.content_md,
            "reason": self.reason,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DraftSnapshot":
        return cls(
            id=data["id"],
            chapter_id=data["chapterId"],
            content_md=data.get("contentMd", ""),
            reason=data.get("reason", ""),
            created_at=data.get("createdAt", 0),
        )


@dataclass
class SnapshotPayload:
    """The unit that crosses the network boundary, encrypted.

    Book payloads carry ``book`` (and ``chapters`` for snapshots); chapter
    history payloads carry ``chapter_id`` and ``history``.
    """

    version: int
    timestamp: int
    action: SnapshotAction = SnapshotAction.SNAPSHOT
    book: Book | None = None
    chapters: list[ChapterDraft] | None = None
    chapter_id: str | None = None
    history: list[DraftSnapshot] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "version": self.version,
            "timestamp": self.timestamp,
            "action": SnapshotAction(self.action).value,
        }
        if self.book is not None:
            data["book"] = self.book.to_dict()
        if self.chapters is not None:
            data["chapters"] = [c.to_dict() for c in self.chapters]
        if self.chapter_id is not None:
            data["chapterId"] = self.chapter_id
        if self.history is not None:
            data["history"] = [h.to_dict() for h in self.history]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SnapshotPayload":
        chapters = data.get("chapters")
        history = data.get("history")
        return cls(
            version=data["version"],
            timestamp=data["timestamp"],
            action=SnapshotAction(data["action"]),
            book=Book.from_dict(data["book"]) if data.get("book") else None,
            chapters=(
                [ChapterDraft.from_dict(c) for c in chapters]
                if chapters is not None
                else None
            ),
            chapter_id=data.get("chapterId"),
            history=(
                [DraftSnapshot.from_dict(h) for h in history]
                if history is not None
                else None
            ),
        )
