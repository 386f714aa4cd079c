"""Content fingerprints used to tell whether a draft changed since it was last sent."""

import hashlib
import json

from .models import Book, ChapterDraft, ChapterStatus


def hash_string(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def book_fingerprint(book: Book) -> str:
    """Fingerprint of the fields that appear in a published book."""
    return hash_string(
        json.dumps(
            {
                "title": book.title,
                "summary": book.summary or "",
                "cover": book.cover or "",
                "chapterOrder": book.chapter_order,
                "topics": book.topics,
                "coAuthors": book.co_authors,
                "updatedAt": book.updated_at,
            },
            separators=(",", ":"),
        )
    )


def chapter_fingerprint(chapter: ChapterDraft, rendered_content: str) -> str:
    return hash_string(
        json.dumps(
            {
                "id": chapter.id,
                "d": chapter.d,
                "title": chapter.title,
                "status": ChapterStatus(chapter.status).value,
                "content": rendered_content,
                "updatedAt": chapter.updated_at,
            },
            separators=(",", ":"),
        )
    )


def needs_publish(entity: Book | ChapterDraft, fingerprint: str) -> bool:
    """True when the entity differs from its last published state."""
    return entity.published_hash != fingerprint


def snapshot_digest(book: Book, chapters: list[ChapterDraft]) -> str:
    """Digest of a book and its chapters as a sync snapshot would carry them.

    Two calls return the same digest only if nothing in the snapshot changed.
    """
    return hash_string(
        json.dumps(
            {
                "book": book.to_dict(),
                "chapters": sorted(
                    (c.to_dict() for c in chapters), key=lambda c: c["id"]
                ),
            },
            sort_keys=True,
            separators=(",", ":"),
        )
    )
