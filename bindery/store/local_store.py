"""Local SQLite storage for books, chapter drafts and revision history."""

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Iterable, Protocol

from ..errors import StorageError
from ..models import Book, ChapterDraft, ChapterStatus, DraftSnapshot

logger = logging.getLogger(__name__)

# SQL schema for the drafts database
SCHEMA = """
-- Books: list fields are stored as JSON arrays
CREATE TABLE IF NOT EXISTS books (
    id TEXT PRIMARY KEY,
    d TEXT NOT NULL,
    title TEXT NOT NULL,
    summary TEXT,
    cover TEXT,
    tags TEXT NOT NULL DEFAULT '[]',
    topics TEXT NOT NULL DEFAULT '[]',
    co_authors TEXT NOT NULL DEFAULT '[]',
    chapter_order TEXT NOT NULL DEFAULT '[]',
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL,
    published_hash TEXT
);

-- Chapter drafts
CREATE TABLE IF NOT EXISTS chapters (
    id TEXT PRIMARY KEY,
    d TEXT NOT NULL,
    book_id TEXT NOT NULL,
    title TEXT NOT NULL,
    content_md TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL DEFAULT 'draft',
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL,
    pubkey TEXT,
    published_hash TEXT
);

CREATE INDEX IF NOT EXISTS idx_chapters_book ON chapters(book_id);

-- Revision history: immutable snapshots of chapter content
CREATE TABLE IF NOT EXISTS history (
    id TEXT PRIMARY KEY,
    chapter_id TEXT NOT NULL,
    content_md TEXT NOT NULL,
    reason TEXT NOT NULL DEFAULT '',
    created_at INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_history_chapter ON history(chapter_id, created_at);

-- Relay settings
CREATE TABLE IF NOT EXISTS relays (
    url TEXT PRIMARY KEY,
    enabled INTEGER NOT NULL DEFAULT 1,
    position INTEGER NOT NULL DEFAULT 0
);
"""


class DraftStore(Protocol):
    """Storage operations the sync core relies on."""

    def get_book(self, book_id: str) -> Book | None: ...
    def save_book(self, book: Book) -> None: ...
    def delete_book(self, book_id: str) -> None: ...
    def get_chapter(self, chapter_id: str) -> ChapterDraft | None: ...
    def get_chapters_for_book(self, book_id: str) -> list[ChapterDraft]: ...
    def save_chapter(self, chapter: ChapterDraft) -> None: ...
    def delete_chapters_for_book(self, book_id: str) -> None: ...
    def get_chapter_history(self, chapter_id: str) -> list[DraftSnapshot]: ...
    def save_history_entry(self, entry: DraftSnapshot) -> None: ...


class LocalStore:
    """SQLite-backed draft store.

    Each write commits immediately. SQLite errors are raised as StorageError
    so callers see one failure type regardless of the backend.
    """

    def __init__(self, db_path: str | Path):
        """Initialize the local store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(SCHEMA)
            self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to open draft store at {self.db_path}", e) from e

        logger.info(f"LocalStore connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure database connection exists."""
        if self._conn is None:
            self.connect()
        return self._conn

    def _execute(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        conn = self._ensure_connected()
        try:
            return conn.execute(sql, tuple(params))
        except sqlite3.Error as e:
            raise StorageError(f"Query failed: {e}", e) from e

    def _write(self, sql: str, params: Iterable[Any] = ()) -> int:
        cursor = self._execute(sql, params)
        try:
            self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Commit failed: {e}", e) from e
        return cursor.rowcount

    # Books

    def get_book(self, book_id: str) -> Book | None:
        row = self._execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone()
        return _row_to_book(row) if row else None

    def list_books(self) -> list[Book]:
        """All books, most recently updated first."""
        rows = self._execute("SELECT * FROM books ORDER BY updated_at DESC").fetchall()
        return [_row_to_book(r) for r in rows]

    def save_book(self, book: Book) -> None:
        """Insert or replace a book."""
        self._write(
            """
            INSERT OR REPLACE INTO books (
                id, d, title, summary, cover, tags, topics, co_authors,
                chapter_order, created_at, updated_at, published_hash
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                book.id,
                book.d,
                book.title,
                book.summary,
                book.cover,
                json.dumps(book.tags),
                json.dumps(book.topics),
                json.dumps(book.co_authors),
                json.dumps(book.chapter_order),
                book.created_at,
                book.updated_at,
                book.published_hash,
            ),
        )
        logger.debug(f"Saved book {book.id} (updated_at={book.updated_at})")

    def delete_book(self, book_id: str) -> None:
        self._write("DELETE FROM books WHERE id = ?", (book_id,))
        logger.debug(f"Deleted book {book_id}")

    # Chapters

    def get_chapter(self, chapter_id: str) -> ChapterDraft | None:
        row = self._execute(
            "SELECT * FROM chapters WHERE id = ?", (chapter_id,)
        ).fetchone()
        return _row_to_chapter(row) if row else None

    def get_chapters_for_book(self, book_id: str) -> list[ChapterDraft]:
        rows = self._execute(
            "SELECT * FROM chapters WHERE book_id = ? ORDER BY created_at ASC",
            (book_id,),
        ).fetchall()
        return [_row_to_chapter(r) for r in rows]

    def save_chapter(self, chapter: ChapterDraft) -> None:
        """Insert or replace a chapter draft."""
        self._write(
            """
            INSERT OR REPLACE INTO chapters (
                id, d, book_id, title, content_md, status,
                created_at, updated_at, pubkey, published_hash
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                chapter.id,
                chapter.d,
                chapter.book_id,
                chapter.title,
                chapter.content_md,
                ChapterStatus(chapter.status).value,
                chapter.created_at,
                chapter.updated_at,
                chapter.pubkey,
                chapter.published_hash,
            ),
        )
        logger.debug(f"Saved chapter {chapter.id} (updated_at={chapter.updated_at})")

    def delete_chapter(self, chapter_id: str) -> None:
        self._write("DELETE FROM chapters WHERE id = ?", (chapter_id,))

    def delete_chapters_for_book(self, book_id: str) -> None:
        count = self._write("DELETE FROM chapters WHERE book_id = ?", (book_id,))
        logger.debug(f"Deleted {count} chapters of book {book_id}")

    # History

    def get_chapter_history(self, chapter_id: str) -> list[DraftSnapshot]:
        """Revision history of a chapter, newest first."""
        rows = self._execute(
            """
            SELECT * FROM history
            WHERE chapter_id = ?
            ORDER BY created_at DESC
            """,
            (chapter_id,),
        ).fetchall()
        return [
            DraftSnapshot(
                id=r["id"],
                chapter_id=r["chapter_id"],
                content_md=r["content_md"],
                reason=r["reason"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    def save_history_entry(self, entry: DraftSnapshot) -> None:
        """Save a history entry. Re-saving the same id is a no-op overwrite."""
        self._write(
            """
            INSERT OR REPLACE INTO history (id, chapter_id, content_md, reason, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (entry.id, entry.chapter_id, entry.content_md, entry.reason, entry.created_at),
        )

    def delete_history_entries(self, entry_ids: list[str]) -> int:
        """Delete history entries by id.

        Returns:
            Number of entries deleted.
        """
        if not entry_ids:
            return 0
        placeholders = ",".join("?" * len(entry_ids))
        return self._write(
            f"DELETE FROM history WHERE id IN ({placeholders})", entry_ids
        )

    # Relays

    def get_relays(self) -> list[tuple[str, bool]]:
        rows = self._execute(
            "SELECT url, enabled FROM relays ORDER BY position ASC"
        ).fetchall()
        return [(r["url"], bool(r["enabled"])) for r in rows]

    def replace_relays(self, relays: list[tuple[str, bool]]) -> None:
        """Replace the stored relay list in one transaction."""
        conn = self._ensure_connected()
        try:
            with conn:
                conn.execute("DELETE FROM relays")
                conn.executemany(
                    "INSERT INTO relays (url, enabled, position) VALUES (?, ?, ?)",
                    [(url, int(enabled), i) for i, (url, enabled) in enumerate(relays)],
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to save relay settings: {e}", e) from e

    def get_stats(self) -> dict[str, Any]:
        """Get store statistics."""
        stats = {}
        for table in ("books", "chapters", "history"):
            stats[table] = self._execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        return stats


def _row_to_book(row: sqlite3.Row) -> Book:
    return Book(
        id=row["id"],
        d=row["d"],
        title=row["title"],
        summary=row["summary"],
        cover=row["cover"],
        tags=json.loads(row["tags"]),
        topics=json.loads(row["topics"]),
        co_authors=json.loads(row["co_authors"]),
        chapter_order=json.loads(row["chapter_order"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        published_hash=row["published_hash"],
    )


def _row_to_chapter(row: sqlite3.Row) -> ChapterDraft:
    return ChapterDraft(
        id=row["id"],
        d=row["d"],
        book_id=row["book_id"],
        title=row["title"],
        content_md=row["content_md"],
        status=ChapterStatus(row["status"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        pubkey=row["pubkey"],
        published_hash=row["published_hash"],
    )
