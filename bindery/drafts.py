"""Book, chapter and revision-history services.

Every edit is saved locally first. A sync to relays is then started in the
background on the task supervisor, so edits never wait on the network.
"""

import logging
import re
import uuid

from .config import HistoryConfig
from .errors import NotFound
from .models import Book, ChapterDraft, ChapterStatus, DraftSnapshot, now_ms
from .store.local_store import LocalStore
from .sync.draft_sync import DraftSyncService
from .sync.tasks import TaskSupervisor

logger = logging.getLogger(__name__)

_SLUG_MAX = 50
_DAY_MS = 24 * 60 * 60 * 1000


def slugify(title: str) -> str:
    """Lowercase ``[a-z0-9-]`` slug with collapsed dashes, at most 50 chars."""
    slug = re.sub(r"[^a-z0-9-]", "-", title.lower())
    slug = re.sub(r"-+", "-", slug).strip("-")
    return slug[:_SLUG_MAX]


def book_coordinate(title: str) -> str:
    return f"book-{slugify(title)}-{uuid.uuid4().hex[:8]}"


def chapter_coordinate(index: int) -> str:
    return f"chapter-{index:02d}-{uuid.uuid4().hex[:4]}"


class _SyncingService:
    """Shared wiring for services that trigger background syncs."""

    def __init__(
        self,
        store: LocalStore,
        sync: DraftSyncService | None = None,
        supervisor: TaskSupervisor | None = None,
    ):
        self.store = store
        self.sync = sync
        self.supervisor = supervisor or TaskSupervisor()

    def _require_book(self, book_id: str) -> Book:
        book = self.store.get_book(book_id)
        if book is None:
            raise NotFound(f"Book {book_id} not found")
        return book

    def _schedule_sync(self, book_id: str) -> None:
        if self.sync is None:
            return
        self.supervisor.spawn(self.sync.sync_book(book_id), name=f"sync-book-{book_id}")


class BookService(_SyncingService):
    """Create, update and delete books."""

    def list_books(self) -> list[Book]:
        return self.store.list_books()

    async def create_book(
        self, title: str, summary: str | None = None, cover: str | None = None
    ) -> Book:
        now = now_ms()
        book = Book(
            id=str(uuid.uuid4()),
            d=book_coordinate(title),
            title=title,
            summary=summary,
            cover=cover,
            created_at=now,
            updated_at=now,
        )
        self.store.save_book(book)
        logger.info(f"Created book {book.id} ({book.d})")
        self._schedule_sync(book.id)
        return book

    async def update_book(self, book: Book) -> Book:
        book.updated_at = now_ms()
        self.store.save_book(book)
        self._schedule_sync(book.id)
        return book

    async def delete_book(self, book_id: str) -> None:
        """Delete a book and its chapters, then tell other devices."""
        book = self._require_book(book_id)
        self.store.delete_chapters_for_book(book_id)
        self.store.delete_book(book_id)
        logger.info(f"Deleted book {book_id}")
        if self.sync is not None:
            self.supervisor.spawn(
                self.sync.notify_book_deletion(book), name=f"delete-book-{book_id}"
            )


class ChapterService(_SyncingService):
    """Create, edit, reorder and delete chapter drafts."""

    def list_chapters(self, book_id: str) -> list[ChapterDraft]:
        book = self._require_book(book_id)
        chapters = {c.id: c for c in self.store.get_chapters_for_book(book_id)}
        ordered = [chapters.pop(cid) for cid in book.chapter_order if cid in chapters]
        return ordered + list(chapters.values())

    async def create_chapter(
        self,
        book_id: str,
        title: str,
        content_md: str = "",
        status: ChapterStatus = ChapterStatus.DRAFT,
    ) -> ChapterDraft:
        """Append a new chapter to a book.

        Raises:
            NotFound: If the book does not exist.
        """
        book = self._require_book(book_id)
        now = now_ms()
        chapter = ChapterDraft(
            id=str(uuid.uuid4()),
            d=chapter_coordinate(len(book.chapter_order) + 1),
            book_id=book_id,
            title=title,
            content_md=content_md,
            status=ChapterStatus(status),
            created_at=now,
            updated_at=now,
        )
        self.store.save_chapter(chapter)

        book.chapter_order = [*book.chapter_order, chapter.id]
        book.updated_at = now
        self.store.save_book(book)
        logger.info(f"Added chapter {chapter.id} ({chapter.d}) to book {book_id}")
        self._schedule_sync(book_id)
        return chapter

    async def update_chapter(self, chapter: ChapterDraft) -> ChapterDraft:
        chapter.updated_at = now_ms()
        self.store.save_chapter(chapter)
        self._schedule_sync(chapter.book_id)
        return chapter

    async def reorder_chapters(self, book_id: str, order: list[str]) -> Book:
        """Set a new chapter order.

        Raises:
            NotFound: If the book does not exist.
            ValueError: If ``order`` is not a permutation of the current order.
        """
        book = self._require_book(book_id)
        if sorted(order) != sorted(book.chapter_order):
            raise ValueError(f"New order must contain exactly the chapters of book {book_id}")
        book.chapter_order = list(order)
        book.updated_at = now_ms()
        self.store.save_book(book)
        self._schedule_sync(book_id)
        return book

    async def delete_chapter(self, chapter_id: str) -> None:
        chapter = self.store.get_chapter(chapter_id)
        if chapter is None:
            raise NotFound(f"Chapter {chapter_id} not found")
        self.store.delete_chapter(chapter_id)

        book = self.store.get_book(chapter.book_id)
        if book is not None:
            book.chapter_order = [cid for cid in book.chapter_order if cid != chapter_id]
            book.updated_at = now_ms()
            self.store.save_book(book)
            self._schedule_sync(book.id)
        logger.info(f"Deleted chapter {chapter_id}")


class HistoryService:
    """Local revision history of chapter content."""

    def __init__(self, store: LocalStore, config: HistoryConfig | None = None):
        self.store = store
        self.config = config or HistoryConfig()

    def get_history(self, chapter_id: str) -> list[DraftSnapshot]:
        return self.store.get_chapter_history(chapter_id)

    def create_snapshot(self, chapter_id: str, content_md: str, reason: str) -> DraftSnapshot:
        """Record a revision of a chapter and prune old ones."""
        snapshot = DraftSnapshot(
            id=str(uuid.uuid4()),
            chapter_id=chapter_id,
            content_md=content_md,
            reason=reason,
            created_at=now_ms(),
        )
        self.store.save_history_entry(snapshot)
        self.prune(chapter_id)
        return snapshot

    def prune(self, chapter_id: str, now: int | None = None) -> int:
        """Drop entries past the age limit and all but the newest per chapter.

        Returns:
            Number of entries deleted.
        """
        now = now if now is not None else now_ms()
        max_age_ms = self.config.max_age_days * _DAY_MS
        entries = self.store.get_chapter_history(chapter_id)  # newest first

        stale = [e.id for e in entries if now - e.created_at > max_age_ms]
        for entry in entries[self.config.max_per_chapter:]:
            if entry.id not in stale:
                stale.append(entry.id)

        deleted = self.store.delete_history_entries(stale)
        if deleted:
            logger.debug(f"Pruned {deleted} history entries of chapter {chapter_id}")
        return deleted
