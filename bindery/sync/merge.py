"""Last-writer-wins reconciliation of a remote snapshot with local drafts.

Merging happens per entity: the book and each chapter are compared on their
own ``updated_at``, so one chapter can take the remote copy while a sibling
keeps its local edits. Ties keep the local copy. A delete snapshot is not
subject to timestamps and always removes the local book.
"""

import logging
from dataclasses import dataclass, field

from ..models import Book, ChapterDraft, DraftSnapshot, SnapshotAction, SnapshotPayload
from ..store.local_store import DraftStore

logger = logging.getLogger(__name__)


@dataclass
class MergePlan:
    """Writes needed to bring local state in line with a payload."""

    delete_book_id: str | None = None
    book: Book | None = None
    chapters: list[ChapterDraft] = field(default_factory=list)
    kept_chapter_ids: list[str] = field(default_factory=list)
    history: list[DraftSnapshot] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return (
            self.delete_book_id is None
            and self.book is None
            and not self.chapters
            and not self.history
        )


def remote_wins(remote_updated_at: int, local_updated_at: int | None) -> bool:
    """True when the remote copy should replace the local one."""
    return local_updated_at is None or remote_updated_at > local_updated_at


def plan_merge(
    payload: SnapshotPayload,
    local_book: Book | None,
    local_chapters: dict[str, ChapterDraft],
) -> MergePlan:
    """Decide which entities of a payload overwrite local state.

    Args:
        payload: Decoded snapshot payload.
        local_book: Local copy of the payload's book, if any.
        local_chapters: Local copies of the payload's chapters, by id.

    Returns:
        MergePlan listing the writes to perform.
    """
    plan = MergePlan()

    if payload.action == SnapshotAction.DELETE:
        if payload.book is not None:
            plan.delete_book_id = payload.book.id
        return plan

    if payload.book is not None:
        local_ts = local_book.updated_at if local_book else None
        if remote_wins(payload.book.updated_at, local_ts):
            plan.book = payload.book

    for chapter in payload.chapters or []:
        existing = local_chapters.get(chapter.id)
        if remote_wins(chapter.updated_at, existing.updated_at if existing else None):
            plan.chapters.append(chapter)
        else:
            plan.kept_chapter_ids.append(chapter.id)

    # History entries are immutable, re-saving one is harmless
    plan.history = list(payload.history or [])
    return plan


def apply_merge(plan: MergePlan, store: DraftStore) -> None:
    """Perform the writes of a merge plan."""
    if plan.delete_book_id is not None:
        store.delete_chapters_for_book(plan.delete_book_id)
        store.delete_book(plan.delete_book_id)
        logger.info(f"Removed book {plan.delete_book_id} after remote deletion")
        return

    if plan.book is not None:
        store.save_book(plan.book)
    for chapter in plan.chapters:
        store.save_chapter(chapter)
    for entry in plan.history:
        store.save_history_entry(entry)

    logger.info(
        f"Applied snapshot: book={'updated' if plan.book else 'kept'}, "
        f"chapters updated={len(plan.chapters)} kept={len(plan.kept_chapter_ids)}, "
        f"history entries={len(plan.history)}"
    )


def merge_snapshot(payload: SnapshotPayload, store: DraftStore) -> MergePlan:
    """Load the local counterparts of a payload, plan, and apply.

    Returns:
        The plan that was applied.
    """
    local_book = store.get_book(payload.book.id) if payload.book else None
    local_chapters: dict[str, ChapterDraft] = {}
    for chapter in payload.chapters or []:
        existing = store.get_chapter(chapter.id)
        if existing is not None:
            local_chapters[chapter.id] = existing

    plan = plan_merge(payload, local_book, local_chapters)
    apply_merge(plan, store)
    return plan
