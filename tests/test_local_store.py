"""Tests for the SQLite draft store."""

import pytest

from conftest import make_book, make_chapter

from bindery.errors import StorageError
from bindery.models import ChapterStatus, DraftSnapshot
from bindery.store import LocalStore


class TestSchema:
    """Tests for schema initialization."""

    def test_connect_creates_tables(self, store):
        tables = store._conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ).fetchall()
        table_names = {t[0] for t in tables}

        assert {"books", "chapters", "history", "relays"} <= table_names

    def test_lazy_connect(self):
        store = LocalStore(":memory:")
        assert store.get_book("x") is None
        store.close()

    def test_file_path_created(self, tmp_path):
        store = LocalStore(tmp_path / "nested" / "drafts.db")
        store.connect()
        store.save_book(make_book())
        store.close()

        reopened = LocalStore(tmp_path / "nested" / "drafts.db")
        assert reopened.get_book("book-1") is not None
        reopened.close()


class TestBooks:
    """Tests for book persistence."""

    def test_round_trip(self, store):
        book = make_book(
            summary="A summary",
            tags=["a", "b"],
            co_authors=["c" * 64],
            chapter_order=["ch-2", "ch-1"],
        )
        store.save_book(book)

        assert store.get_book("book-1") == book

    def test_save_replaces(self, store):
        store.save_book(make_book(title="First"))
        store.save_book(make_book(title="Second", updated_at=2000))

        assert store.get_book("book-1").title == "Second"
        assert len(store.list_books()) == 1

    def test_list_most_recent_first(self, store):
        store.save_book(make_book("old", updated_at=1000))
        store.save_book(make_book("new", updated_at=2000))

        assert [b.id for b in store.list_books()] == ["new", "old"]

    def test_delete(self, store):
        store.save_book(make_book())
        store.delete_book("book-1")
        assert store.get_book("book-1") is None


class TestChapters:
    """Tests for chapter persistence."""

    def test_round_trip(self, store):
        chapter = make_chapter(status=ChapterStatus.READY, pubkey="d" * 64)
        store.save_chapter(chapter)

        assert store.get_chapter("ch-1") == chapter

    def test_for_book(self, store):
        store.save_chapter(make_chapter("ch-1"))
        store.save_chapter(make_chapter("ch-2"))
        store.save_chapter(make_chapter("ch-3", book_id="other"))

        assert {c.id for c in store.get_chapters_for_book("book-1")} == {"ch-1", "ch-2"}

    def test_delete_for_book(self, store):
        store.save_chapter(make_chapter("ch-1"))
        store.save_chapter(make_chapter("ch-3", book_id="other"))

        store.delete_chapters_for_book("book-1")

        assert store.get_chapter("ch-1") is None
        assert store.get_chapter("ch-3") is not None


class TestHistory:
    """Tests for revision history persistence."""

    def test_newest_first(self, store):
        for i, ts in enumerate([300, 100, 200]):
            store.save_history_entry(DraftSnapshot(f"h-{i}", "ch-1", "x", "auto", ts))

        assert [h.created_at for h in store.get_chapter_history("ch-1")] == [300, 200, 100]

    def test_delete_entries(self, store):
        for i in range(3):
            store.save_history_entry(DraftSnapshot(f"h-{i}", "ch-1", "x", "auto", i))

        assert store.delete_history_entries(["h-0", "h-2"]) == 2
        assert store.delete_history_entries([]) == 0
        assert [h.id for h in store.get_chapter_history("ch-1")] == ["h-1"]


class TestRelays:
    """Tests for relay list persistence."""

    def test_replace_keeps_order(self, store):
        store.replace_relays([("wss://b", True), ("wss://a", False)])
        assert store.get_relays() == [("wss://b", True), ("wss://a", False)]

        store.replace_relays([("wss://c", True)])
        assert store.get_relays() == [("wss://c", True)]


class TestErrors:
    """Tests for error mapping."""

    def test_sqlite_errors_become_storage_errors(self, store):
        with pytest.raises(StorageError):
            store._execute("SELECT * FROM missing_table")

    def test_stats(self, store):
        store.save_book(make_book())
        store.save_chapter(make_chapter())
        assert store.get_stats() == {"books": 1, "chapters": 1, "history": 0}
