"""Tests for domain models, typed tags, events and fingerprints."""

import pytest

from conftest import FakeSigner, make_book, make_chapter

from bindery.errors import MalformedPayload
from bindery.fingerprint import (
    book_fingerprint,
    chapter_fingerprint,
    needs_publish,
    snapshot_digest,
)
from bindery.models import Book, ChapterDraft, ChapterStatus, SnapshotAction, SnapshotPayload
from bindery.nostr.event import Event, EventTemplate, Filter, compute_event_id
from bindery.nostr.tags import (
    ActionTag,
    DTag,
    RawTag,
    SyncKeyTag,
    SyncMarkerTag,
    VersionTag,
    find_tag,
    parse_tag,
    parse_tags,
    serialize_tags,
)


class TestModels:
    """Tests for dataclass serialization."""

    def test_book_to_dict_uses_camel_case(self):
        d = make_book(co_authors=["x"], chapter_order=["ch-1"]).to_dict()

        assert d["coAuthors"] == ["x"]
        assert d["chapterOrder"] == ["ch-1"]
        assert d["updatedAt"] == 1000
        assert "summary" not in d
        assert "publishedHash" not in d

    def test_book_from_dict(self):
        book = Book.from_dict({"id": "b", "title": "T", "createdAt": 1, "updatedAt": 2})

        assert book.d == ""
        assert book.tags == []
        assert book.updated_at == 2

    def test_chapter_status_serialized_as_string(self):
        d = make_chapter(status=ChapterStatus.READY).to_dict()
        assert d["status"] == "ready"
        assert ChapterDraft.from_dict(d).status == ChapterStatus.READY

    def test_payload_omits_absent_sections(self):
        d = SnapshotPayload(
            version=2, timestamp=5, action=SnapshotAction.DELETE, book=make_book()
        ).to_dict()

        assert d["action"] == "delete"
        assert "chapters" not in d
        assert "history" not in d
        assert "chapterId" not in d


class TestTags:
    """Tests for typed tag parsing."""

    def test_parse_known_tags(self):
        tags = parse_tags(
            [
                ["d", "book-x"],
                ["binder-sync", "draft-snapshot"],
                ["binder-sync-key", "f" * 64],
                ["version", "2"],
                ["action", "snapshot"],
                ["t", "fantasy", "extra"],
            ]
        )

        assert tags == [
            DTag("book-x"),
            SyncMarkerTag("draft-snapshot"),
            SyncKeyTag("f" * 64),
            VersionTag(2),
            ActionTag("snapshot"),
            RawTag(("t", "fantasy", "extra")),
        ]
        assert tags[-1].name == "t"

    def test_serialize_round_trip(self):
        raw = [["d", "x"], ["version", "2"], ["p", "abc", "wss://r", "author"]]
        assert serialize_tags(parse_tags(raw)) == raw

    def test_known_tags_keep_extra_positions(self):
        """Test typed tags serialize back exactly as they arrived."""
        raw = [
            ["d", "book-x", "wss://hint"],
            ["version", "02"],
            ["binder-sync", "draft-snapshot", "extra"],
        ]
        tags = parse_tags(raw)

        assert tags == [DTag("book-x"), VersionTag(2), SyncMarkerTag("draft-snapshot")]
        assert serialize_tags(tags) == raw

    def test_local_tags_serialize_canonically(self):
        assert DTag("book-x").serialize() == ["d", "book-x"]
        assert VersionTag(2).serialize() == ["version", "2"]

    @pytest.mark.parametrize(
        "raw",
        [[], ["d"], ["version", "two"], ["d", 5], "d"],
    )
    def test_invalid_tags(self, raw):
        with pytest.raises(MalformedPayload):
            parse_tag(raw)

    def test_find_tag(self):
        tags = [RawTag(("t", "x")), DTag("a"), DTag("b")]
        assert find_tag(tags, DTag) == DTag("a")
        assert find_tag(tags, VersionTag) is None


class TestEvents:
    """Tests for event ids and wire parsing."""

    def test_event_id_vector(self):
        """Test the id is sha256 of the compact serialization."""
        event_id = compute_event_id("a" * 64, 1, 1, [], "hello")
        assert len(event_id) == 64
        assert event_id == compute_event_id("a" * 64, 1, 1, [], "hello")
        assert event_id != compute_event_id("a" * 64, 2, 1, [], "hello")

    @pytest.mark.asyncio
    async def test_from_dict_round_trip(self):
        event = await FakeSigner().sign_event(
            EventTemplate(kind=30012, content="c", tags=[DTag("x")])
        )

        parsed = Event.from_dict(event.to_dict())

        assert parsed == event
        assert parsed.has_valid_id()

    @pytest.mark.asyncio
    async def test_id_survives_tags_with_extra_positions(self):
        event = await FakeSigner().sign_event(
            EventTemplate(
                kind=30012,
                content="c",
                tags=parse_tags([["d", "book-x", "wss://hint"], ["version", "02"]]),
            )
        )

        parsed = Event.from_dict(event.to_dict())

        assert parsed.to_dict()["tags"] == [["d", "book-x", "wss://hint"], ["version", "02"]]
        assert parsed.has_valid_id()

    @pytest.mark.parametrize(
        "mutate",
        [
            lambda d: d.pop("sig"),
            lambda d: d.update(id="xyz"),
            lambda d: d.update(sig="00"),
            lambda d: d.update(kind="30012"),
            lambda d: d.update(content=None),
            lambda d: d.update(tags=[["d"]]),
        ],
    )
    @pytest.mark.asyncio
    async def test_from_dict_rejects_bad_shapes(self, mutate):
        event = await FakeSigner().sign_event(EventTemplate(kind=1, content="c"))
        data = event.to_dict()
        mutate(data)

        with pytest.raises(MalformedPayload):
            Event.from_dict(data)

    def test_filter_to_dict(self):
        f = Filter(
            kinds=[30012, 40012],
            authors=["a" * 64],
            tags={"binder-sync-key": ["k"], "d": ["book-x"]},
            limit=5,
        )
        assert f.to_dict() == {
            "kinds": [30012, 40012],
            "authors": ["a" * 64],
            "#binder-sync-key": ["k"],
            "#d": ["book-x"],
            "limit": 5,
        }


class TestFingerprints:
    """Tests for change detection."""

    def test_book_fingerprint_tracks_published_fields(self):
        book = make_book()
        fp = book_fingerprint(book)

        assert needs_publish(book, fp)
        book.published_hash = fp
        assert not needs_publish(book, book_fingerprint(book))

        book.title = "Changed"
        assert needs_publish(book, book_fingerprint(book))

    def test_chapter_fingerprint_uses_rendered_content(self):
        chapter = make_chapter()
        assert chapter_fingerprint(chapter, "<h1>One</h1>") != chapter_fingerprint(
            chapter, "<h1>Two</h1>"
        )

    def test_snapshot_digest_ignores_chapter_order_of_list(self):
        book = make_book()
        a, b = make_chapter("ch-a"), make_chapter("ch-b")
        assert snapshot_digest(book, [a, b]) == snapshot_digest(book, [b, a])

    def test_snapshot_digest_changes_on_edit(self):
        book = make_book()
        chapter = make_chapter()
        before = snapshot_digest(book, [chapter])
        chapter.content_md = "edited"
        assert snapshot_digest(book, [chapter]) != before
