"""Draft sync orchestration.

Publishing a book runs load -> encode -> sign -> publish, strictly in that
order, and fails before anything reaches the network. Restoring runs
fetch -> decode -> apply, and a payload that cannot be decoded never
touches local state.
"""

import asyncio
import logging
import weakref
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from ..errors import (
    BinderyError,
    MalformedPayload,
    NoRelaysConfigured,
    NotAuthenticated,
    NotFound,
    SignFailed,
)
from ..fingerprint import snapshot_digest
from ..models import SnapshotAction, SnapshotPayload, now_ms
from ..nostr.event import Event, EventTemplate, Filter
from ..nostr.relay import PublishReport
from ..nostr.signer import Signer
from ..nostr.tags import (
    SYNC_KEY_TAG,
    SYNC_MARKER_TAG,
    ActionTag,
    DTag,
    SyncKeyTag,
    SyncMarkerTag,
    VersionTag,
    find_tag,
)
from ..store.local_store import DraftStore
from . import codec
from .keys import DerivedKey, ScopedKeyService, SyncSession
from .merge import MergePlan, merge_snapshot

logger = logging.getLogger(__name__)

SYNC_KIND = 30012
LEGACY_SYNC_KINDS = (40012,)
ACCEPTED_SYNC_KINDS = (SYNC_KIND, *LEGACY_SYNC_KINDS)

BOOK_MARKER = "draft-snapshot"
HISTORY_MARKER = "history-snapshot"
HISTORY_D_PREFIX = "binder-history:"

_LATEST_BOOK = "books"


def history_coordinate(chapter_id: str) -> str:
    """d-tag of a chapter's history snapshots, disjoint from book d-tags."""
    return f"{HISTORY_D_PREFIX}{chapter_id}"


class RelaySource(Protocol):
    def get_enabled_relay_urls(self) -> list[str]: ...


class EventPublisher(Protocol):
    async def publish(self, relays: list[str], event: Event) -> PublishReport: ...


class EventSource(Protocol):
    async def fetch_events(self, relays: list[str], filters: list[Filter]) -> list[Event]: ...


class SyncStatus(Enum):
    """Status of a sync operation."""

    PUBLISHED = "published"
    UNCHANGED = "unchanged"  # Nothing changed since the last publish


@dataclass
class SyncResult:
    """Result of a sync operation."""

    status: SyncStatus
    event_id: str | None = None
    relays: list[str] = field(default_factory=list)
    report: PublishReport | None = None


class RestoreStatus(Enum):
    APPLIED = "applied"
    NO_EVENTS = "no_events"
    ALREADY_APPLIED = "already_applied"


@dataclass
class RestoreResult:
    """Result of a restore operation."""

    status: RestoreStatus
    event_ids: list[str] = field(default_factory=list)
    plans: list[MergePlan] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class DraftSyncService:
    """Publishes encrypted draft snapshots and restores them.

    Calls for the same book are serialized by a per-book lock so a later
    sync always publishes state at least as new as an earlier one. Calls
    for different books run independently.
    """

    def __init__(
        self,
        session: SyncSession,
        store: DraftStore,
        relay_settings: RelaySource,
        signer: Signer,
        publisher: EventPublisher,
        source: EventSource,
        scope: str = "binder-sync",
        restore_limit: int = 5,
        restore_all_limit: int = 100,
        signer_timeout: float = 30.0,
    ):
        self.session = session
        self.store = store
        self.relay_settings = relay_settings
        self.signer = signer
        self.publisher = publisher
        self.source = source
        self.scope = scope
        self.restore_limit = restore_limit
        self.restore_all_limit = restore_all_limit
        self.keys = ScopedKeyService(session, signer, signer_timeout)
        # Entries vanish once no sync of the book holds or waits on the lock
        self._book_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _require_session(self) -> str:
        if not self.session.authenticated:
            raise NotAuthenticated()
        return self.session.pubkey

    def _enabled_relays(self) -> list[str]:
        relays = self.relay_settings.get_enabled_relay_urls()
        if not relays:
            raise NoRelaysConfigured()
        return relays

    def clear_session(self) -> None:
        """Drop cached keys and restore markers. Call on logout."""
        self.session.clear()
        self._book_locks.clear()

    # Publishing

    async def sync_book(self, book_id: str, force: bool = False) -> SyncResult:
        """Publish an encrypted snapshot of a book and its chapters.

        Args:
            book_id: Local book id.
            force: Publish even if nothing changed since the last publish.

        Raises:
            NotAuthenticated, NotFound, NoRelaysConfigured, PayloadTooLarge,
            EncryptFailed, SignFailed, SignerUnavailable, UserRejected.
        """
        self._require_session()
        lock = self._book_locks.setdefault(book_id, asyncio.Lock())
        async with lock:
            logger.debug(f"sync_book {book_id}: loading-local")
            book = self.store.get_book(book_id)
            if book is None:
                raise NotFound(f"Book {book_id} not found for sync")
            chapters = self.store.get_chapters_for_book(book_id)
            relays = self._enabled_relays()

            digest = snapshot_digest(book, chapters)
            if not force and self.session.published_digests.get(book_id) == digest:
                logger.debug(f"sync_book {book_id}: unchanged since last publish")
                return SyncResult(status=SyncStatus.UNCHANGED)

            payload = SnapshotPayload(
                version=codec.PAYLOAD_VERSION,
                timestamp=now_ms(),
                action=SnapshotAction.SNAPSHOT,
                book=book,
                chapters=chapters,
            )
            result = await self._publish_payload(payload, book.d, BOOK_MARKER, relays)
            if result.report is not None and result.report.accepted:
                self.session.published_digests[book_id] = digest
            else:
                logger.warning(f"sync_book {book_id}: no relay accepted the snapshot")
            logger.info(
                f"Synced book {book_id} with {len(chapters)} chapters as event {result.event_id[:12]}"
            )
            return result

    async def notify_book_deletion(self, book) -> SyncResult:
        """Tell other devices a book was deleted. Deletes nothing locally."""
        self._require_session()
        relays = self._enabled_relays()
        payload = SnapshotPayload(
            version=codec.PAYLOAD_VERSION,
            timestamp=now_ms(),
            action=SnapshotAction.DELETE,
            book=book,
        )
        result = await self._publish_payload(payload, book.d, BOOK_MARKER, relays)
        self.session.published_digests.pop(book.id, None)
        logger.info(f"Published deletion of book {book.id}")
        return result

    async def publish_chapter_snapshots(self, chapter_id: str) -> SyncResult:
        """Publish a chapter's revision history."""
        self._require_session()
        chapter = self.store.get_chapter(chapter_id)
        if chapter is None:
            raise NotFound(f"Chapter {chapter_id} not found for history sync")
        history = self.store.get_chapter_history(chapter_id)
        relays = self._enabled_relays()

        payload = SnapshotPayload(
            version=codec.PAYLOAD_VERSION,
            timestamp=now_ms(),
            action=SnapshotAction.SNAPSHOT,
            chapter_id=chapter_id,
            history=history,
        )
        result = await self._publish_payload(
            payload, history_coordinate(chapter_id), HISTORY_MARKER, relays
        )
        logger.info(f"Synced {len(history)} history entries of chapter {chapter_id}")
        return result

    async def _publish_payload(
        self, payload: SnapshotPayload, d: str, marker: str, relays: list[str]
    ) -> SyncResult:
        key = await self.keys.get_scoped_key(self.scope)

        logger.debug(f"publish {marker} d={d}: encoding")
        content = codec.encode(payload, key)
        template = EventTemplate(
            kind=SYNC_KIND,
            content=content,
            tags=[
                DTag(d),
                SyncMarkerTag(marker),
                SyncKeyTag(key.public_key_hex),
                VersionTag(codec.PAYLOAD_VERSION),
                ActionTag(SnapshotAction(payload.action).value),
            ],
        )

        logger.debug(f"publish {marker} d={d}: signing")
        event = await self._sign(template)

        logger.debug(f"publish {marker} d={d}: publishing to {len(relays)} relays")
        report = None
        try:
            report = await self.publisher.publish(relays, event)
        except Exception as e:
            logger.warning(f"Publish of event {event.id[:12]} failed: {e}")
        return SyncResult(
            status=SyncStatus.PUBLISHED, event_id=event.id, relays=relays, report=report
        )

    async def _sign(self, template: EventTemplate) -> Event:
        try:
            return await self.signer.sign_event(template)
        except BinderyError:
            raise
        except Exception as e:
            raise SignFailed("Failed to sign draft snapshot", e) from e

    # Restoring

    def _snapshot_filter(
        self, key: DerivedKey, marker: str, limit: int, d: str | None = None
    ) -> Filter:
        tags = {SYNC_KEY_TAG: [key.public_key_hex], SYNC_MARKER_TAG: [marker]}
        if d is not None:
            tags["d"] = [d]
        return Filter(
            kinds=list(ACCEPTED_SYNC_KINDS),
            authors=[self.session.pubkey],
            tags=tags,
            limit=limit,
        )

    def _candidates(
        self, events: list[Event], key: DerivedKey, marker: str, d: str | None = None
    ) -> list[Event]:
        """Events that really are our snapshots; relays may over-answer."""
        matching = []
        for event in events:
            if event.kind not in ACCEPTED_SYNC_KINDS or event.pubkey != self.session.pubkey:
                continue
            sync_key = find_tag(event.tags, SyncKeyTag)
            if sync_key is None or sync_key.pubkey != key.public_key_hex:
                continue
            event_marker = find_tag(event.tags, SyncMarkerTag)
            if event_marker is None or event_marker.value != marker:
                continue
            if d is not None:
                d_tag = find_tag(event.tags, DTag)
                if d_tag is None or d_tag.value != d:
                    continue
            matching.append(event)
        return sorted(matching, key=lambda e: (e.created_at, e.id), reverse=True)

    async def _fetch(self, filters: list[Filter]) -> list[Event]:
        relays = self._enabled_relays()
        logger.debug(f"restore: fetching-remote from {len(relays)} relays")
        return await self.source.fetch_events(relays, filters)

    def _decode_book_payload(self, event: Event, key: DerivedKey) -> SnapshotPayload:
        logger.debug(f"restore: decoding event {event.id[:12]}")
        payload = codec.decode(event.content, key)
        if payload.book is None:
            raise MalformedPayload("Snapshot payload must include book info")
        return payload

    async def restore_latest_snapshot(self) -> RestoreResult:
        """Apply the newest book snapshot published by this identity.

        Idempotent within a session: the same event is never applied twice.

        Raises:
            NotAuthenticated, NoRelaysConfigured, DecryptFailed,
            MalformedPayload, UnsupportedVersion.
        """
        self._require_session()
        key = await self.keys.get_scoped_key(self.scope)
        events = await self._fetch(
            [self._snapshot_filter(key, BOOK_MARKER, self.restore_limit)]
        )
        candidates = self._candidates(events, key, BOOK_MARKER)
        if not candidates:
            logger.info("No draft snapshots found to restore")
            return RestoreResult(status=RestoreStatus.NO_EVENTS)

        latest = candidates[0]
        d_tag = find_tag(latest.tags, DTag)
        coordinate_key = f"book:{d_tag.value if d_tag else ''}"
        applied = self.session.applied_events
        if latest.id in (applied.get(_LATEST_BOOK), applied.get(coordinate_key)):
            logger.debug(f"restore: event {latest.id[:12]} already applied")
            return RestoreResult(
                status=RestoreStatus.ALREADY_APPLIED, event_ids=[latest.id]
            )

        payload = self._decode_book_payload(latest, key)
        logger.debug(f"restore: applying event {latest.id[:12]}")
        plan = merge_snapshot(payload, self.store)
        applied[_LATEST_BOOK] = latest.id
        applied[coordinate_key] = latest.id
        return RestoreResult(
            status=RestoreStatus.APPLIED, event_ids=[latest.id], plans=[plan]
        )

    async def restore_all_snapshots(self) -> RestoreResult:
        """Apply the newest snapshot of every book (fresh-device bootstrap).

        A snapshot that fails to decode is logged and skipped so one bad
        event cannot block the other books.
        """
        self._require_session()
        key = await self.keys.get_scoped_key(self.scope)
        events = await self._fetch(
            [self._snapshot_filter(key, BOOK_MARKER, self.restore_all_limit)]
        )
        candidates = self._candidates(events, key, BOOK_MARKER)
        if not candidates:
            return RestoreResult(status=RestoreStatus.NO_EVENTS)

        latest_by_d: dict[str, Event] = {}
        for event in candidates:  # newest first
            d_tag = find_tag(event.tags, DTag)
            latest_by_d.setdefault(d_tag.value if d_tag else "", event)

        result = RestoreResult(status=RestoreStatus.ALREADY_APPLIED)
        for d, event in latest_by_d.items():
            coordinate_key = f"book:{d}"
            if self.session.applied_events.get(coordinate_key) == event.id:
                continue
            try:
                payload = self._decode_book_payload(event, key)
            except BinderyError as e:
                logger.warning(f"Skipping snapshot {event.id[:12]} for '{d}': {e.message}")
                result.failed.append(event.id)
                continue
            result.plans.append(merge_snapshot(payload, self.store))
            result.event_ids.append(event.id)
            self.session.applied_events[coordinate_key] = event.id

        if result.event_ids:
            result.status = RestoreStatus.APPLIED
        logger.info(
            f"Restored {len(result.event_ids)} of {len(latest_by_d)} books "
            f"({len(result.failed)} failed)"
        )
        return result

    async def restore_chapter_snapshots(self, chapter_id: str) -> RestoreResult:
        """Restore a chapter's revision history from its latest snapshot."""
        self._require_session()
        key = await self.keys.get_scoped_key(self.scope)
        d = history_coordinate(chapter_id)
        events = await self._fetch(
            [self._snapshot_filter(key, HISTORY_MARKER, self.restore_limit, d=d)]
        )
        candidates = self._candidates(events, key, HISTORY_MARKER, d=d)
        if not candidates:
            return RestoreResult(status=RestoreStatus.NO_EVENTS)

        latest = candidates[0]
        marker_key = f"history:{chapter_id}"
        if self.session.applied_events.get(marker_key) == latest.id:
            return RestoreResult(
                status=RestoreStatus.ALREADY_APPLIED, event_ids=[latest.id]
            )

        payload = codec.decode(latest.content, key)
        if payload.chapter_id != chapter_id or payload.history is None:
            raise MalformedPayload(
                f"History snapshot {latest.id[:12]} does not belong to chapter {chapter_id}"
            )
        plan = merge_snapshot(payload, self.store)
        self.session.applied_events[marker_key] = latest.id
        logger.info(f"Restored {len(plan.history)} history entries of chapter {chapter_id}")
        return RestoreResult(
            status=RestoreStatus.APPLIED, event_ids=[latest.id], plans=[plan]
        )
