"""Shared fixtures: in-memory store, fake signer and an in-memory relay network."""

import itertools

import pytest

from bindery.config import RelaysConfig
from bindery.errors import TransportFailed
from bindery.models import Book, ChapterDraft
from bindery.nostr.event import Event, EventTemplate, Filter, compute_event_id
from bindery.nostr.relay import PublishReport, RelayResult
from bindery.nostr.tags import serialize_tags
from bindery.store import LocalStore, RelaySettings
from bindery.sync import DraftSyncService, SyncSession
from bindery.sync.keys import SEED_KIND

PUBKEY = "a" * 64
OTHER_PUBKEY = "b" * 64
RELAY = "wss://relay.test"

# Strictly increasing created_at so "newest" is unambiguous across signers
_clock = itertools.count(1_700_000_000)


class FakeSigner:
    """Signs with a fixed pubkey and a deterministic fake signature.

    Seed events keep their fixed created_at so every device holding the same
    identity derives the same key.
    """

    def __init__(self, pubkey: str = PUBKEY):
        self.pubkey = pubkey
        self.signed: list[EventTemplate] = []
        self.error: Exception | None = None

    async def get_public_key(self) -> str:
        return self.pubkey

    async def sign_event(self, template: EventTemplate) -> Event:
        if self.error is not None:
            raise self.error
        self.signed.append(template)
        created_at = template.created_at if template.kind == SEED_KIND else next(_clock)
        event_id = compute_event_id(
            self.pubkey,
            created_at,
            template.kind,
            serialize_tags(template.tags),
            template.content,
        )
        return Event(
            id=event_id,
            pubkey=self.pubkey,
            created_at=created_at,
            kind=template.kind,
            tags=list(template.tags),
            content=template.content,
            sig=event_id * 2,
        )


class FakeRelayNetwork:
    """Stores published events and answers every fetch with all of them."""

    def __init__(self):
        self.events: list[Event] = []
        self.publish_calls = 0
        self.fetch_calls: list[list[Filter]] = []
        self.failing: set[str] = set()

    async def publish(self, relays: list[str], event: Event) -> PublishReport:
        self.publish_calls += 1
        results = []
        for url in relays:
            if url in self.failing:
                results.append(RelayResult(url=url, accepted=False, message="down"))
            else:
                results.append(RelayResult(url=url, accepted=True))
        if len(self.failing) < len(relays):
            self.events.append(event)
        return PublishReport(event_id=event.id, results=results)

    async def fetch_events(self, relays: list[str], filters: list[Filter]) -> list[Event]:
        self.fetch_calls.append(filters)
        return sorted(self.events, key=lambda e: (e.created_at, e.id), reverse=True)


class FailingRelayNetwork(FakeRelayNetwork):
    async def publish(self, relays: list[str], event: Event) -> PublishReport:
        raise TransportFailed(relays[0], "connection refused")


@pytest.fixture
def store():
    """Create an in-memory LocalStore for testing."""
    store = LocalStore(":memory:")
    store.connect()
    yield store
    store.close()


@pytest.fixture
def relay_settings(store):
    return RelaySettings(store, RelaysConfig(defaults=[RELAY]))


@pytest.fixture
def signer():
    return FakeSigner()


@pytest.fixture
def network():
    return FakeRelayNetwork()


@pytest.fixture
def session():
    session = SyncSession()
    session.login(PUBKEY)
    return session


def make_sync(store, relay_settings, signer, network, session, **kwargs) -> DraftSyncService:
    return DraftSyncService(
        session=session,
        store=store,
        relay_settings=relay_settings,
        signer=signer,
        publisher=network,
        source=network,
        **kwargs,
    )


@pytest.fixture
def sync(store, relay_settings, signer, network, session):
    return make_sync(store, relay_settings, signer, network, session)


def make_book(book_id: str = "book-1", updated_at: int = 1000, **kwargs) -> Book:
    defaults = dict(
        d=f"book-{book_id}-0000abcd",
        title="The Book",
        created_at=1000,
        updated_at=updated_at,
    )
    defaults.update(kwargs)
    return Book(id=book_id, **defaults)


def make_chapter(
    chapter_id: str = "ch-1", book_id: str = "book-1", updated_at: int = 1000, **kwargs
) -> ChapterDraft:
    defaults = dict(
        d=f"chapter-01-{chapter_id[-4:]}",
        title="Chapter One",
        content_md="# One",
        created_at=1000,
        updated_at=updated_at,
    )
    defaults.update(kwargs)
    return ChapterDraft(id=chapter_id, book_id=book_id, **defaults)
