"""Tests for scoped key derivation and the sync session."""

import asyncio

import pytest

from conftest import OTHER_PUBKEY, PUBKEY, FakeSigner

from bindery.errors import NotAuthenticated, SignerUnavailable, SyncTimeout, UserRejected
from bindery.sync.keys import (
    SEED_CONTENT,
    SEED_CREATED_AT,
    SEED_KIND,
    ScopedKeyService,
    SyncSession,
    derive_key_from_secret,
)


def make_service(pubkey=PUBKEY, local_secret=None, signer=None, timeout=30.0):
    session = SyncSession()
    session.login(pubkey, local_secret=local_secret)
    return ScopedKeyService(session, signer or FakeSigner(pubkey), timeout)


class SlowSigner(FakeSigner):
    async def sign_event(self, template):
        await asyncio.sleep(1)
        return await super().sign_event(template)


class TestDeriveKey:
    """Tests for the hash-to-key step."""

    def test_deterministic(self):
        a = derive_key_from_secret("abc:binder-sync")
        b = derive_key_from_secret("abc:binder-sync")
        assert a == b
        assert len(a.private_key_hex) == 64
        assert len(a.public_key_hex) == 64

    def test_repr_hides_private_key(self):
        key = derive_key_from_secret("abc:binder-sync")
        assert key.private_key_hex not in repr(key)
        assert key.public_key_hex in repr(key)


class TestScopedKeyService:
    """Tests for ScopedKeyService."""

    @pytest.mark.asyncio
    async def test_same_identity_same_key_across_devices(self):
        """Test two sessions of one identity derive the same key."""
        key_a = await make_service().get_scoped_key("binder-sync")
        key_b = await make_service().get_scoped_key("binder-sync")
        assert key_a == key_b

    @pytest.mark.asyncio
    async def test_scopes_are_separate(self):
        service = make_service()
        assert (
            await service.get_scoped_key("binder-sync")
            != await service.get_scoped_key("binder-library")
        )

    @pytest.mark.asyncio
    async def test_identities_are_separate(self):
        key_a = await make_service(PUBKEY).get_scoped_key("binder-sync")
        key_b = await make_service(OTHER_PUBKEY).get_scoped_key("binder-sync")
        assert key_a != key_b

    @pytest.mark.asyncio
    async def test_seed_event_is_fixed(self):
        signer = FakeSigner()
        await make_service(signer=signer).get_scoped_key("binder-sync")

        seed = signer.signed[0]
        assert seed.kind == SEED_KIND
        assert seed.created_at == SEED_CREATED_AT
        assert seed.content == SEED_CONTENT
        assert seed.tags == []

    @pytest.mark.asyncio
    async def test_local_secret_skips_signer(self):
        signer = FakeSigner()
        service = make_service(local_secret="11" * 32, signer=signer)

        key = await service.get_scoped_key("binder-sync")

        assert signer.signed == []
        assert key == derive_key_from_secret(f"{'11' * 32}:binder-sync")

    @pytest.mark.asyncio
    async def test_cached_per_scope(self):
        signer = FakeSigner()
        service = make_service(signer=signer)

        first = await service.get_scoped_key("binder-sync")
        second = await service.get_scoped_key("binder-sync")

        assert first is second
        assert len(signer.signed) == 1

    @pytest.mark.asyncio
    async def test_not_authenticated(self):
        service = ScopedKeyService(SyncSession(), FakeSigner())
        with pytest.raises(NotAuthenticated):
            await service.get_scoped_key("binder-sync")

    @pytest.mark.asyncio
    async def test_signer_timeout(self):
        service = make_service(signer=SlowSigner(), timeout=0.01)
        with pytest.raises(SyncTimeout):
            await service.get_scoped_key("binder-sync")

    @pytest.mark.asyncio
    async def test_rejection_propagates(self):
        signer = FakeSigner()
        signer.error = UserRejected("no")
        with pytest.raises(UserRejected):
            await make_service(signer=signer).get_scoped_key("binder-sync")

    @pytest.mark.asyncio
    async def test_other_signer_errors_wrapped(self):
        signer = FakeSigner()
        signer.error = ConnectionError("bunker offline")
        with pytest.raises(SignerUnavailable):
            await make_service(signer=signer).get_scoped_key("binder-sync")


class TestSyncSession:
    """Tests for session lifecycle."""

    def test_clear(self):
        session = SyncSession()
        session.login(PUBKEY, local_secret="secret")
        session.key_cache["binder-sync"] = derive_key_from_secret("x")
        session.applied_events["books"] = "e1"
        session.published_digests["book-1"] = "d1"

        session.clear()

        assert not session.authenticated
        assert session.local_secret is None
        assert session.key_cache == {}
        assert session.applied_events == {}
        assert session.published_digests == {}

    def test_switching_identity_clears_state(self):
        session = SyncSession()
        session.login(PUBKEY)
        session.applied_events["books"] = "e1"

        session.login(OTHER_PUBKEY)

        assert session.pubkey == OTHER_PUBKEY
        assert session.applied_events == {}

    def test_relogin_same_identity_keeps_state(self):
        session = SyncSession()
        session.login(PUBKEY)
        session.applied_events["books"] = "e1"

        session.login(PUBKEY)

        assert session.applied_events == {"books": "e1"}
