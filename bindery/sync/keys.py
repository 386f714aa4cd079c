"""Scope-bound symmetric keys derived from the user's signing identity.

A derived key is never persisted. It is rebuilt on demand from either the
session's delegated local secret or a signature over a fixed seed event, so
every device holding the same identity arrives at the same key for the
same scope.
"""

import asyncio
import hashlib
import logging
from dataclasses import dataclass, field

from ..errors import (
    BinderyError,
    NotAuthenticated,
    SignerUnavailable,
    SyncTimeout,
)
from ..nostr import nip44
from ..nostr.event import EventTemplate
from ..nostr.keys import public_key_hex
from ..nostr.signer import Signer

logger = logging.getLogger(__name__)

SEED_KIND = 40013
SEED_CREATED_AT = 1
SEED_CONTENT = "Binder sync key seed"


@dataclass(frozen=True)
class DerivedKey:
    private_key_hex: str
    public_key_hex: str

    def __repr__(self) -> str:
        return f"DerivedKey(public_key_hex={self.public_key_hex!r})"


@dataclass
class SyncSession:
    """Process-local state tied to one logged-in identity.

    Holds the derived-key cache and the restore de-duplication markers.
    clear() must be called on logout so nothing leaks into the next session.
    """

    pubkey: str | None = None
    local_secret: str | None = None
    key_cache: dict[str, DerivedKey] = field(default_factory=dict)
    applied_events: dict[str, str] = field(default_factory=dict)
    published_digests: dict[str, str] = field(default_factory=dict)

    @property
    def authenticated(self) -> bool:
        return bool(self.pubkey)

    def login(self, pubkey: str, local_secret: str | None = None) -> None:
        if self.pubkey and self.pubkey != pubkey:
            self.clear()
        self.pubkey = pubkey
        self.local_secret = local_secret

    def clear(self) -> None:
        """Forget the identity and every cached key and marker."""
        self.pubkey = None
        self.local_secret = None
        self.key_cache.clear()
        self.applied_events.clear()
        self.published_digests.clear()


def derive_key_from_secret(base_material: str) -> DerivedKey:
    """SHA-256 the base material into a secp256k1 keypair."""
    secret = hashlib.sha256(base_material.encode("utf-8")).digest()
    return DerivedKey(private_key_hex=secret.hex(), public_key_hex=public_key_hex(secret))


def conversation_key(key: DerivedKey) -> bytes:
    """NIP-44 conversation key of a derived keypair with itself."""
    return nip44.get_conversation_key(bytes.fromhex(key.private_key_hex), key.public_key_hex)


class ScopedKeyService:
    """Derives and caches one key per scope for the current session."""

    def __init__(self, session: SyncSession, signer: Signer, signer_timeout: float = 30.0):
        self.session = session
        self.signer = signer
        self.signer_timeout = signer_timeout

    async def get_scoped_key(self, scope: str) -> DerivedKey:
        """Return the derived key for a scope, deriving it on first use.

        Raises:
            NotAuthenticated: No identity in the session.
            SignerUnavailable: The seed signature could not be obtained.
            SyncTimeout: The signer did not answer in time.
        """
        cached = self.session.key_cache.get(scope)
        if cached is not None:
            return cached

        if not self.session.authenticated:
            raise NotAuthenticated("User not authenticated")

        if self.session.local_secret:
            base = f"{self.session.local_secret}:{scope}"
        else:
            base = f"{await self._seed_signature()}:{scope}"

        derived = derive_key_from_secret(base)
        self.session.key_cache[scope] = derived
        logger.debug(f"Derived sync key for scope '{scope}': {derived.public_key_hex[:12]}")
        return derived

    async def _seed_signature(self) -> str:
        template = EventTemplate(
            kind=SEED_KIND, content=SEED_CONTENT, tags=[], created_at=SEED_CREATED_AT
        )
        try:
            signed = await asyncio.wait_for(
                self.signer.sign_event(template), timeout=self.signer_timeout
            )
        except asyncio.TimeoutError as e:
            raise SyncTimeout(
                f"Signer did not sign the sync seed within {self.signer_timeout}s"
            ) from e
        except BinderyError:
            raise
        except Exception as e:
            raise SignerUnavailable("Failed to sign sync seed", e) from e
        return signed.sig
