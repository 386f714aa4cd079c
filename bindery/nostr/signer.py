"""Event signers.

The sync core only needs two capabilities from a signer: the user's public
key and a signed event for a template. Anything that provides them (a local
key, a remote bunker, a hardware device) satisfies the Signer protocol.
"""

import json
import logging
from typing import Protocol, runtime_checkable

import nostr_sdk

from ..errors import SignFailed, SignerUnavailable
from .event import Event, EventTemplate

logger = logging.getLogger(__name__)


@runtime_checkable
class Signer(Protocol):
    async def get_public_key(self) -> str:
        """Return the signer's x-only public key as hex."""
        ...

    async def sign_event(self, template: EventTemplate) -> Event:
        """Sign a template.

        Raises:
            SignerUnavailable: The signer cannot be reached.
            UserRejected: The user declined to sign.
            SignFailed: Any other signing failure.
        """
        ...


class LocalKeySigner:
    """Signs with a secret key held in process memory."""

    def __init__(self, secret_key: str):
        """Initialize the signer.

        Args:
            secret_key: Hex or bech32 (nsec) secret key.

        Raises:
            SignerUnavailable: If the key cannot be parsed.
        """
        try:
            self._keys = nostr_sdk.Keys.parse(secret_key)
        except Exception as e:
            raise SignerUnavailable("Invalid secret key", e) from e

    @property
    def secret_hex(self) -> str:
        return self._keys.secret_key().to_hex()

    async def get_public_key(self) -> str:
        return self._keys.public_key().to_hex()

    async def sign_event(self, template: EventTemplate) -> Event:
        try:
            builder = (
                nostr_sdk.EventBuilder(nostr_sdk.Kind(template.kind), template.content)
                .tags([nostr_sdk.Tag.parse(t) for t in template.to_dict()["tags"]])
                .custom_created_at(nostr_sdk.Timestamp.from_secs(template.created_at))
            )
            unsigned = builder.finalize_unsigned(self._keys.public_key())
            signed = self._keys.sign_event(unsigned)
        except Exception as e:
            logger.error(f"Signing kind {template.kind} event failed: {e}")
            raise SignFailed("Failed to sign event", e) from e

        return Event.from_dict(json.loads(signed.as_json()))


def verify_signature(event: Event) -> bool:
    """Check the event's Schnorr signature and id."""
    try:
        parsed = nostr_sdk.Event.from_json(json.dumps(event.to_dict()))
        return bool(parsed.verify())
    except Exception as e:
        logger.debug(f"Event {event.id[:12]} failed verification: {e}")
        return False
