"""Relay settings: which relays drafts are published to."""

import logging
from dataclasses import dataclass
from urllib.parse import urlparse

from ..config import RelaysConfig
from ..errors import InvalidRelayUrl
from .local_store import LocalStore

logger = logging.getLogger(__name__)

_LOCAL_HOSTS = ("localhost", "127.0.0.1")


@dataclass
class RelaySetting:
    url: str
    enabled: bool = True


class RelaySettings:
    """Relay list stored locally, falling back to configured defaults."""

    def __init__(self, store: LocalStore, config: RelaysConfig):
        self._store = store
        self._config = config

    def get_relays(self) -> list[RelaySetting]:
        stored = self._store.get_relays()
        if stored:
            return [RelaySetting(url, enabled) for url, enabled in stored]
        return [RelaySetting(url) for url in self._config.defaults]

    def get_enabled_relay_urls(self) -> list[str]:
        return [r.url for r in self.get_relays() if r.enabled]

    def validate_url(self, url: str) -> None:
        """Check that a relay URL is usable.

        Raises:
            InvalidRelayUrl: Unless the scheme is wss://, or ws:// on a
                localhost address with insecure localhost allowed.
        """
        parsed = urlparse(url)
        if not parsed.netloc:
            raise InvalidRelayUrl(f"Invalid URL format: {url}")
        if parsed.scheme == "wss":
            return
        if parsed.scheme == "ws" and parsed.hostname in _LOCAL_HOSTS:
            if self._config.allow_insecure_localhost:
                return
            raise InvalidRelayUrl(
                f"Insecure ws:// allowed only for localhost in dev mode: {url}"
            )
        raise InvalidRelayUrl(f"Invalid protocol for relay (must be wss://): {url}")

    def set_relays(self, relays: list[RelaySetting]) -> None:
        """Validate and store a relay list. Nothing is stored if any URL is invalid."""
        for relay in relays:
            self.validate_url(relay.url)
        self._store.replace_relays([(r.url, r.enabled) for r in relays])
        logger.info(f"Saved {len(relays)} relays")

    def reset_to_defaults(self) -> None:
        self._store.replace_relays([(url, True) for url in self._config.defaults])
