"""Tests for relay settings."""

import pytest

from bindery.config import DEFAULT_RELAYS, RelaysConfig
from bindery.errors import InvalidRelayUrl
from bindery.store import RelaySetting, RelaySettings


@pytest.fixture
def settings(store):
    return RelaySettings(store, RelaysConfig())


class TestRelaySettings:
    """Tests for RelaySettings."""

    def test_defaults_when_nothing_stored(self, settings):
        assert settings.get_enabled_relay_urls() == DEFAULT_RELAYS

    def test_set_and_get(self, settings):
        settings.set_relays([RelaySetting("wss://a.test"), RelaySetting("wss://b.test", enabled=False)])

        assert [r.url for r in settings.get_relays()] == ["wss://a.test", "wss://b.test"]
        assert settings.get_enabled_relay_urls() == ["wss://a.test"]

    def test_all_disabled_means_no_relays(self, settings):
        settings.set_relays([RelaySetting("wss://a.test", enabled=False)])
        assert settings.get_enabled_relay_urls() == []

    def test_reset_to_defaults(self, settings):
        settings.set_relays([RelaySetting("wss://a.test")])
        settings.reset_to_defaults()
        assert settings.get_enabled_relay_urls() == DEFAULT_RELAYS

    @pytest.mark.parametrize(
        "url",
        ["https://relay.test", "ws://relay.test", "not a url", "wss://", "ws://localhost:7777"],
    )
    def test_rejects_invalid_urls(self, settings, url):
        with pytest.raises(InvalidRelayUrl):
            settings.validate_url(url)

    def test_invalid_url_stores_nothing(self, settings):
        with pytest.raises(InvalidRelayUrl):
            settings.set_relays([RelaySetting("wss://ok.test"), RelaySetting("http://bad.test")])
        assert settings.get_enabled_relay_urls() == DEFAULT_RELAYS

    @pytest.mark.parametrize("url", ["ws://localhost:7777", "ws://127.0.0.1:7777"])
    def test_insecure_localhost_in_dev_mode(self, store, url):
        settings = RelaySettings(store, RelaysConfig(allow_insecure_localhost=True))
        settings.validate_url(url)

    def test_insecure_remote_rejected_in_dev_mode(self, store):
        settings = RelaySettings(store, RelaysConfig(allow_insecure_localhost=True))
        with pytest.raises(InvalidRelayUrl):
            settings.validate_url("ws://relay.test")
