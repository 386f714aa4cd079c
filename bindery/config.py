"""Configuration loading for Bindery."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_RELAYS = [
    "wss://relay.damus.io",
    "wss://relay.primal.net",
    "wss://nos.lol",
]


@dataclass
class IdentityConfig:
    """Signing identity used for publishing."""

    secret_key: str | None = None  # hex; prefer BINDERY_SECRET_KEY
    signer_timeout_seconds: float = 30.0


@dataclass
class RelaysConfig:
    defaults: list[str] = field(default_factory=lambda: list(DEFAULT_RELAYS))
    allow_insecure_localhost: bool = False
    publish_timeout_seconds: float = 10.0
    fetch_timeout_seconds: float = 8.0


@dataclass
class SyncConfig:
    """Configuration for draft snapshot sync."""

    scope: str = "binder-sync"
    restore_limit: int = 5
    restore_all_limit: int = 100


@dataclass
class StoreConfig:
    db_path: str = "~/.bindery/drafts.db"


@dataclass
class HistoryConfig:
    """Retention for chapter revision history."""

    max_per_chapter: int = 30
    max_age_days: int = 30


@dataclass
class Config:
    identity: IdentityConfig = field(default_factory=IdentityConfig)
    relays: RelaysConfig = field(default_factory=RelaysConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with BINDERY_ prefix."""
    return os.environ.get(f"BINDERY_{key}", default)


def _is_truthy(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Identity overrides
    if secret_key := _get_env("SECRET_KEY"):
        config.identity.secret_key = secret_key
    if signer_timeout := _get_env("SIGNER_TIMEOUT"):
        config.identity.signer_timeout_seconds = float(signer_timeout)

    # Relay overrides
    if relays := _get_env("RELAYS"):
        config.relays.defaults = [r.strip() for r in relays.split(",") if r.strip()]
    if insecure := _get_env("ALLOW_INSECURE_LOCALHOST"):
        config.relays.allow_insecure_localhost = _is_truthy(insecure)

    # Sync overrides
    if scope := _get_env("SYNC_SCOPE"):
        config.sync.scope = scope

    # Store overrides
    if db_path := _get_env("DB_PATH"):
        config.store.db_path = db_path

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            # Parse identity config
            if "identity" in data:
                identity_data = data["identity"]
                config.identity = IdentityConfig(
                    secret_key=identity_data.get("secret_key"),
                    signer_timeout_seconds=identity_data.get(
                        "signer_timeout_seconds",
                        config.identity.signer_timeout_seconds,
                    ),
                )

            # Parse relay config
            if "relays" in data:
                relay_data = data["relays"]
                config.relays = RelaysConfig(
                    defaults=relay_data.get("defaults", config.relays.defaults),
                    allow_insecure_localhost=relay_data.get(
                        "allow_insecure_localhost",
                        config.relays.allow_insecure_localhost,
                    ),
                    publish_timeout_seconds=relay_data.get(
                        "publish_timeout_seconds",
                        config.relays.publish_timeout_seconds,
                    ),
                    fetch_timeout_seconds=relay_data.get(
                        "fetch_timeout_seconds",
                        config.relays.fetch_timeout_seconds,
                    ),
                )

            # Parse sync config
            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    scope=sync_data.get("scope", config.sync.scope),
                    restore_limit=sync_data.get(
                        "restore_limit", config.sync.restore_limit
                    ),
                    restore_all_limit=sync_data.get(
                        "restore_all_limit", config.sync.restore_all_limit
                    ),
                )

            if "store" in data:
                config.store = StoreConfig(
                    db_path=data["store"].get("db_path", config.store.db_path)
                )

            if "history" in data:
                history_data = data["history"]
                config.history = HistoryConfig(
                    max_per_chapter=history_data.get(
                        "max_per_chapter", config.history.max_per_chapter
                    ),
                    max_age_days=history_data.get(
                        "max_age_days", config.history.max_age_days
                    ),
                )

    # Apply environment variable overrides
    return _apply_env_overrides(config)
