"""Local persistence for drafts and relay settings."""

from .local_store import DraftStore, LocalStore
from .relay_settings import RelaySetting, RelaySettings

__all__ = ["DraftStore", "LocalStore", "RelaySetting", "RelaySettings"]
