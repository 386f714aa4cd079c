"""Bindery: local-first book drafts with encrypted sync over Nostr relays."""

__version__ = "0.1.0"
