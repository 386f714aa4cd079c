"""Nostr wire layer: events, typed tags, NIP-44 encryption, signers, relays."""

from .event import Event, EventTemplate, Filter, compute_event_id
from .relay import PublishReport, RelayClient, RelayProbe, RelayResult, probe_relay
from .signer import LocalKeySigner, Signer, verify_signature

__all__ = [
    "Event",
    "EventTemplate",
    "Filter",
    "compute_event_id",
    "PublishReport",
    "RelayClient",
    "RelayProbe",
    "RelayResult",
    "probe_relay",
    "LocalKeySigner",
    "Signer",
    "verify_signature",
]
