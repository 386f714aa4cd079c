"""Relay client: publish fan-out, event fetch and NIP-11 probing.

Relays are independent and unreliable. Every operation here talks to each
relay on its own connection, concurrently, and a failing relay never
affects the others.
"""

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncContextManager, Callable

import httpx
import websockets

from ..errors import MalformedPayload, TransportFailed
from .event import Event, Filter
from .signer import verify_signature

logger = logging.getLogger(__name__)

ConnectFactory = Callable[[str], AsyncContextManager[Any]]


@dataclass
class RelayResult:
    """Outcome of sending one event to one relay."""

    url: str
    accepted: bool
    message: str | None = None


@dataclass
class PublishReport:
    """Per-relay outcome of a publish. Informational only."""

    event_id: str
    results: list[RelayResult] = field(default_factory=list)

    @property
    def accepted(self) -> list[str]:
        return [r.url for r in self.results if r.accepted]

    @property
    def failed(self) -> list[str]:
        return [r.url for r in self.results if not r.accepted]


@dataclass
class RelayProbe:
    """Result of a NIP-11 information request."""

    url: str
    ok: bool
    latency_ms: float | None = None
    name: str | None = None
    software: str | None = None
    error: str | None = None


class RelayClient:
    """Websocket client for a set of relays.

    Each call opens one connection per relay and closes it before
    returning, so no transport state outlives the operation.
    """

    def __init__(
        self,
        publish_timeout: float = 10.0,
        fetch_timeout: float = 8.0,
        connect: ConnectFactory | None = None,
        verify: Callable[[Event], bool] = verify_signature,
    ):
        """Initialize the relay client.

        Args:
            publish_timeout: Seconds to wait for a relay's OK.
            fetch_timeout: Seconds to wait for a relay's EOSE.
            connect: Factory returning an async context manager for a
                websocket; defaults to websockets.connect.
            verify: Signature check applied to fetched events.
        """
        self.publish_timeout = publish_timeout
        self.fetch_timeout = fetch_timeout
        self._connect = connect or self._default_connect
        self._verify = verify

    def _default_connect(self, url: str) -> AsyncContextManager[Any]:
        return websockets.connect(url, open_timeout=self.publish_timeout)

    async def publish(self, relays: list[str], event: Event) -> PublishReport:
        """Send an event to every relay concurrently. Never raises."""
        results = await asyncio.gather(
            *(self._publish_one(url, event) for url in relays)
        )
        report = PublishReport(event_id=event.id, results=list(results))
        logger.info(
            f"Published event {event.id[:12]} (kind {event.kind}): "
            f"{len(report.accepted)}/{len(relays)} relays accepted"
        )
        return report

    async def _publish_one(self, url: str, event: Event) -> RelayResult:
        try:
            message = await asyncio.wait_for(
                self._send_event(url, event), timeout=self.publish_timeout
            )
            return RelayResult(url=url, accepted=True, message=message)
        except TransportFailed as e:
            logger.warning(f"Draft sync publish failed: {e.message}")
            return RelayResult(url=url, accepted=False, message=e.message)
        except asyncio.TimeoutError:
            logger.warning(f"Draft sync publish timed out for relay {url}")
            return RelayResult(url=url, accepted=False, message="timeout")
        except Exception as e:
            logger.warning(f"Draft sync publish failed for relay {url}: {e}")
            return RelayResult(url=url, accepted=False, message=str(e))

    async def _send_event(self, url: str, event: Event) -> str:
        async with self._connect(url) as ws:
            await ws.send(json.dumps(["EVENT", event.to_dict()]))
            while True:
                message = _parse_message(await ws.recv())
                if message is None:
                    continue
                if message[0] == "OK" and len(message) >= 3 and message[1] == event.id:
                    reason = message[3] if len(message) > 3 else ""
                    if message[2]:
                        return reason
                    raise TransportFailed(url, f"rejected: {reason}")
                if message[0] == "NOTICE":
                    logger.debug(f"{url} notice: {message[1:]}")

    async def fetch_events(self, relays: list[str], filters: list[Filter]) -> list[Event]:
        """Query all relays and merge their answers.

        Best effort: returns whatever arrived before each relay's EOSE or
        timeout. Duplicates are collapsed and events with a bad id or
        signature are dropped. Newest first.
        """
        batches = await asyncio.gather(
            *(self._fetch_one(url, filters) for url in relays)
        )

        seen: dict[str, Event] = {}
        for batch in batches:
            for event in batch:
                if event.id in seen:
                    continue
                if not event.has_valid_id() or not self._verify(event):
                    logger.warning(f"Dropping event {event.id[:12]} with invalid id or signature")
                    continue
                seen[event.id] = event

        logger.debug(f"Fetched {len(seen)} unique events from {len(relays)} relays")
        return sorted(seen.values(), key=lambda e: (e.created_at, e.id), reverse=True)

    async def _fetch_one(self, url: str, filters: list[Filter]) -> list[Event]:
        events: list[Event] = []
        try:
            await asyncio.wait_for(
                self._collect(url, filters, events), timeout=self.fetch_timeout
            )
        except asyncio.TimeoutError:
            logger.debug(f"Fetch from {url} timed out after {len(events)} events")
        except Exception as e:
            logger.warning(f"Fetch from relay {url} failed: {e}")
        return events

    async def _collect(self, url: str, filters: list[Filter], events: list[Event]) -> None:
        sub_id = uuid.uuid4().hex[:16]
        async with self._connect(url) as ws:
            await ws.send(json.dumps(["REQ", sub_id, *(f.to_dict() for f in filters)]))
            while True:
                message = _parse_message(await ws.recv())
                if message is None or len(message) < 2:
                    continue
                if message[0] == "EVENT" and len(message) >= 3 and message[1] == sub_id:
                    try:
                        events.append(Event.from_dict(message[2]))
                    except MalformedPayload as e:
                        logger.warning(f"Ignoring malformed event from {url}: {e.message}")
                elif message[0] == "EOSE" and message[1] == sub_id:
                    break
                elif message[0] == "CLOSED" and message[1] == sub_id:
                    logger.warning(f"{url} closed subscription: {message[2:]}")
                    return
                elif message[0] == "NOTICE":
                    logger.debug(f"{url} notice: {message[1:]}")
            await ws.send(json.dumps(["CLOSE", sub_id]))


def _parse_message(raw: str | bytes) -> list[Any] | None:
    try:
        message = json.loads(raw)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring non-JSON relay message: {raw!r:.80}")
        return None
    if not isinstance(message, list) or not message:
        return None
    return message


def _info_url(relay_url: str) -> str:
    if relay_url.startswith("wss://"):
        return "https://" + relay_url[len("wss://"):]
    if relay_url.startswith("ws://"):
        return "http://" + relay_url[len("ws://"):]
    return relay_url


async def probe_relay(url: str, timeout: float = 5.0) -> RelayProbe:
    """Fetch a relay's NIP-11 information document."""
    start = time.monotonic()
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(
                _info_url(url), headers={"Accept": "application/nostr+json"}
            )
    except httpx.ConnectError:
        return RelayProbe(url=url, ok=False, error="Connection failed")
    except httpx.TimeoutException:
        return RelayProbe(url=url, ok=False, error="Connection timed out")
    except httpx.HTTPError as e:
        return RelayProbe(url=url, ok=False, error=str(e))

    latency = round((time.monotonic() - start) * 1000, 1)
    if response.status_code != 200:
        return RelayProbe(
            url=url, ok=False, latency_ms=latency, error=f"HTTP {response.status_code}"
        )

    try:
        info = response.json()
    except ValueError:
        info = {}
    if not isinstance(info, dict):
        info = {}
    return RelayProbe(
        url=url,
        ok=True,
        latency_ms=latency,
        name=info.get("name"),
        software=info.get("software"),
    )
