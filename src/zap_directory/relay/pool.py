"""NIP-01 relay access built on ``nostr_sdk.Client``.

``RelayPool`` adapts the client to the three verbs the service needs:

* ``request()``: one-shot fetch from the target relays, collected until
  EOSE (or timeout), merged and de-duplicated by event id.
* ``subscribe()``: long-lived subscription merged into one async
  iterator.  The client keeps relay connections alive and re-sends the
  subscription after a reconnect; the store de-duplicates replays.
* ``publish()``: send to the target relays and report each relay's
  ``OK`` as a ``PublishAck``.

Events cross the boundary as JSON so the rest of the service only sees
``NostrEvent`` models.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Sequence
from datetime import timedelta
from typing import Any

from nostr_sdk import Client, Event, HandleNotification, RelayUrl
from nostr_sdk import Filter as SdkFilter
from pydantic import ValidationError

from zap_directory.core.errors import RelayConnectionError, RelayError
from zap_directory.core.models import Filter, NostrEvent, PublishAck

logger = logging.getLogger(__name__)


def _to_sdk_filter(f: Filter) -> SdkFilter:
    return SdkFilter.from_json(json.dumps(f.to_wire()))


def _from_sdk_event(event: Any) -> NostrEvent | None:
    try:
        return NostrEvent.model_validate_json(event.as_json())
    except ValidationError:
        return None


class _QueueHandler(HandleNotification):
    """Forwards events of the owned subscriptions onto an asyncio queue.

    The client may invoke callbacks off the event loop thread, so items
    are handed over with ``call_soon_threadsafe``.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        queue: asyncio.Queue[tuple[str, NostrEvent]],
        subscription_ids: set[str],
        names: dict[str, str],
    ) -> None:
        self._loop = loop
        self._queue = queue
        self._subscription_ids = subscription_ids
        self._names = names

    async def handle(self, relay_url, subscription_id, event) -> bool:
        # returning True would end handle_notifications()
        if str(subscription_id) not in self._subscription_ids:
            return False
        parsed = _from_sdk_event(event)
        if parsed is not None:
            url = self._names.get(str(relay_url), str(relay_url))
            self._loop.call_soon_threadsafe(self._queue.put_nowait, (url, parsed))
        return False

    async def handle_msg(self, relay_url, msg) -> bool:
        return False


class RelayPool:
    """Talks to a set of relays through one ``nostr_sdk.Client``.

    Parameters
    ----------
    default_relays:
        Relays used when a call does not name its own targets.
    request_timeout:
        Seconds to wait for EOSE on one-shot requests.
    publish_timeout:
        Seconds to wait for relay ``OK`` responses after publishing.
    client:
        Pre-built client (tests); otherwise one is created on ``open()``.
    """

    def __init__(
        self,
        default_relays: Sequence[str],
        *,
        request_timeout: float = 10.0,
        publish_timeout: float = 10.0,
        client: Any | None = None,
    ) -> None:
        self._default_relays = list(dict.fromkeys(default_relays))
        self._request_timeout = request_timeout
        self._publish_timeout = publish_timeout
        self._client = client
        self._added: set[str] = set()
        # client-normalized url -> url as configured
        self._names: dict[str, str] = {}

    # -- Lifecycle -----------------------------------------------------------

    async def open(self) -> None:
        if self._client is None:
            self._client = Client()
        await self._ensure_relays(self._default_relays)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.disconnect()
        self._client = None
        self._added.clear()

    async def __aenter__(self) -> RelayPool:
        await self.open()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    @property
    def default_relays(self) -> list[str]:
        return list(self._default_relays)

    def _targets(self, relays: Sequence[str] | None) -> list[str]:
        return list(dict.fromkeys(relays)) if relays else self.default_relays

    async def _ensure_relays(self, urls: Sequence[str]) -> list[RelayUrl]:
        """Add unknown relays to the client and return their parsed urls."""
        if self._client is None:
            raise RelayError("RelayPool is not open")
        parsed: list[RelayUrl] = []
        added = False
        for url in urls:
            try:
                relay_url = RelayUrl.parse(url)
            except Exception as exc:
                logger.warning("Skipping relay %s: %s", url, exc)
                continue
            self._names[str(relay_url)] = url
            if url not in self._added:
                await self._client.add_relay(relay_url)
                self._added.add(url)
                added = True
            parsed.append(relay_url)
        if added:
            await self._client.connect()
        return parsed

    def _name(self, relay_url: Any) -> str:
        return self._names.get(str(relay_url), str(relay_url))

    # -- One-shot requests ---------------------------------------------------

    async def request(
        self,
        filters: Sequence[Filter],
        relays: Sequence[str] | None = None,
        timeout: float | None = None,
    ) -> list[NostrEvent]:
        """Fetch stored events from the target relays.

        Raises RelayError when the client cannot fetch from any of them.
        """
        targets = self._targets(relays)
        if not targets:
            return []
        urls = await self._ensure_relays(targets)
        if not urls:
            raise RelayError(f"All {len(targets)} relays failed the request")
        wait = timedelta(seconds=self._request_timeout if timeout is None else timeout)

        merged: dict[str, NostrEvent] = {}
        for f in filters:
            try:
                events = await self._client.fetch_events_from(urls, _to_sdk_filter(f), wait)
            except Exception as exc:
                raise RelayConnectionError(", ".join(targets), f"request failed: {exc}") from exc
            for raw in events.to_vec():
                event = _from_sdk_event(raw)
                if event is not None:
                    merged.setdefault(event.id, event)
        return list(merged.values())

    # -- Subscriptions -------------------------------------------------------

    async def subscribe(
        self,
        filters: Sequence[Filter],
        relays: Sequence[str] | None = None,
    ) -> AsyncIterator[tuple[str, NostrEvent]]:
        """Yield ``(relay, event)`` forever; cancel the consumer to stop."""
        urls = await self._ensure_relays(self._targets(relays))
        queue: asyncio.Queue[tuple[str, NostrEvent]] = asyncio.Queue()
        subscription_ids: set[str] = set()
        handler = _QueueHandler(
            asyncio.get_running_loop(), queue, subscription_ids, self._names
        )
        for f in filters:
            output = await self._client.subscribe_to(urls, _to_sdk_filter(f), None)
            subscription_ids.add(str(output.id))
            for relay_url, reason in output.failed.items():
                logger.warning("Relay %s refused subscription: %s", self._name(relay_url), reason)
        logger.info(
            "Subscribed to %d relays (%s)", len(urls), ", ".join(sorted(subscription_ids))
        )

        task = asyncio.create_task(
            self._client.handle_notifications(handler), name="relay-notifications"
        )
        try:
            while True:
                yield await queue.get()
        finally:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            if self._client is not None:
                for subscription_id in subscription_ids:
                    await self._client.unsubscribe(subscription_id)

    # -- Publishing ----------------------------------------------------------

    async def publish(
        self,
        event: NostrEvent,
        relays: Sequence[str] | None = None,
    ) -> dict[str, PublishAck]:
        targets = self._targets(relays)
        if not targets:
            return {}
        urls = await self._ensure_relays(targets)
        acks = {
            url: PublishAck(relay=url, accepted=False, message="invalid relay url")
            for url in targets
        }
        if not urls:
            return acks

        sdk_event = Event.from_json(json.dumps(event.to_wire()))
        try:
            output = await asyncio.wait_for(
                self._client.send_event_to(urls, sdk_event), self._publish_timeout
            )
        except asyncio.TimeoutError:
            for relay_url in urls:
                name = self._name(relay_url)
                acks[name] = PublishAck(relay=name, accepted=False, message="timeout waiting for OK")
            return acks
        except Exception as exc:
            logger.warning("Publish of %s failed: %s", event.id[:8], exc)
            for relay_url in urls:
                name = self._name(relay_url)
                acks[name] = PublishAck(relay=name, accepted=False, message=str(exc))
            return acks

        for relay_url in urls:
            name = self._name(relay_url)
            acks[name] = PublishAck(relay=name, accepted=False, message="no response")
        for relay_url in output.success:
            name = self._name(relay_url)
            acks[name] = PublishAck(relay=name, accepted=True)
        for relay_url, reason in output.failed.items():
            name = self._name(relay_url)
            acks[name] = PublishAck(relay=name, accepted=False, message=str(reason))
        return acks
