"""Store-first loaders for replaceable events.

The publisher and the ingestion agent need the site's relay list,
Blossom server list and nsite pointer, plus senders' profiles.  All of
them are replaceable or addressable, so the event store already keeps
the newest version; the network is only asked when the store is empty
for that key (``replaceable()``) or when a fresh read is wanted
(``load()``).

A relay failure is raised as ``RelayError``.  Callers decide whether it
is fatal; "not found" is simply ``None``.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from zap_directory.core.enums import EventKind, is_addressable
from zap_directory.core.interfaces import IRelayPool
from zap_directory.core.models import Filter, Mailboxes, NostrEvent, ProfileRecord
from zap_directory.infrastructure.event_store import IEventStore
from zap_directory.nostr.lists import get_blossom_servers, get_mailboxes, profile_from_event

logger = logging.getLogger(__name__)


class ReplaceableLoader:
    """Resolves replaceable events from the store, then from relays."""

    def __init__(
        self,
        pool: IRelayPool,
        store: IEventStore,
        *,
        lookup_relays: Sequence[str] = (),
        timeout: float | None = None,
    ) -> None:
        self._pool = pool
        self._store = store
        self._lookup_relays = list(lookup_relays)
        self._timeout = timeout

    def _relays(self, extra: Sequence[str] | None = None) -> list[str]:
        return list(
            dict.fromkeys([*self._lookup_relays, *self._pool.default_relays, *(extra or ())])
        )

    async def replaceable(
        self, kind: int, pubkey: str, identifier: str | None = None
    ) -> NostrEvent | None:
        cached = self._store.get_replaceable(kind, pubkey, identifier or "")
        if cached is not None:
            return cached
        return await self.load(kind, pubkey, identifier)

    async def load(
        self,
        kind: int,
        pubkey: str,
        identifier: str | None = None,
        relays: Sequence[str] | None = None,
    ) -> NostrEvent | None:
        """Fetch from relays into the store; returns the newest known version."""
        tags: dict[str, list[str]] = {}
        if is_addressable(kind) and identifier is not None:
            tags["d"] = [identifier]
        query = Filter(kinds=[kind], authors=[pubkey], tags=tags)

        events = await self._pool.request(
            [query], relays or self._relays(), timeout=self._timeout
        )
        for event in events:
            if query.matches(event):
                self._store.add(event)

        found = self._store.get_replaceable(kind, pubkey, identifier or "")
        logger.debug(
            "Loaded kind %d for %s: %s",
            kind, pubkey[:8], found.id[:8] if found else "not found",
        )
        return found

    async def mailboxes(self, pubkey: str) -> Mailboxes:
        return get_mailboxes(await self.replaceable(EventKind.RELAY_LIST, pubkey))

    async def blossom_servers(self, pubkey: str) -> list[str]:
        cached = self._store.get_replaceable(EventKind.BLOSSOM_SERVER_LIST, pubkey)
        if cached is None:
            # server lists usually live on the author's own outboxes
            boxes = await self.mailboxes(pubkey)
            cached = await self.load(
                EventKind.BLOSSOM_SERVER_LIST, pubkey,
                relays=self._relays(boxes.outboxes),
            )
        return get_blossom_servers(cached)

    async def profile(self, pubkey: str) -> ProfileRecord | None:
        event = await self.replaceable(EventKind.PROFILE, pubkey)
        return profile_from_event(event) if event is not None else None
