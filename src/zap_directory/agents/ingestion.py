"""Zap ingestion agent.

Keeps the event store fed:

* a persistent subscription for zap receipts addressed to the zap
  identity (window start onwards) on every configured relay;
* a one-time profile (kind 0) load for every sender seen, with bounded
  concurrency;
* the site identity's relay list, Blossom server list and nsite pointer,
  loaded on start.

Every *new* zap receipt pokes the trigger scheduler.  Parsing amounts is
left to aggregation; here a receipt only needs a readable sender.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from datetime import timedelta
from typing import Any

from zap_directory.agents.base import BaseAgent
from zap_directory.core.clock import IClock
from zap_directory.core.enums import NIP05_PATH, AgentType, EventKind
from zap_directory.core.errors import RelayError, ZapParseError
from zap_directory.core.interfaces import IRelayPool, IReplaceableLoader
from zap_directory.core.models import Filter, NostrEvent
from zap_directory.infrastructure.event_store import IEventStore
from zap_directory.nostr.zaps import get_zap_sender
from zap_directory.observability import metrics

logger = logging.getLogger(__name__)


class ZapIngestionAgent(BaseAgent):
    """Subscribes to zaps and loads the metadata aggregation needs.

    Parameters
    ----------
    notify:
        Called once per new zap receipt (``TriggerScheduler.notify_payment``).
    relays:
        Relays to subscribe on; the pool's defaults when omitted.
    """

    def __init__(
        self,
        pool: IRelayPool,
        store: IEventStore,
        loader: IReplaceableLoader,
        clock: IClock,
        *,
        zap_pubkey: str,
        site_pubkey: str,
        notify: Callable[[], None] | None = None,
        relays: Sequence[str] | None = None,
        window_days: int = 30,
        profile_concurrency: int = 8,
        agent_id: str | None = None,
    ) -> None:
        super().__init__(agent_id=agent_id)
        self._pool = pool
        self._store = store
        self._loader = loader
        self._clock = clock
        self._zap_pubkey = zap_pubkey
        self._site_pubkey = site_pubkey
        self._notify = notify
        self._relays = list(relays) if relays else None
        self._window = timedelta(days=window_days)
        self._profile_sem = asyncio.Semaphore(profile_concurrency)
        self._profiles_requested: set[str] = set()
        self._profile_tasks: set[asyncio.Task] = set()
        self._zaps_seen = 0
        self._store.on_insert(self._on_insert)

    @property
    def agent_type(self) -> AgentType:
        return AgentType.INGESTION

    @property
    def zaps_seen(self) -> int:
        return self._zaps_seen

    def zap_filter(self) -> Filter:
        since = int((self._clock.now() - self._window).timestamp())
        return Filter(
            kinds=[EventKind.ZAP_RECEIPT],
            tags={"p": [self._zap_pubkey]},
            since=since,
        )

    # ------------------------------------------------------------------
    # Store listener
    # ------------------------------------------------------------------

    def _on_insert(self, event: NostrEvent) -> None:
        if event.kind != EventKind.ZAP_RECEIPT:
            return
        if self._zap_pubkey not in event.tag_values("p"):
            return

        self._zaps_seen += 1
        metrics.record_zap_ingested()
        if self._notify is not None:
            self._notify()

        try:
            sender = get_zap_sender(event)
        except ZapParseError:
            return
        self._request_profile(sender)

    def _request_profile(self, pubkey: str) -> None:
        if pubkey in self._profiles_requested:
            return
        self._profiles_requested.add(pubkey)
        task = asyncio.get_running_loop().create_task(
            self._load_profile(pubkey), name=f"profile-{pubkey[:8]}"
        )
        self._profile_tasks.add(task)
        task.add_done_callback(self._profile_tasks.discard)

    async def _load_profile(self, pubkey: str) -> None:
        async with self._profile_sem:
            try:
                await self._loader.replaceable(EventKind.PROFILE, pubkey)
            except RelayError as exc:
                # forget it so the next zap from this sender retries
                self._profiles_requested.discard(pubkey)
                logger.debug("Profile load for %s failed: %s", pubkey[:8], exc)

    async def drain_profiles(self) -> None:
        """Wait for every profile load queued so far."""
        while self._profile_tasks:
            await asyncio.gather(*list(self._profile_tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load_site_lists(self) -> None:
        """Fetch the site's relay list, server list and current pointer."""
        wanted: list[tuple[int, str | None]] = [
            (EventKind.RELAY_LIST, None),
            (EventKind.BLOSSOM_SERVER_LIST, None),
            (EventKind.NSITE, NIP05_PATH),
        ]
        for kind, identifier in wanted:
            try:
                await self._loader.load(kind, self._site_pubkey, identifier)
            except RelayError as exc:
                logger.warning("Could not load kind %d for site: %s", kind, exc)

    async def backfill(self) -> int:
        """One-shot fetch of the window's zaps plus their senders' profiles.

        Returns the number of new zap receipts stored.
        """
        before = self._zaps_seen
        try:
            events = await self._pool.request([self.zap_filter()], self._relays)
        except RelayError as exc:
            logger.warning("Zap backfill failed: %s", exc)
            events = []
        self._store.add_many(events)
        await self.drain_profiles()
        added = self._zaps_seen - before
        logger.info("Backfilled %d zaps (%d received)", added, len(events))
        return added

    async def _subscribe_loop(self) -> None:
        async for relay, event in self._pool.subscribe([self.zap_filter()], self._relays):
            if self._store.add(event, relay):
                self._last_work_at = self._clock.now()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _on_start(self) -> None:
        self._spawn(self._subscribe_loop(), "subscribe")
        self._spawn(self.load_site_lists(), "site-lists")

    async def _on_stop(self) -> None:
        for task in list(self._profile_tasks):
            task.cancel()
        await asyncio.gather(*list(self._profile_tasks), return_exceptions=True)

    def _health_details(self) -> dict[str, Any]:
        return {
            "zaps_seen": self._zaps_seen,
            "profiles_requested": len(self._profiles_requested),
            "profiles_pending": len(self._profile_tasks),
        }
