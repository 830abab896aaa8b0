"""Append-only Nostr event store shared by ingestion and aggregation.

Design invariants
-----------------
1.  ``add()`` is **idempotent** on ``event.id``: adding the same event
    twice is a silent no-op and returns False.
2.  ``query()`` returns events in **insertion order**.
3.  The store is **append-only**: events are never deleted or modified.
    ``clear()`` exists only for testing.
4.  Replaceable (0, 3, 10000-19999) and addressable (30000-39999) kinds
    are additionally indexed so ``get_replaceable()`` returns the newest
    version per ``(kind, pubkey[, d])``; older versions stay in the log.

Listeners registered with ``on_insert()`` run synchronously for every
*new* event.  Single writer (the event loop), many readers.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Protocol

from zap_directory.core.enums import is_addressable, is_replaceable
from zap_directory.core.models import Filter, NostrEvent

logger = logging.getLogger(__name__)

InsertListener = Callable[[NostrEvent], None]


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------

class IEventStore(Protocol):
    """Deduplicated event cache."""

    def add(self, event: NostrEvent, relay: str | None = None) -> bool:
        """Store an event.  Returns True if it was new."""
        ...

    def add_many(self, events: Iterable[NostrEvent], relay: str | None = None) -> int:
        """Store several events.  Returns how many were new."""
        ...

    def query(self, *filters: Filter) -> list[NostrEvent]:
        """Events matching any of the filters, in insertion order."""
        ...

    def get_replaceable(
        self, kind: int, pubkey: str, identifier: str = ""
    ) -> NostrEvent | None:
        """Newest replaceable/addressable event, or None."""
        ...

    def on_insert(self, listener: InsertListener) -> None: ...


def _replaceable_key(kind: int, pubkey: str, identifier: str) -> tuple[int, str, str]:
    return (kind, pubkey, identifier if is_addressable(kind) else "")


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------

class InMemoryEventStore:
    """Dict-backed event store.  No persistence across restarts.

    State is rebuilt from relay history on boot.
    """

    def __init__(
        self,
        verifier: Callable[[NostrEvent], bool] | None = None,
    ) -> None:
        self._events: dict[str, NostrEvent] = {}
        self._replaceable: dict[tuple[int, str, str], NostrEvent] = {}
        self._seen_on: dict[str, set[str]] = {}
        self._listeners: list[InsertListener] = []
        self._verifier = verifier
        self._rejected = 0

    def add(self, event: NostrEvent, relay: str | None = None) -> bool:
        """Add *event*.  No-op if ``id`` already stored."""
        if event.id in self._events:
            if relay:
                self._seen_on[event.id].add(relay)
            return False

        if self._verifier is not None and not self._verifier(event):
            self._rejected += 1
            logger.debug(
                "Rejected invalid event %s from %s", event.id[:8], relay
            )
            return False

        self._events[event.id] = event
        self._seen_on[event.id] = {relay} if relay else set()

        if is_replaceable(event.kind) or is_addressable(event.kind):
            key = _replaceable_key(event.kind, event.pubkey, event.identifier)
            current = self._replaceable.get(key)
            if current is None or _newer(event, current):
                self._replaceable[key] = event

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "Insert listener failed on event %s", event.id[:8]
                )
        return True

    def add_many(self, events: Iterable[NostrEvent], relay: str | None = None) -> int:
        return sum(1 for e in events if self.add(e, relay))

    def get(self, event_id: str) -> NostrEvent | None:
        return self._events.get(event_id)

    def query(self, *filters: Filter) -> list[NostrEvent]:
        """Read events in insertion order matching any filter."""
        if not filters:
            return list(self._events.values())
        return [
            e for e in self._events.values()
            if any(f.matches(e) for f in filters)
        ]

    def get_replaceable(
        self, kind: int, pubkey: str, identifier: str = ""
    ) -> NostrEvent | None:
        return self._replaceable.get(_replaceable_key(kind, pubkey, identifier))

    def seen_on(self, event_id: str) -> set[str]:
        """Relays an event was received from."""
        return set(self._seen_on.get(event_id, ()))

    def on_insert(self, listener: InsertListener) -> None:
        self._listeners.append(listener)

    @property
    def rejected_count(self) -> int:
        return self._rejected

    # -- Testing helpers ---------------------------------------------------

    def clear(self) -> None:
        """Remove all events.  Testing only."""
        self._events.clear()
        self._replaceable.clear()
        self._seen_on.clear()

    def __len__(self) -> int:
        return len(self._events)

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._events


def _newer(candidate: NostrEvent, current: NostrEvent) -> bool:
    """NIP-01: newest created_at wins; ties go to the lowest id."""
    if candidate.created_at != current.created_at:
        return candidate.created_at > current.created_at
    return candidate.id < current.id
