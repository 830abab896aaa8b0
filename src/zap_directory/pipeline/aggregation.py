"""Aggregation engine: window zaps → per-sender totals → directory names.

Each call recomputes from the store; nothing carries over between
cycles.  Output is deterministic for a given store state: senders are
processed in hex-pubkey order, so the same zaps always yield the same
names in the same order (and so the same document hash).

Naming rules, applied while walking the sorted senders:

1. Senders whose total is below ``min_zap_amount`` sats are skipped.
2. The candidate name is the sender's profile ``name``, else the first
   8 hex chars of the pubkey.
3. If the candidate is taken, the later sender gets the 8-char prefix;
   if that is taken too, the full pubkey.
4. The root name ``_`` is reserved for the site identity.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from functools import reduce

from zap_directory.core.clock import IClock
from zap_directory.core.enums import NAME_PREFIX_LENGTH, ROOT_NAME, EventKind
from zap_directory.core.errors import ZapParseError
from zap_directory.core.models import Directory, Filter, PaymentEvent, ProfileRecord
from zap_directory.infrastructure.event_store import IEventStore
from zap_directory.nostr.lists import profile_from_event
from zap_directory.nostr.zaps import extract_payment

logger = logging.getLogger(__name__)

TotalsMap = dict[str, int]


@dataclass(frozen=True)
class AggregationResult:
    directory: Directory
    zap_count: int
    dropped: int
    totals: TotalsMap = field(default_factory=dict)


def compute_totals(payments: Iterable[PaymentEvent]) -> TotalsMap:
    """Sum msats per sender.  Absent or zero amounts contribute nothing."""
    totals: TotalsMap = {}
    for payment in payments:
        if not payment.amount_msats:
            continue
        totals[payment.sender] = totals.get(payment.sender, 0) + payment.amount_msats
    return totals


def candidate_name(pubkey: str, profile: ProfileRecord | None) -> str:
    if profile is not None and profile.name:
        return profile.name
    return pubkey[:NAME_PREFIX_LENGTH]


def _claim(names: dict[str, str], pubkey: str, wanted: str) -> dict[str, str]:
    """Reduction step: give *pubkey* the first free name."""
    for name in (wanted, pubkey[:NAME_PREFIX_LENGTH], pubkey):
        if name not in names:
            names[name] = pubkey
            break
    return names


def resolve_names(
    totals: Mapping[str, int],
    profile_of: Callable[[str], ProfileRecord | None],
    *,
    min_zap_amount: int,
    site_pubkey: str,
) -> dict[str, str]:
    """Ordered reduction of sorted senders into the NIP-05 names map."""
    eligible = [
        pubkey for pubkey in sorted(totals)
        if totals[pubkey] / 1000 >= min_zap_amount
    ]
    names = reduce(
        lambda acc, pubkey: _claim(acc, pubkey, candidate_name(pubkey, profile_of(pubkey))),
        eligible,
        {},
    )
    names[ROOT_NAME] = site_pubkey
    return names


class AggregationEngine:
    """Builds the directory from the zaps currently in the store."""

    def __init__(
        self,
        store: IEventStore,
        clock: IClock,
        *,
        zap_pubkey: str,
        site_pubkey: str,
        min_zap_amount: int = 1000,
        window_days: int = 30,
    ) -> None:
        self._store = store
        self._clock = clock
        self._zap_pubkey = zap_pubkey
        self._site_pubkey = site_pubkey
        self._min_zap_amount = min_zap_amount
        self._window = timedelta(days=window_days)

    def window_filter(self) -> Filter:
        since = int((self._clock.now() - self._window).timestamp())
        return Filter(
            kinds=[EventKind.ZAP_RECEIPT],
            tags={"p": [self._zap_pubkey]},
            since=since,
        )

    def _profile(self, pubkey: str) -> ProfileRecord | None:
        event = self._store.get_replaceable(EventKind.PROFILE, pubkey)
        return profile_from_event(event) if event is not None else None

    def aggregate(self) -> AggregationResult | None:
        """Recompute the directory.  None when the window holds no zaps."""
        zaps = self._store.query(self.window_filter())
        if not zaps:
            return None

        payments: list[PaymentEvent] = []
        failures: list[ZapParseError] = []
        for zap in zaps:
            try:
                payments.append(extract_payment(zap))
            except ZapParseError as exc:
                failures.append(exc)

        if failures:
            logger.warning(
                "Dropped %d unparseable zaps (first: %s)", len(failures), failures[0]
            )

        totals = compute_totals(payments)
        names = resolve_names(
            totals,
            self._profile,
            min_zap_amount=self._min_zap_amount,
            site_pubkey=self._site_pubkey,
        )
        logger.info(
            "Aggregated %d zaps from %d senders into %d names",
            len(zaps), len(totals), len(names) - 1,
        )
        return AggregationResult(
            directory=Directory(names=names),
            zap_count=len(zaps),
            dropped=len(failures),
            totals=totals,
        )
