"""Shared fixtures for the zap-directory test suite."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Sequence
from datetime import datetime, timezone

import pytest

from zap_directory.core.clock import SimClock
from zap_directory.core.config import ResolvedKeys, Settings
from zap_directory.core.context import AppContext
from zap_directory.core.enums import NIP05_PATH, EventKind
from zap_directory.core.errors import DeleteError, RelayError, UploadError
from zap_directory.core.ids import compute_event_id, sha256_hex
from zap_directory.core.models import (
    BlobDescriptor,
    Filter,
    NostrEvent,
    PublishAck,
    ServerResult,
    UnsignedEvent,
)
from zap_directory.infrastructure.event_store import InMemoryEventStore
from zap_directory.relay.loaders import ReplaceableLoader

# secp256k1 secret key 1 and its x-only pubkey (the generator point)
SITE_SECRET = "0" * 63 + "1"
SITE_PUBKEY = "79be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"
ZAP_PUBKEY = "a1" * 32
LNURL_PUBKEY = "f0" * 32
NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)
NOW_TS = int(NOW.timestamp())

RELAYS = ["wss://relay.one", "wss://relay.two"]
SERVERS = ["https://blossom.one", "https://blossom.two", "https://blossom.three"]


# ---------------------------------------------------------------------------
# Event factories
# ---------------------------------------------------------------------------

def build_event(
    kind: int,
    pubkey: str,
    tags: Sequence[Sequence[str]] = (),
    content: str = "",
    created_at: int = NOW_TS,
) -> NostrEvent:
    """An event with a correct id and a dummy signature."""
    tag_list = [list(t) for t in tags]
    return NostrEvent(
        id=compute_event_id(pubkey, created_at, kind, tag_list, content),
        pubkey=pubkey,
        created_at=created_at,
        kind=kind,
        tags=tag_list,
        content=content,
        sig="0" * 128,
    )


def build_zap(
    sender: str,
    sats: int,
    *,
    recipient: str = ZAP_PUBKEY,
    created_at: int = NOW_TS - 60,
    sender_tag: bool = True,
    invoice: str | None = None,
) -> NostrEvent:
    """A kind-9735 receipt for *sats* from *sender* to *recipient*."""
    request = build_event(
        EventKind.ZAP_REQUEST,
        sender,
        tags=[["p", recipient], ["amount", str(sats * 1000)]],
        created_at=created_at - 1,
    )
    tags = [
        ["p", recipient],
        # "n" = 100 msats per unit
        ["bolt11", invoice if invoice is not None else f"lnbc{sats * 10}n1pdummy"],
        ["description", request.model_dump_json()],
    ]
    if sender_tag:
        tags.append(["P", sender])
    return build_event(EventKind.ZAP_RECEIPT, LNURL_PUBKEY, tags, created_at=created_at)


def build_profile(pubkey: str, name: str | None, created_at: int = NOW_TS - 3600) -> NostrEvent:
    content = json.dumps({"name": name} if name is not None else {"about": "hi"})
    return build_event(EventKind.PROFILE, pubkey, content=content, created_at=created_at)


def build_pointer(sha256: str, pubkey: str = SITE_PUBKEY, created_at: int = NOW_TS - 600) -> NostrEvent:
    return build_event(
        EventKind.NSITE, pubkey, tags=[["d", NIP05_PATH], ["x", sha256]], created_at=created_at
    )


def build_server_list(servers: Sequence[str], pubkey: str = SITE_PUBKEY) -> NostrEvent:
    return build_event(
        EventKind.BLOSSOM_SERVER_LIST, pubkey,
        tags=[["server", s] for s in servers], created_at=NOW_TS - 7200,
    )


def build_relay_list(entries: Sequence[Sequence[str]], pubkey: str = SITE_PUBKEY) -> NostrEvent:
    return build_event(
        EventKind.RELAY_LIST, pubkey,
        tags=[["r", *e] for e in entries], created_at=NOW_TS - 7200,
    )


def pubkey_for(n: int) -> str:
    """Deterministic distinct hex pubkeys; ordering follows *n*."""
    return f"{n:064x}"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeSigner:
    """Computes real ids; signatures are zeros."""

    def __init__(self, pubkey: str = SITE_PUBKEY) -> None:
        self._pubkey = pubkey
        self.signed: list[NostrEvent] = []

    @property
    def pubkey(self) -> str:
        return self._pubkey

    async def sign_event(self, template: UnsignedEvent) -> NostrEvent:
        event = build_event(
            template.kind, self._pubkey, template.tags, template.content, template.created_at
        )
        self.signed.append(event)
        return event


class FakeRelayPool:
    """In-memory relay network.

    ``events`` answers ``request()``; ``feed`` drives ``subscribe()``;
    ``accepting`` decides the ``OK`` each relay returns on publish.
    """

    def __init__(self, default_relays: Sequence[str] = RELAYS) -> None:
        self._default_relays = list(default_relays)
        self.events: list[NostrEvent] = []
        self.feed: asyncio.Queue[tuple[str, NostrEvent]] = asyncio.Queue()
        self.fail_requests = False
        self.accepting: dict[str, bool] = {}
        self.requests: list[tuple[list[Filter], list[str]]] = []
        self.published: list[tuple[NostrEvent, list[str]]] = []

    @property
    def default_relays(self) -> list[str]:
        return list(self._default_relays)

    async def request(self, filters, relays=None, timeout=None) -> list[NostrEvent]:
        targets = list(relays) if relays else self.default_relays
        self.requests.append((list(filters), targets))
        if self.fail_requests:
            raise RelayError("all relays down")
        return [e for e in self.events if any(f.matches(e) for f in filters)]

    async def subscribe(self, filters, relays=None) -> AsyncIterator[tuple[str, NostrEvent]]:
        while True:
            relay, event = await self.feed.get()
            if any(f.matches(event) for f in filters):
                yield relay, event

    async def publish(self, event, relays=None) -> dict[str, PublishAck]:
        targets = list(relays) if relays else self.default_relays
        self.published.append((event, targets))
        return {
            r: PublishAck(relay=r, accepted=self.accepting.get(r, True))
            for r in targets
        }


class FakeBlobStorage:
    """Blossom fake keeping blobs per server."""

    def __init__(self, signer: FakeSigner | None = None) -> None:
        self._signer = signer or FakeSigner()
        self.blobs: dict[str, dict[str, bytes]] = {}
        self.fail_upload: set[str] = set()
        self.fail_delete: set[str] = set()
        self.delete_auth_error: Exception | None = None
        self.uploads: list[tuple[str, str]] = []
        self.deletes: list[tuple[str, str]] = []
        self.delay = 0.0
        self.active = 0
        self.max_active = 0

    async def create_upload_auth(self, blob: bytes) -> NostrEvent:
        return await self._signer.sign_event(UnsignedEvent(
            kind=EventKind.BLOSSOM_AUTH, created_at=NOW_TS,
            tags=[["t", "upload"], ["x", sha256_hex(blob)]],
        ))

    async def create_delete_auth(self, sha256: str) -> NostrEvent:
        if self.delete_auth_error is not None:
            raise self.delete_auth_error
        return await self._signer.sign_event(UnsignedEvent(
            kind=EventKind.BLOSSOM_AUTH, created_at=NOW_TS,
            tags=[["t", "delete"], ["x", sha256]],
        ))

    async def upload_blob(self, server, blob, auth) -> BlobDescriptor:
        sha = sha256_hex(blob)
        self.uploads.append((server, sha))
        if server in self.fail_upload:
            raise UploadError(server, "quota exceeded", status=413)
        self.blobs.setdefault(server, {})[sha] = blob
        return BlobDescriptor(url=f"{server}/{sha}", sha256=sha, size=len(blob))

    async def delete_blob(self, server, sha256, auth) -> None:
        self.deletes.append((server, sha256))
        if server in self.fail_delete:
            raise DeleteError(server, "forbidden", status=403)
        self.blobs.get(server, {}).pop(sha256, None)

    async def multi_server_upload(self, servers, blob, auth) -> list[ServerResult]:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            results = []
            for server in servers:
                try:
                    await self.upload_blob(server, blob, auth)
                    results.append(ServerResult(server=server, ok=True))
                except UploadError as exc:
                    results.append(ServerResult(server=server, ok=False, error=exc.reason))
            return results
        finally:
            self.active -= 1

    async def delete_from_servers(self, servers, sha256, auth) -> list[ServerResult]:
        results = []
        for server in servers:
            try:
                await self.delete_blob(server, sha256, auth)
                results.append(ServerResult(server=server, ok=True))
            except DeleteError as exc:
                results.append(ServerResult(server=server, ok=False, error=exc.reason))
        return results


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def sim_clock() -> SimClock:
    return SimClock(start=NOW)


@pytest.fixture
def store() -> InMemoryEventStore:
    return InMemoryEventStore()


@pytest.fixture
def signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def pool() -> FakeRelayPool:
    return FakeRelayPool()


@pytest.fixture
def storage(signer) -> FakeBlobStorage:
    return FakeBlobStorage(signer)


@pytest.fixture
def loader(pool, store) -> ReplaceableLoader:
    return ReplaceableLoader(pool, store, lookup_relays=["wss://lookup.example"])


@pytest.fixture
def settings() -> Settings:
    return Settings(
        nsite_key=SITE_SECRET,
        zap_key=ZAP_PUBKEY,
        relays=RELAYS,
        min_zap_amount=1000,
    )


@pytest.fixture
def app_context(settings, sim_clock, signer, store, pool, loader, storage) -> AppContext:
    """Context wired with fakes instead of network adapters."""
    return AppContext(
        settings=settings,
        keys=ResolvedKeys(
            secret_hex=SITE_SECRET, site_pubkey=SITE_PUBKEY, zap_pubkey=ZAP_PUBKEY
        ),
        clock=sim_clock,
        signer=signer,
        store=store,
        pool=pool,
        loader=loader,
        storage=storage,
    )
