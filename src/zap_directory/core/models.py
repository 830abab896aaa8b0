"""Core domain models used across the service.

These are the canonical "truth models" for the system: the Nostr wire
event, the read-only records derived from it (payments, profiles), and
the publishable directory document.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .enums import CycleOutcome, TriggerSource
from .ids import sha256_hex


# ---------------------------------------------------------------------------
# Wire events
# ---------------------------------------------------------------------------

class NostrEvent(BaseModel):
    """A signed Nostr event exactly as it travels over a relay."""

    model_config = ConfigDict(frozen=True)

    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: list[list[str]] = Field(default_factory=list)
    content: str = ""
    sig: str = ""

    def tag_value(self, name: str) -> str | None:
        """Value of the first tag called *name*, or None."""
        for tag in self.tags:
            if len(tag) >= 2 and tag[0] == name:
                return tag[1]
        return None

    def tag_values(self, name: str) -> list[str]:
        return [t[1] for t in self.tags if len(t) >= 2 and t[0] == name]

    @property
    def identifier(self) -> str:
        """The ``d`` tag (addressable events); empty string if missing."""
        return self.tag_value("d") or ""

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump()


class UnsignedEvent(BaseModel):
    """Event template handed to a signer."""

    kind: int
    content: str = ""
    tags: list[list[str]] = Field(default_factory=list)
    created_at: int


class Filter(BaseModel):
    """NIP-01 subscription filter.

    Tag filters are keyed by tag name without the ``#`` prefix, e.g.
    ``Filter(kinds=[9735], tags={"p": [pubkey]})``.
    """

    ids: list[str] | None = None
    authors: list[str] | None = None
    kinds: list[int] | None = None
    tags: dict[str, list[str]] = Field(default_factory=dict)
    since: int | None = None
    until: int | None = None
    limit: int | None = None

    def to_wire(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for key in ("ids", "authors", "kinds", "since", "until", "limit"):
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        for name, values in self.tags.items():
            out[f"#{name}"] = list(values)
        return out

    def matches(self, event: NostrEvent) -> bool:
        if self.ids is not None and event.id not in self.ids:
            return False
        if self.authors is not None and event.pubkey not in self.authors:
            return False
        if self.kinds is not None and event.kind not in self.kinds:
            return False
        if self.since is not None and event.created_at < self.since:
            return False
        if self.until is not None and event.created_at > self.until:
            return False
        for name, values in self.tags.items():
            wanted = set(values)
            if not any(v in wanted for v in event.tag_values(name)):
                return False
        return True


# ---------------------------------------------------------------------------
# Derived records (read-only views over ingested events)
# ---------------------------------------------------------------------------

class PaymentEvent(BaseModel):
    """A parsed zap receipt.

    ``amount_msats`` is None when the invoice carries no amount; that is
    "absent", not an error.
    """

    model_config = ConfigDict(frozen=True)

    event_id: str
    sender: str
    amount_msats: int | None = None
    timestamp: int


class ProfileRecord(BaseModel):
    """Kind-0 metadata, reduced to what naming needs."""

    model_config = ConfigDict(frozen=True)

    pubkey: str
    name: str | None = None
    display_name: str | None = None


class Mailboxes(BaseModel):
    """NIP-65 relay list."""

    inboxes: list[str] = Field(default_factory=list)
    outboxes: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Directory document
# ---------------------------------------------------------------------------

class Directory(BaseModel):
    """The NIP-05 ``nostr.json`` document.

    ``names`` keeps insertion order; the serialized bytes (and so the
    content hash) depend on it.
    """

    names: dict[str, str] = Field(default_factory=dict)
    relays: dict[str, list[str]] = Field(default_factory=dict)

    def to_document(self) -> bytes:
        """Canonical bytes: 2-space indented JSON, UTF-8."""
        body = json.dumps(self.model_dump(), indent=2, ensure_ascii=False)
        return body.encode("utf-8")

    def content_hash(self) -> str:
        return sha256_hex(self.to_document())


# ---------------------------------------------------------------------------
# Storage / publish results
# ---------------------------------------------------------------------------

class BlobDescriptor(BaseModel):
    """BUD-02 blob descriptor returned by a server after upload."""

    url: str = ""
    sha256: str
    size: int = 0
    type: str | None = None
    uploaded: int | None = None


class ServerResult(BaseModel):
    """Outcome of one upload/delete call against one server."""

    server: str
    ok: bool
    error: str = ""


class PublishAck(BaseModel):
    """Relay ``OK`` response to a published event."""

    relay: str
    accepted: bool
    message: str = ""


class PublishResult(BaseModel):
    """What the publish orchestrator did in one cycle."""

    outcome: CycleOutcome
    hash: str
    previous_hash: str | None = None
    servers: list[str] = Field(default_factory=list)
    deleted: list[ServerResult] = Field(default_factory=list)
    uploaded: list[ServerResult] = Field(default_factory=list)
    announced: list[PublishAck] = Field(default_factory=list)
    pointer_id: str | None = None

    @property
    def failed_servers(self) -> list[str]:
        return [r.server for r in self.uploaded if not r.ok]


class CycleReport(BaseModel):
    """One observe → aggregate → diff → publish cycle."""

    cycle_id: str
    trigger: TriggerSource
    outcome: CycleOutcome
    started_at: datetime
    duration_seconds: float = 0.0
    zap_count: int = 0
    dropped_zaps: int = 0
    name_count: int = 0
    hash: str | None = None
    previous_hash: str | None = None
    deleted: list[ServerResult] = Field(default_factory=list)
    uploaded: list[ServerResult] = Field(default_factory=list)
    announced_relays: list[str] = Field(default_factory=list)
    error: str = ""


class AgentHealthReport(BaseModel):
    healthy: bool
    message: str = ""
    last_work_at: datetime | None = None
    error_count: int = 0
    details: dict[str, Any] = Field(default_factory=dict)
