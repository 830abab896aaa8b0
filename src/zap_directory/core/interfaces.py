"""Protocol interfaces for the service's network collaborators.

All module boundaries are defined here as Protocol classes.
Implementations (real relays / Blossom servers, or test fakes) can be
swapped without changing the pipeline.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from typing import Protocol, runtime_checkable

from .enums import AgentType
from .models import (
    AgentHealthReport,
    BlobDescriptor,
    Filter,
    Mailboxes,
    NostrEvent,
    PublishAck,
    ServerResult,
    UnsignedEvent,
)


# ---------------------------------------------------------------------------
# Agents
# ---------------------------------------------------------------------------

@runtime_checkable
class IAgent(Protocol):
    """Long-running component with lifecycle management."""

    @property
    def agent_id(self) -> str: ...

    @property
    def agent_type(self) -> AgentType: ...

    @property
    def is_running(self) -> bool: ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    def health_check(self) -> AgentHealthReport: ...


# ---------------------------------------------------------------------------
# Signing
# ---------------------------------------------------------------------------

@runtime_checkable
class ISigner(Protocol):
    """Signs event templates with the site identity's key."""

    @property
    def pubkey(self) -> str: ...

    async def sign_event(self, template: UnsignedEvent) -> NostrEvent: ...


# ---------------------------------------------------------------------------
# Relays
# ---------------------------------------------------------------------------

@runtime_checkable
class IRelayPool(Protocol):
    """NIP-01 client over a set of relays."""

    @property
    def default_relays(self) -> list[str]: ...

    async def request(
        self,
        filters: Sequence[Filter],
        relays: Sequence[str] | None = None,
        timeout: float | None = None,
    ) -> list[NostrEvent]:
        """One-shot REQ; collects events until EOSE (or timeout) per relay."""
        ...

    def subscribe(
        self,
        filters: Sequence[Filter],
        relays: Sequence[str] | None = None,
    ) -> AsyncIterator[tuple[str, NostrEvent]]:
        """Long-lived subscription yielding ``(relay, event)``; reconnects."""
        ...

    async def publish(
        self,
        event: NostrEvent,
        relays: Sequence[str] | None = None,
    ) -> dict[str, PublishAck]: ...


@runtime_checkable
class IReplaceableLoader(Protocol):
    """Resolves replaceable events: store first, then the network."""

    async def replaceable(
        self, kind: int, pubkey: str, identifier: str | None = None
    ) -> NostrEvent | None: ...

    async def load(
        self,
        kind: int,
        pubkey: str,
        identifier: str | None = None,
        relays: Sequence[str] | None = None,
    ) -> NostrEvent | None: ...

    async def mailboxes(self, pubkey: str) -> Mailboxes: ...

    async def blossom_servers(self, pubkey: str) -> list[str]: ...


# ---------------------------------------------------------------------------
# Blob storage
# ---------------------------------------------------------------------------

@runtime_checkable
class IBlobStorage(Protocol):
    """Content-addressed blob storage (Blossom)."""

    async def create_upload_auth(self, blob: bytes) -> NostrEvent: ...

    async def create_delete_auth(self, sha256: str) -> NostrEvent: ...

    async def upload_blob(
        self, server: str, blob: bytes, auth: NostrEvent
    ) -> BlobDescriptor: ...

    async def delete_blob(
        self, server: str, sha256: str, auth: NostrEvent
    ) -> None: ...

    async def multi_server_upload(
        self, servers: Sequence[str], blob: bytes, auth: NostrEvent
    ) -> list[ServerResult]: ...

    async def delete_from_servers(
        self, servers: Sequence[str], sha256: str, auth: NostrEvent
    ) -> list[ServerResult]: ...
