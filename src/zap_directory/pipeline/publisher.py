"""Publish orchestrator: diff the directory against the announced one,
then delete-old / upload-new / announce-new.

Per cycle::

    resolve servers + mailboxes
    hash document ── equal to pointer "x"? ──> UNCHANGED (no writes)
          │
    delete old blob on each server (best effort)
    upload new blob to each server (>= 1 must succeed)
    sign + publish pointer to outboxes (>= 1 OK must come back)
    add pointer to the local store

There is no retry and no transaction across upload and announce: a
cycle that fails after uploading leaves the new blob on the servers and
the old pointer in place.  The next trigger starts over.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from zap_directory.core.clock import IClock
from zap_directory.core.enums import NIP05_PATH, CycleOutcome, EventKind
from zap_directory.core.errors import PublishError, RelayError, ZapDirectoryError
from zap_directory.core.interfaces import IBlobStorage, IRelayPool, IReplaceableLoader, ISigner
from zap_directory.core.models import (
    Directory,
    Mailboxes,
    NostrEvent,
    PublishResult,
    ServerResult,
    UnsignedEvent,
)
from zap_directory.infrastructure.event_store import IEventStore

logger = logging.getLogger(__name__)


class PublishOrchestrator:
    """Publishes a directory document for the site identity.

    Parameters
    ----------
    fallback_relays:
        Where the pointer goes when the site has no NIP-65 outboxes.
    """

    def __init__(
        self,
        signer: ISigner,
        pool: IRelayPool,
        loader: IReplaceableLoader,
        storage: IBlobStorage,
        store: IEventStore,
        clock: IClock,
        *,
        fallback_relays: Sequence[str] = (),
    ) -> None:
        self._signer = signer
        self._pool = pool
        self._loader = loader
        self._storage = storage
        self._store = store
        self._clock = clock
        self._fallback_relays = list(fallback_relays) or pool.default_relays

    @property
    def site_pubkey(self) -> str:
        return self._signer.pubkey

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def current_pointer(self) -> NostrEvent | None:
        """The announced pointer, or None if absent or unreachable."""
        try:
            return await self._loader.replaceable(
                EventKind.NSITE, self.site_pubkey, NIP05_PATH
            )
        except RelayError as exc:
            logger.warning("Pointer lookup failed, assuming none: %s", exc)
            return None

    async def _servers(self) -> list[str]:
        try:
            return await self._loader.blossom_servers(self.site_pubkey)
        except RelayError as exc:
            logger.warning("Blossom server list lookup failed: %s", exc)
            return []

    async def _mailboxes(self) -> Mailboxes:
        try:
            return await self._loader.mailboxes(self.site_pubkey)
        except RelayError as exc:
            logger.warning("Mailbox lookup failed, using configured relays: %s", exc)
            return Mailboxes()

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    async def publish(self, directory: Directory) -> PublishResult:
        """Run one diff/publish pass.  Raises PublishError on terminal failure."""
        servers = await self._servers()
        mailboxes = await self._mailboxes()

        blob = directory.to_document()
        new_hash = directory.content_hash()

        pointer = await self.current_pointer()
        previous_hash = pointer.tag_value("x") if pointer is not None else None

        result = PublishResult(
            outcome=CycleOutcome.UNCHANGED,
            hash=new_hash,
            previous_hash=previous_hash,
            servers=servers,
        )
        if previous_hash == new_hash:
            logger.info("Directory unchanged (%s), nothing to publish", new_hash[:12])
            return result

        if not servers:
            raise PublishError("No Blossom servers for site identity", result)

        if previous_hash:
            logger.info("Deleting stale blob %s from %d servers", previous_hash[:12], len(servers))
            try:
                delete_auth = await self._storage.create_delete_auth(previous_hash)
                result.deleted = await self._storage.delete_from_servers(
                    servers, previous_hash, delete_auth
                )
            except ZapDirectoryError as exc:
                logger.warning("Skipping delete of %s: %s", previous_hash[:12], exc)
                result.deleted = [
                    ServerResult(server=s, ok=False, error=str(exc)) for s in servers
                ]

        logger.info("Uploading %s (%d bytes) to %d servers", new_hash[:12], len(blob), len(servers))
        upload_auth = await self._storage.create_upload_auth(blob)
        result.uploaded = await self._storage.multi_server_upload(servers, blob, upload_auth)
        if not any(r.ok for r in result.uploaded):
            raise PublishError("Upload failed on every server", result)

        signed = await self._signer.sign_event(self._pointer_template(new_hash, pointer))
        relays = mailboxes.outboxes or self._fallback_relays
        acks = await self._pool.publish(signed, relays)
        result.announced = list(acks.values())
        accepted = [a.relay for a in result.announced if a.accepted]
        if not accepted:
            raise PublishError(f"No relay accepted pointer {signed.id[:8]}", result)

        self._store.add(signed)
        result.pointer_id = signed.id
        result.outcome = CycleOutcome.PUBLISHED
        logger.info(
            "Published %s (pointer %s) to %d/%d relays",
            new_hash[:12], signed.id[:8], len(accepted), len(relays),
        )
        return result

    def _pointer_template(self, sha256: str, previous: NostrEvent | None) -> UnsignedEvent:
        created_at = self._clock.unix_now()
        if previous is not None and created_at <= previous.created_at:
            # replaceable events need a strictly newer timestamp to win
            created_at = previous.created_at + 1
        return UnsignedEvent(
            kind=EventKind.NSITE,
            content="",
            created_at=created_at,
            tags=[["d", NIP05_PATH], ["x", sha256]],
        )
