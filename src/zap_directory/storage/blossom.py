"""Blossom (BUD-01/02) blob storage client.

Blobs are addressed by their sha256.  Every write is authorized by a
signed kind-24242 event sent base64-encoded in the ``Authorization``
header::

    Authorization: Nostr <base64(json(event))>

with tags ``["t", "upload"|"delete"]``, ``["x", <sha256>]`` and
``["expiration", <unix>]``.  Servers explain refusals in ``X-Reason``.

Usage::

    async with BlossomClient(signer, clock) as client:
        auth = await client.create_upload_auth(blob)
        results = await client.multi_server_upload(servers, blob, auth)
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from collections.abc import Sequence

import httpx
from pydantic import ValidationError

from zap_directory.core.clock import IClock
from zap_directory.core.enums import EventKind, StorageOp
from zap_directory.core.errors import DeleteError, StorageError, UploadError
from zap_directory.core.ids import sha256_hex
from zap_directory.core.interfaces import ISigner
from zap_directory.core.models import BlobDescriptor, NostrEvent, ServerResult, UnsignedEvent
from zap_directory.observability import metrics

logger = logging.getLogger(__name__)

_CONTENT_TYPE = "application/json"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def encode_auth(auth: NostrEvent) -> str:
    """``Authorization`` header value for a signed auth event."""
    raw = json.dumps(auth.to_wire(), separators=(",", ":"), ensure_ascii=False)
    return "Nostr " + base64.b64encode(raw.encode("utf-8")).decode("ascii")


def _reason(response: httpx.Response) -> str:
    reason = response.headers.get("X-Reason")
    if reason:
        return reason
    return f"HTTP {response.status_code}"


def _server_url(server: str, path: str) -> str:
    return server.rstrip("/") + "/" + path.lstrip("/")


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class BlossomClient:
    """Upload and delete blobs on Blossom servers.

    Parameters
    ----------
    signer:
        Signs the kind-24242 authorization events.
    clock:
        Source of ``created_at`` / ``expiration`` timestamps.
    timeout:
        HTTP request timeout in seconds.
    auth_ttl:
        Seconds an authorization event stays valid.
    """

    def __init__(
        self,
        signer: ISigner,
        clock: IClock,
        *,
        timeout: float = 30.0,
        auth_ttl: int = 3600,
    ) -> None:
        self._signer = signer
        self._clock = clock
        self._timeout = timeout
        self._auth_ttl = auth_ttl
        self._client: httpx.AsyncClient | None = None

    # -- Lifecycle -----------------------------------------------------------

    async def open(self) -> None:
        """Create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> BlossomClient:
        await self.open()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Client not opened. Use 'async with' or call open().")
        return self._client

    # -- Authorization -------------------------------------------------------

    async def _create_auth(self, op: StorageOp, sha256: str, content: str) -> NostrEvent:
        now = self._clock.unix_now()
        template = UnsignedEvent(
            kind=EventKind.BLOSSOM_AUTH,
            content=content,
            created_at=now,
            tags=[
                ["t", op.value],
                ["x", sha256],
                ["expiration", str(now + self._auth_ttl)],
            ],
        )
        return await self._signer.sign_event(template)

    async def create_upload_auth(self, blob: bytes) -> NostrEvent:
        return await self._create_auth(StorageOp.UPLOAD, sha256_hex(blob), "Upload Blob")

    async def create_delete_auth(self, sha256: str) -> NostrEvent:
        return await self._create_auth(StorageOp.DELETE, sha256, "Delete Blob")

    # -- Single server -------------------------------------------------------

    async def upload_blob(
        self, server: str, blob: bytes, auth: NostrEvent
    ) -> BlobDescriptor:
        """``PUT /upload``.  Raises UploadError on transport or HTTP failure."""
        try:
            response = await self._http().put(
                _server_url(server, "upload"),
                content=blob,
                headers={
                    "Authorization": encode_auth(auth),
                    "Content-Type": _CONTENT_TYPE,
                },
            )
        except httpx.HTTPError as exc:
            raise UploadError(server, str(exc)) from exc

        if response.status_code >= 400:
            raise UploadError(server, _reason(response), status=response.status_code)

        expected = sha256_hex(blob)
        try:
            descriptor = BlobDescriptor.model_validate(response.json())
        except (ValueError, ValidationError):
            # Some servers answer 2xx without a descriptor body
            return BlobDescriptor(sha256=expected, size=len(blob), type=_CONTENT_TYPE)
        if descriptor.sha256 != expected:
            raise UploadError(
                server, f"server stored {descriptor.sha256[:12]}, expected {expected[:12]}"
            )
        return descriptor

    async def delete_blob(self, server: str, sha256: str, auth: NostrEvent) -> None:
        """``DELETE /<sha256>``.  A 404 counts as already deleted."""
        try:
            response = await self._http().delete(
                _server_url(server, sha256),
                headers={"Authorization": encode_auth(auth)},
            )
        except httpx.HTTPError as exc:
            raise DeleteError(server, str(exc)) from exc

        if response.status_code == 404:
            logger.debug("Blob %s already gone from %s", sha256[:12], server)
            return
        if response.status_code >= 400:
            raise DeleteError(server, _reason(response), status=response.status_code)

    # -- Fan-out -------------------------------------------------------------

    async def multi_server_upload(
        self, servers: Sequence[str], blob: bytes, auth: NostrEvent
    ) -> list[ServerResult]:
        """Upload to every server independently; never raises per server."""
        return await self._fan_out(
            StorageOp.UPLOAD, servers,
            lambda server: self.upload_blob(server, blob, auth),
        )

    async def delete_from_servers(
        self, servers: Sequence[str], sha256: str, auth: NostrEvent
    ) -> list[ServerResult]:
        return await self._fan_out(
            StorageOp.DELETE, servers,
            lambda server: self.delete_blob(server, sha256, auth),
        )

    async def _fan_out(self, op: StorageOp, servers: Sequence[str], call) -> list[ServerResult]:
        outcomes = await asyncio.gather(
            *(call(server) for server in servers), return_exceptions=True
        )
        results: list[ServerResult] = []
        for server, outcome in zip(servers, outcomes):
            if isinstance(outcome, StorageError):
                logger.warning("%s failed on %s: %s", op.value, server, outcome.reason)
                results.append(ServerResult(server=server, ok=False, error=outcome.reason))
            elif isinstance(outcome, Exception):
                logger.warning("%s failed on %s: %r", op.value, server, outcome)
                results.append(ServerResult(
                    server=server, ok=False, error=f"{type(outcome).__name__}: {outcome}"
                ))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results.append(ServerResult(server=server, ok=True))
            metrics.record_storage_op(op.value, results[-1].ok)
        return results
