"""Canonical ID and hash helpers.

ID Categories
-------------
1. Internal IDs: UUID v4 strings (cycle_id, subscription ids)
2. Event IDs: NIP-01 sha256 of the canonical event serialization
3. Content hashes: sha256 hex of raw blob bytes (Blossom addressing)

Timestamp Rule
--------------
Nostr timestamps are integer unix seconds.  In-process timestamps are
``datetime`` with ``tzinfo=timezone.utc``, never naive.
"""

from __future__ import annotations

import hashlib
import json
import re
import uuid
from typing import Any

_HEX64 = re.compile(r"^[0-9a-f]{64}$")


def new_id() -> str:
    """Generate a new UUID v4 string.  Use for all internal IDs."""
    return str(uuid.uuid4())


def short_id() -> str:
    """A 12-char random hex id, short enough for relay subscription ids."""
    return uuid.uuid4().hex[:12]


def sha256_hex(data: bytes) -> str:
    """Content address of a blob."""
    return hashlib.sha256(data).hexdigest()


def is_hex_key(value: str) -> bool:
    """True for a 32-byte lowercase hex string (pubkey, secret, id)."""
    return bool(_HEX64.match(value))


def serialize_event(
    pubkey: str,
    created_at: int,
    kind: int,
    tags: list[list[str]],
    content: str,
) -> str:
    """NIP-01 canonical serialization used for the event id."""
    payload: list[Any] = [0, pubkey, created_at, kind, tags, content]
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def compute_event_id(
    pubkey: str,
    created_at: int,
    kind: int,
    tags: list[list[str]],
    content: str,
) -> str:
    """Event id: sha256 of the canonical serialization."""
    raw = serialize_event(pubkey, created_at, kind, tags, content)
    return sha256_hex(raw.encode("utf-8"))
