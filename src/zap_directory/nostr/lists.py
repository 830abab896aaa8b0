"""Parsers for the replaceable list/metadata events the service reads."""

from __future__ import annotations

import json
import logging
from urllib.parse import urlsplit, urlunsplit

from zap_directory.core.enums import EventKind
from zap_directory.core.models import Mailboxes, NostrEvent, ProfileRecord

logger = logging.getLogger(__name__)


def normalize_url(url: str) -> str:
    """Lowercase scheme and host, drop a trailing slash on the root path."""
    parts = urlsplit(url.strip())
    path = parts.path if parts.path != "/" else ""
    return urlunsplit(
        (parts.scheme.lower(), parts.netloc.lower(), path, parts.query, "")
    )


def profile_from_event(event: NostrEvent) -> ProfileRecord | None:
    """Kind-0 content → ProfileRecord.  None if the content is not JSON."""
    if event.kind != EventKind.PROFILE:
        return None
    try:
        content = json.loads(event.content)
    except json.JSONDecodeError:
        logger.debug("Unparseable profile content for %s", event.pubkey[:8])
        return None
    if not isinstance(content, dict):
        return None

    def _text(key: str) -> str | None:
        value = content.get(key)
        if isinstance(value, str) and value.strip():
            return value
        return None

    return ProfileRecord(
        pubkey=event.pubkey,
        name=_text("name"),
        display_name=_text("display_name") or _text("displayName"),
    )


def get_mailboxes(event: NostrEvent | None) -> Mailboxes:
    """NIP-65: unmarked ``r`` tags are both read and write."""
    if event is None:
        return Mailboxes()
    inboxes: list[str] = []
    outboxes: list[str] = []
    for tag in event.tags:
        if len(tag) < 2 or tag[0] != "r":
            continue
        try:
            url = normalize_url(tag[1])
        except ValueError:
            logger.debug("Skipping malformed relay url %r", tag[1])
            continue
        if not url.startswith(("ws://", "wss://")):
            continue
        marker = tag[2] if len(tag) > 2 else ""
        if marker in ("", "read") and url not in inboxes:
            inboxes.append(url)
        if marker in ("", "write") and url not in outboxes:
            outboxes.append(url)
    return Mailboxes(inboxes=inboxes, outboxes=outboxes)


def get_blossom_servers(event: NostrEvent | None) -> list[str]:
    """BUD-03 ``server`` tags, in the user's order, de-duplicated."""
    if event is None:
        return []
    servers: list[str] = []
    for value in event.tag_values("server"):
        try:
            url = normalize_url(value)
        except ValueError:
            logger.debug("Skipping malformed server url %r", value)
            continue
        if not url.startswith(("http://", "https://")):
            continue
        if url not in servers:
            servers.append(url)
    return servers
