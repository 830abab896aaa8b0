"""Event signing and verification.

``KeySigner`` holds the site's secret key and signs event templates with
BIP-340 Schnorr signatures via nostr-sdk.  The signer is async so a
remote signer can stand in behind the same ``ISigner`` protocol.
"""

from __future__ import annotations

import json
import logging

from nostr_sdk import Event, EventBuilder, Keys, Kind, Tag, Timestamp

from zap_directory.core.errors import SigningError
from zap_directory.core.ids import compute_event_id
from zap_directory.core.models import NostrEvent, UnsignedEvent

logger = logging.getLogger(__name__)


class KeySigner:
    """Local-key signer."""

    def __init__(self, secret_hex: str) -> None:
        try:
            self._keys = Keys.parse(secret_hex)
        except Exception as exc:
            raise SigningError("Invalid secret key") from exc
        self._pubkey = self._keys.public_key().to_hex()

    @property
    def pubkey(self) -> str:
        return self._pubkey

    async def sign_event(self, template: UnsignedEvent) -> NostrEvent:
        try:
            builder = (
                EventBuilder(Kind(int(template.kind)), template.content)
                .tags([Tag.parse(tag) for tag in template.tags])
                .custom_created_at(Timestamp.from_secs(template.created_at))
            )
            signed = builder.sign_with_keys(self._keys)
        except Exception as exc:
            raise SigningError(
                f"Failed to sign kind {template.kind} event"
            ) from exc
        return NostrEvent.model_validate_json(signed.as_json())


def verify_event(event: NostrEvent) -> bool:
    """Check the id hash and the Schnorr signature."""
    expected = compute_event_id(
        event.pubkey, event.created_at, event.kind, event.tags, event.content
    )
    if expected != event.id:
        return False
    try:
        return bool(Event.from_json(json.dumps(event.to_wire())).verify())
    except Exception:
        logger.debug("Signature check raised for %s", event.id[:8], exc_info=True)
        return False
