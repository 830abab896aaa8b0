"""NIP-57 zap receipt parsing.

A zap receipt (kind 9735) is published by the recipient's lightning
service.  The sender is not the receipt's author: it is the ``P`` tag
when present, otherwise the pubkey of the zap request (kind 9734)
embedded as JSON in the ``description`` tag.  The paid amount comes from
the ``bolt11`` invoice.

Only the invoice's human-readable part is decoded; the amount lives
there (``lnbc2500u1...`` = 2500 micro-BTC).  Checksums and tagged fields
are not needed here.
"""

from __future__ import annotations

import json
import re

from pydantic import ValidationError

from zap_directory.core.enums import EventKind
from zap_directory.core.errors import ZapParseError
from zap_directory.core.ids import is_hex_key
from zap_directory.core.models import NostrEvent, PaymentEvent

# msats per unit of each bolt11 multiplier; "p" is handled separately
_MSATS_PER_BTC = 100_000_000_000
_MULTIPLIER_MSATS: dict[str, int] = {
    "": _MSATS_PER_BTC,
    "m": _MSATS_PER_BTC // 1_000,
    "u": _MSATS_PER_BTC // 1_000_000,
    "n": _MSATS_PER_BTC // 1_000_000_000,
}

_HRP_RE = re.compile(r"^ln([a-z]+?)(?:(\d+)([munp]?))?$")


def decode_bolt11_amount(invoice: str) -> int | None:
    """Amount in msats encoded in a bolt11 invoice, or None if absent.

    Raises ValueError for strings that are not bolt11 invoices.
    """
    invoice = invoice.strip().lower()
    if invoice.startswith("lightning:"):
        invoice = invoice[len("lightning:"):]
    sep = invoice.rfind("1")
    if sep <= 2:
        raise ValueError("missing bech32 separator")

    match = _HRP_RE.match(invoice[:sep])
    if match is None:
        raise ValueError(f"bad invoice prefix {invoice[:sep]!r}")
    digits, multiplier = match.group(2), match.group(3)
    if digits is None:
        return None

    value = int(digits)
    if multiplier == "p":
        # pico-BTC: 1p = 0.1 msat, must land on a whole msat
        if value % 10:
            raise ValueError("sub-millisatoshi amount")
        return value // 10
    return value * _MULTIPLIER_MSATS[multiplier or ""]


def get_zap_request(zap: NostrEvent) -> NostrEvent:
    """The kind-9734 request embedded in the receipt's description."""
    description = zap.tag_value("description")
    if not description:
        raise ZapParseError(zap.id, "missing description tag")
    try:
        request = NostrEvent.model_validate(json.loads(description))
    except (json.JSONDecodeError, ValidationError, TypeError) as exc:
        raise ZapParseError(zap.id, f"bad zap request: {exc}") from exc
    if request.kind != EventKind.ZAP_REQUEST:
        raise ZapParseError(zap.id, f"zap request has kind {request.kind}")
    return request


def get_zap_sender(zap: NostrEvent) -> str:
    sender = zap.tag_value("P")
    if not sender:
        sender = get_zap_request(zap).pubkey
    sender = sender.lower()
    if not is_hex_key(sender):
        raise ZapParseError(zap.id, "sender is not a hex pubkey")
    return sender


def get_zap_amount(zap: NostrEvent) -> int | None:
    """Paid amount in msats; None when the invoice has no amount."""
    invoice = zap.tag_value("bolt11")
    if not invoice:
        raise ZapParseError(zap.id, "missing bolt11 tag")
    try:
        return decode_bolt11_amount(invoice)
    except ValueError as exc:
        raise ZapParseError(zap.id, str(exc)) from exc


def extract_payment(zap: NostrEvent) -> PaymentEvent:
    """Parse a zap receipt.  Raises ZapParseError if malformed."""
    if zap.kind != EventKind.ZAP_RECEIPT:
        raise ZapParseError(zap.id, f"not a zap receipt (kind {zap.kind})")
    return PaymentEvent(
        event_id=zap.id,
        sender=get_zap_sender(zap),
        amount_msats=get_zap_amount(zap),
        timestamp=zap.created_at,
    )
