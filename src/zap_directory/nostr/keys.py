"""Key normalization (hex / NIP-19 bech32) backed by nostr-sdk."""

from __future__ import annotations

from nostr_sdk import Keys, Nip19Profile, PublicKey

from zap_directory.core.errors import ConfigError
from zap_directory.core.ids import is_hex_key


def normalize_to_pubkey(value: str) -> str:
    """Hex pubkey from hex, ``npub`` or ``nprofile`` input."""
    value = value.strip()
    if is_hex_key(value.lower()):
        return value.lower()
    try:
        if value.startswith("nprofile"):
            return Nip19Profile.from_bech32(value).public_key().to_hex()
        return PublicKey.parse(value).to_hex()
    except Exception as exc:
        raise ConfigError(f"Cant find pubkey in {value[:12]}...") from exc


def normalize_to_secret_key(value: str) -> str:
    """Hex secret key from hex or ``nsec`` input."""
    value = value.strip()
    if is_hex_key(value.lower()):
        return value.lower()
    if not value.startswith("nsec"):
        raise ConfigError(f"Cant get secret key from {value[:8]}...")
    try:
        return Keys.parse(value).secret_key().to_hex()
    except Exception as exc:
        raise ConfigError("Invalid nsec secret key") from exc


def pubkey_from_secret(secret_hex: str) -> str:
    try:
        return Keys.parse(secret_hex).public_key().to_hex()
    except Exception as exc:
        raise ConfigError("Invalid secret key material") from exc


def npub_encode(pubkey: str) -> str:
    """Bech32 ``npub`` for log lines."""
    return PublicKey.parse(pubkey).to_bech32()
