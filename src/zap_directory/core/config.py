"""Configuration management.

Loads from TOML config files + environment variables.
Uses pydantic-settings for validation and env var overriding.

Environment names match the deployment's existing variables
(``NSITE_KEY``, ``ZAP_KEY``, ``RELAYS``, ``LOOKUP_RELAYS``,
``MIN_ZAP_AMOUNT``); nested sections use ``__`` as delimiter, e.g.
``SCHEDULE__DEBOUNCE_SECONDS=5``.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode

from .errors import ConfigError, MissingKeyError


# ---------------------------------------------------------------------------
# Sub-configs
# ---------------------------------------------------------------------------

class ScheduleConfig(BaseModel):
    update_interval_seconds: float = 600.0  # Fixed timer (10 minutes)
    debounce_seconds: float = 10.0  # Quiet period after a new zap
    window_days: int = 30  # Rolling aggregation window
    run_on_start: bool = False  # Emit one trigger immediately on start


class NetworkConfig(BaseModel):
    request_timeout_seconds: float = 10.0  # One-shot REQ until EOSE
    publish_timeout_seconds: float = 10.0  # Wait for relay OK
    verify_events: bool = True  # Check id + signature on ingest
    profile_concurrency: int = 8  # Parallel kind-0 lookups


class StorageConfig(BaseModel):
    timeout_seconds: float = 30.0
    auth_ttl_seconds: int = 3600  # Blossom auth "expiration" tag


class ObservabilityConfig(BaseModel):
    log_level: str = "INFO"
    log_format: str = "console"  # "json" or "console"
    metrics_port: int = 0  # 0 disables the Prometheus endpoint


@dataclass(frozen=True)
class ResolvedKeys:
    """Key material normalized to hex, resolved once at startup."""

    secret_hex: str
    site_pubkey: str
    zap_pubkey: str


# ---------------------------------------------------------------------------
# Top-level settings
# ---------------------------------------------------------------------------

class Settings(BaseSettings):
    """Top-level application settings.

    Loaded from TOML config files, overridden by environment variables.
    """

    nsite_key: SecretStr = SecretStr("")  # hex or nsec; required to run
    zap_key: str = ""  # hex, npub or nprofile; defaults to the site pubkey
    min_zap_amount: int = 1000  # sats; senders below this are excluded

    relays: Annotated[list[str], NoDecode] = Field(default_factory=list)
    lookup_relays: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["wss://purplepag.es"]
    )

    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    model_config = {"env_prefix": "", "env_nested_delimiter": "__"}

    @field_validator("relays", "lookup_relays", mode="before")
    @classmethod
    def _split_relays(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [r.strip() for r in value.strip().split(",") if r.strip()]
        return value

    @field_validator("min_zap_amount")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("min_zap_amount must be >= 0")
        return value

    def require_keys(self) -> ResolvedKeys:
        """Resolve key material.  Fatal at startup if missing or invalid."""
        from zap_directory.nostr.keys import (
            normalize_to_pubkey,
            normalize_to_secret_key,
            pubkey_from_secret,
        )

        raw = self.nsite_key.get_secret_value().strip()
        if not raw:
            raise MissingKeyError("Missing NSITE_KEY")

        secret_hex = normalize_to_secret_key(raw)
        site_pubkey = pubkey_from_secret(secret_hex)
        zap_pubkey = (
            normalize_to_pubkey(self.zap_key.strip())
            if self.zap_key.strip()
            else site_pubkey
        )
        return ResolvedKeys(
            secret_hex=secret_hex,
            site_pubkey=site_pubkey,
            zap_pubkey=zap_pubkey,
        )

    def validate_relays(self) -> None:
        """At least one relay is needed to hear zaps at all."""
        if not self.relays:
            raise ConfigError(
                "No relays configured. Set RELAYS to a comma-separated list."
            )
        for url in [*self.relays, *self.lookup_relays]:
            if not url.startswith(("ws://", "wss://")):
                raise ConfigError(f"Relay URL must be ws:// or wss://: {url}")


def load_settings(
    config_path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> Settings:
    """Load settings from TOML file + env vars.

    Args:
        config_path: Path to TOML config file (optional).
        overrides: Dict of overrides to apply on top.
    """
    data: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            import tomli

            with open(path, "rb") as f:
                data = tomli.load(f)

    if overrides:
        data.update(overrides)

    return Settings(**data)
