"""Custom exception hierarchy for the zap directory service."""


class ZapDirectoryError(Exception):
    """Base exception for all zap directory errors."""


# --- Configuration ---
class ConfigError(ZapDirectoryError):
    """Invalid or missing configuration."""


class MissingKeyError(ConfigError):
    """Required key material (e.g. NSITE_KEY) is not configured."""


# --- Nostr events ---
class NostrError(ZapDirectoryError):
    """Event encoding, decoding or signing error."""


class EventParseError(NostrError):
    """An event could not be parsed into the expected shape."""


class ZapParseError(EventParseError):
    """A zap receipt is malformed (missing request, bad invoice, ...)."""

    def __init__(self, event_id: str, reason: str):
        self.event_id = event_id
        self.reason = reason
        super().__init__(f"Bad zap {event_id[:8]}: {reason}")


class SigningError(NostrError):
    """The signer refused or failed to sign an event."""


# --- Relays ---
class RelayError(ZapDirectoryError):
    """Relay communication error."""


class RelayConnectionError(RelayError):
    """Could not connect to (or lost connection with) a relay."""

    def __init__(self, relay: str, reason: str):
        self.relay = relay
        self.reason = reason
        super().__init__(f"Relay {relay}: {reason}")


# --- Blob storage ---
class StorageError(ZapDirectoryError):
    """Blob storage server error."""

    def __init__(self, server: str, reason: str, status: int | None = None):
        self.server = server
        self.reason = reason
        self.status = status
        prefix = f"{server} [{status}]" if status is not None else server
        super().__init__(f"{prefix}: {reason}")


class UploadError(StorageError):
    """Blob upload failed on a server."""


class DeleteError(StorageError):
    """Blob delete failed on a server."""


# --- Pipeline ---
class PublishError(ZapDirectoryError):
    """A publish cycle could not complete.

    ``result`` carries the partial PublishResult (uploads attempted so
    far) when there is one.
    """

    def __init__(self, message: str, result: object | None = None):
        self.result = result
        super().__init__(message)
