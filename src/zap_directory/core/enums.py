"""Enumerations and protocol constants used across the service."""

from enum import Enum, IntEnum


class EventKind(IntEnum):
    PROFILE = 0  # NIP-01 metadata
    ZAP_REQUEST = 9734  # NIP-57
    ZAP_RECEIPT = 9735  # NIP-57
    RELAY_LIST = 10002  # NIP-65 mailboxes
    BLOSSOM_SERVER_LIST = 10063  # BUD-03
    BLOSSOM_AUTH = 24242  # BUD-01 authorization
    NSITE = 34128  # static site file pointer


class TriggerSource(str, Enum):
    TIMER = "timer"
    PAYMENT = "payment"
    STARTUP = "startup"
    MANUAL = "manual"  # CLI "once"


class CycleOutcome(str, Enum):
    SKIPPED = "skipped"  # No zaps in the window
    UNCHANGED = "unchanged"  # Hash equals the announced one
    PUBLISHED = "published"
    FAILED = "failed"


class StorageOp(str, Enum):
    UPLOAD = "upload"
    DELETE = "delete"


class AgentStatus(str, Enum):
    CREATED = "created"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class AgentType(str, Enum):
    INGESTION = "ingestion"
    SCHEDULER = "scheduler"
    DIRECTORY = "directory"


# Reserved root name in the NIP-05 document
ROOT_NAME = "_"

# Path of the published document (the nsite "d" tag)
NIP05_PATH = "/.well-known/nostr.json"

# Length of the pubkey prefix used as a fallback name
NAME_PREFIX_LENGTH = 8


def is_replaceable(kind: int) -> bool:
    """NIP-01: one event per (kind, pubkey)."""
    return kind == 0 or kind == 3 or 10000 <= kind < 20000


def is_addressable(kind: int) -> bool:
    """NIP-01: one event per (kind, pubkey, d-tag)."""
    return 30000 <= kind < 40000
