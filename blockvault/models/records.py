"""Domain records passed between the core services."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List

from hexbytes import HexBytes


@dataclass(frozen=True)
class FileRecord:
    """A custody record as stored by the contract. Identity is content_hash."""
    content_hash: bytes
    cid: str
    signature: bytes
    uploader: str
    timestamp: int


@dataclass(frozen=True)
class UploadEvent:
    """A decoded FileUploaded log entry."""
    content_hash: bytes
    uploader: str
    cid: str
    signature: bytes
    timestamp: int
    tx_hash: str
    block_number: int
    log_index: int = 0


@dataclass(frozen=True)
class RawLogEntry:
    """Provider-neutral shape of an eth_getLogs entry."""
    topics: List[bytes]
    data: bytes
    transaction_hash: str
    block_number: int
    log_index: int = 0

    @classmethod
    def from_web3(cls, log) -> "RawLogEntry":
        return cls(
            topics=[bytes(HexBytes(topic)) for topic in log["topics"]],
            data=bytes(HexBytes(log["data"])),
            transaction_hash=HexBytes(log["transactionHash"]).to_0x_hex(),
            block_number=int(log["blockNumber"]),
            log_index=int(log.get("logIndex") or 0),
        )


@dataclass(frozen=True)
class UploadResult:
    content_hash: bytes
    cid: str
    tx_hash: str


class TransactionStatus(str, Enum):
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    UNKNOWN = "unknown"


@dataclass
class PendingUpload:
    """An upload whose ledger confirmation timed out with an unknown outcome.

    The staged copy of the bytes is kept at ``staged_path`` until the upload
    is reconciled.
    """
    content_hash: bytes
    cid: str
    signature: bytes
    uploader: str
    file_name: str
    staged_path: str
    tx_hash: str
    error: str | None = None
    attempts: int = 1
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
