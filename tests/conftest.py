"""Shared pytest fixtures and in-memory fakes for the relay's collaborators."""

import hashlib
import os
from collections import Counter

import pytest
from eth_abi import encode as abi_encode
from fastapi.testclient import TestClient
from hexbytes import HexBytes
from web3 import Web3

from blockvault.dependencies import Services
from blockvault.errors import LedgerRejected, LedgerUnavailable, NetworkError, RecordNotFound
from blockvault.main import create_app
from blockvault.models.records import FileRecord, RawLogEntry, TransactionStatus
from blockvault.pending_store import PendingUploadStore
from blockvault.services.audit_trail import AuditTrailAssembler
from blockvault.services.ledger_service import (
    decode_upload_event,
    event_topic,
    find_event_abi,
    load_contract_abi,
)
from blockvault.services.upload_orchestrator import UploadOrchestrator

ABI_PATH = os.path.join(os.path.dirname(__file__), os.pardir, "blockvault", "contracts", "BlockVault.json")
CONTRACT_ABI = load_contract_abi(ABI_PATH)
UPLOAD_EVENT_ABI = find_event_abi(CONTRACT_ABI, "FileUploaded")

UPLOADER = "0x90F8bf6A479f320ead074411a4B0e7944Ea8c9C1"
GRANTEE = "0xFFcf8FDEE72ac11b5c542428B35EEF5769C409f0"
SIGNATURE_HEX = "0x" + "ab" * 65


def make_upload_log(
    content_hash: bytes,
    timestamp: int,
    block_number: int,
    cid: str = "bafytest",
    uploader: str = UPLOADER,
    signature: bytes = b"\x01\x02",
    log_index: int = 0,
) -> RawLogEntry:
    """Builds a raw FileUploaded log the way a node would return it."""
    return RawLogEntry(
        topics=[
            event_topic(UPLOAD_EVENT_ABI),
            content_hash,
            abi_encode(["address"], [uploader]),
        ],
        data=abi_encode(["string", "bytes", "uint256"], [cid, signature, timestamp]),
        transaction_hash="0x" + hashlib.sha256(f"{block_number}:{log_index}:{cid}".encode()).hexdigest(),
        block_number=block_number,
        log_index=log_index,
    )


class FakeLedger:
    """In-memory stand-in for LedgerClient with call counters."""

    def __init__(self, head: int = 10_000):
        self.head = head
        self.records = {}
        self.grants = set()
        self.denied = set()
        self.logs = []
        self.receipts = {}
        self.calls = Counter()
        self.queried_ranges = []
        self.fail_on_query = None
        self.register_error = None
        self.upload_event_abi = UPLOAD_EVENT_ABI
        self.upload_event_topic = event_topic(UPLOAD_EVENT_ABI)
        self._tx_counter = 0

    def _next_tx(self) -> str:
        self._tx_counter += 1
        return HexBytes(self._tx_counter.to_bytes(32, "big")).to_0x_hex()

    async def register_upload(self, content_hash, cid, signature):
        self.calls["register_upload"] += 1
        if self.register_error:
            raise self.register_error
        if content_hash in self.records:
            raise LedgerRejected("uploadFile reverted: duplicate")
        self.records[content_hash] = FileRecord(content_hash, cid, signature, UPLOADER, 1_700_000_000)
        tx_hash = self._next_tx()
        self.receipts[tx_hash] = TransactionStatus.CONFIRMED
        return tx_hash

    async def grant_access(self, content_hash, grantee):
        self.calls["grant_access"] += 1
        self.grants.add((content_hash, Web3.to_checksum_address(grantee)))
        return self._next_tx()

    async def revoke_access(self, content_hash, grantee):
        self.calls["revoke_access"] += 1
        self.grants.discard((content_hash, Web3.to_checksum_address(grantee)))
        return self._next_tx()

    async def get_record(self, content_hash):
        self.calls["get_record"] += 1
        if content_hash in self.denied:
            raise RecordNotFound("denied", reason="denied")
        if content_hash not in self.records:
            raise RecordNotFound("absent", reason="absent")
        return self.records[content_hash]

    async def can_access(self, content_hash, address):
        self.calls["can_access"] += 1
        return (content_hash, Web3.to_checksum_address(address)) in self.grants

    async def block_number(self):
        self.calls["block_number"] += 1
        return self.head

    async def query_logs(self, topic, from_block, to_block):
        self.calls["query_logs"] += 1
        self.queried_ranges.append((from_block, to_block))
        if self.fail_on_query is not None and len(self.queried_ranges) == self.fail_on_query:
            raise LedgerUnavailable(f"eth_getLogs failed for {from_block}-{to_block}")
        return [log for log in self.logs if from_block <= log.block_number <= to_block and log.topics[0] == topic]

    async def transaction_status(self, tx_hash):
        self.calls["transaction_status"] += 1
        return self.receipts.get(tx_hash, TransactionStatus.UNKNOWN)

    def decode_upload_event(self, entry):
        return decode_upload_event(self.upload_event_abi, entry)

    async def close(self):
        pass


class FakePinning:
    """In-memory pinning service; records the exact bytes it was handed."""

    def __init__(self):
        self.pinned = {}
        self.calls = 0
        self.error = None

    async def pin(self, file_path, name):
        self.calls += 1
        if self.error:
            raise self.error
        with open(file_path, "rb") as f:
            data = f.read()
        cid = "bafy" + hashlib.sha256(data).hexdigest()[:32]
        self.pinned[cid] = data
        return cid

    async def close(self):
        pass


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def pinning():
    return FakePinning()


@pytest.fixture
def staging_dir(tmp_path):
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def orchestrator(pinning, ledger, staging_dir):
    return UploadOrchestrator(pinning, ledger, str(staging_dir), PendingUploadStore())


@pytest.fixture
def services(ledger, pinning, orchestrator):
    return Services(
        ledger=ledger,
        pinning=pinning,
        orchestrator=orchestrator,
        audit_trail=AuditTrailAssembler(ledger, lookback_blocks=5000, chunk_size=500),
    )


@pytest.fixture
def client(services):
    with TestClient(create_app(services=services)) as test_client:
        yield test_client


@pytest.fixture
def network_error():
    return NetworkError("Pinning service unreachable: connection reset")
