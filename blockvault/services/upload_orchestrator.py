"""Upload pipeline: stage → hash → pin → commit on the ledger → confirm.

The content hash is always computed from the staged file that is handed to
the pinning service, so the on-chain hash describes exactly the pinned bytes.
The staged file is removed on every exit path except a confirmation failure
with an unknown outcome; that copy is kept together with a PendingUpload so
the commitment can be resubmitted without uploading the bytes again.
"""

import asyncio
import logging
import os
import tempfile

from hexbytes import HexBytes
from web3 import Web3

from ..errors import (
    BlockVaultError,
    ConfirmationTimeout,
    LedgerRejected,
    RecordNotFound,
    ValidationError,
)
from ..models.records import PendingUpload, TransactionStatus, UploadResult
from ..pending_store import PendingUploadStore
from .content_addresser import hash_file, to_hex
from .ledger_service import LedgerClient
from .pinning_service import PinningClient

logger = logging.getLogger(__name__)

DEFAULT_FILE_NAME = "upload"


def parse_signature(signature: bytes | str | None) -> bytes:
    if signature is None or (isinstance(signature, str) and not signature.strip()):
        raise ValidationError("Missing wallet address or signature")
    if isinstance(signature, str):
        try:
            signature = bytes(HexBytes(signature.strip()))
        except ValueError as e:
            raise ValidationError(f"Signature is not valid hex: {e}") from e
    if not signature:
        raise ValidationError("Missing wallet address or signature")
    return bytes(signature)


def parse_address(address: str | None, field: str = "walletAddress") -> str:
    if not address or not address.strip():
        raise ValidationError(f"Missing {field}")
    if not Web3.is_address(address.strip()):
        raise ValidationError(f"{field} is not a valid address: {address}")
    return Web3.to_checksum_address(address.strip())


def parse_content_hash(value: str | bytes | None, field: str = "fileHash") -> bytes:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"Missing {field}")
    try:
        digest = bytes(HexBytes(value.strip() if isinstance(value, str) else value))
    except ValueError as e:
        raise ValidationError(f"{field} is not valid hex: {e}") from e
    if len(digest) != 32:
        raise ValidationError(f"{field} must be 32 bytes, got {len(digest)}")
    return digest


class UploadOrchestrator:

    def __init__(
        self,
        pinning: PinningClient,
        ledger: LedgerClient,
        staging_dir: str,
        pending_store: PendingUploadStore | None = None,
    ):
        self.pinning = pinning
        self.ledger = ledger
        self.staging_dir = staging_dir
        self.pending_store = pending_store if pending_store is not None else PendingUploadStore()

    async def upload(
        self,
        file_bytes: bytes | None,
        file_name: str | None,
        uploader_address: str | None,
        signature: bytes | str | None,
    ) -> UploadResult:
        """Pins ``file_bytes`` and commits its hash, CID and signature on the ledger.

        Blocks until the ledger transaction is confirmed. Raises
        ValidationError before any side effect when an input is missing.
        """
        if not file_bytes:
            raise ValidationError("No file uploaded")
        if not uploader_address or not signature:
            raise ValidationError("Missing wallet address or signature")
        uploader = parse_address(uploader_address)
        signature_bytes = parse_signature(signature)
        name = os.path.basename(file_name or "") or DEFAULT_FILE_NAME

        # staging and hashing are blocking disk I/O
        staged_path = await asyncio.to_thread(self._stage, file_bytes)
        keep_staged = False
        try:
            content_hash = await asyncio.to_thread(hash_file, staged_path)
            hash_hex = to_hex(content_hash)
            logger.info(f"Upload {name} from {uploader}: content hash {hash_hex}")

            await self._ensure_not_registered(content_hash)

            # Fail fast: without a CID there is nothing to commit
            cid = await self.pinning.pin(staged_path, name)
            logger.info(f"Committing {hash_hex} (CID {cid}) to the ledger")

            try:
                tx_hash = await self.ledger.register_upload(content_hash, cid, signature_bytes)
            except ConfirmationTimeout as e:
                keep_staged = True
                self.pending_store.add(PendingUpload(
                    content_hash=content_hash,
                    cid=cid,
                    signature=signature_bytes,
                    uploader=uploader,
                    file_name=name,
                    staged_path=staged_path,
                    tx_hash=e.tx_hash,
                    error=e.message,
                ))
                logger.warning(f"Confirmation of {hash_hex} unknown; staged copy kept at {staged_path}")
                raise

            logger.info(f"Upload {hash_hex} committed in tx {tx_hash}")
            return UploadResult(content_hash=content_hash, cid=cid, tx_hash=tx_hash)
        finally:
            if not keep_staged:
                self._discard(staged_path)

    async def resubmit(self, content_hash: bytes) -> UploadResult:
        """Reconciles a pending upload without pinning its bytes again."""
        hash_hex = to_hex(content_hash)
        pending = self.pending_store.get(content_hash)
        if not pending:
            raise ValidationError(f"No pending upload for {hash_hex}")
        staged_ok = os.path.exists(pending.staged_path) and (
            await asyncio.to_thread(hash_file, pending.staged_path) == content_hash
        )
        if not staged_ok:
            raise ValidationError(f"Staged copy for {hash_hex} is missing or no longer matches its hash")

        status = await self.ledger.transaction_status(pending.tx_hash)
        if status is TransactionStatus.CONFIRMED:
            logger.info(f"Original transaction {pending.tx_hash} for {hash_hex} has since been confirmed")
            return self._finalize(pending, pending.tx_hash)
        if status is TransactionStatus.REVERTED:
            self._finalize(pending, pending.tx_hash)
            raise LedgerRejected(f"Transaction {pending.tx_hash} for {hash_hex} reverted")

        try:
            record = await self.ledger.get_record(content_hash)
        except RecordNotFound:
            record = None
        if record:
            if record.cid != pending.cid:
                logger.warning(f"Ledger record for {hash_hex} points to CID {record.cid}, pending upload pinned {pending.cid}")
            return self._finalize(pending, pending.tx_hash)

        logger.info(f"Resubmitting {hash_hex} (CID {pending.cid}), attempt {pending.attempts + 1}")
        try:
            tx_hash = await self.ledger.register_upload(content_hash, pending.cid, pending.signature)
        except ConfirmationTimeout as e:
            self.pending_store.update(content_hash, tx_hash=e.tx_hash, error=e.message, attempts=pending.attempts + 1)
            raise
        except BlockVaultError as e:
            self.pending_store.update(content_hash, error=e.message, attempts=pending.attempts + 1)
            raise
        return self._finalize(pending, tx_hash)

    async def _ensure_not_registered(self, content_hash: bytes) -> None:
        try:
            record = await self.ledger.get_record(content_hash)
        except RecordNotFound:
            return
        raise LedgerRejected(
            f"duplicate: {to_hex(content_hash)} is already registered by {record.uploader} (CID {record.cid})"
        )

    def _finalize(self, pending: PendingUpload, tx_hash: str) -> UploadResult:
        self.pending_store.remove(pending.content_hash)
        self._discard(pending.staged_path)
        return UploadResult(content_hash=pending.content_hash, cid=pending.cid, tx_hash=tx_hash)

    def _stage(self, file_bytes: bytes) -> str:
        os.makedirs(self.staging_dir, exist_ok=True)
        fd, path = tempfile.mkstemp(prefix="upload-", dir=self.staging_dir)
        with os.fdopen(fd, "wb") as f:
            f.write(file_bytes)
        logger.debug(f"Staged {len(file_bytes)} bytes at {path}")
        return path

    def _discard(self, path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        else:
            logger.debug(f"Removed staged file {path}")
