import asyncio
import json
import logging
from contextlib import contextmanager
from typing import Any, Dict, List

import aiohttp
from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from eth_account import Account
from hexbytes import HexBytes
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import (
    BadFunctionCallOutput,
    ContractLogicError,
    ProviderConnectionError,
    TimeExhausted,
    TransactionNotFound,
    Web3RPCError,
)

from ..errors import (
    ConfirmationTimeout,
    EventDecodingError,
    LedgerRejected,
    LedgerUnavailable,
    RecordNotFound,
)
from ..models.records import FileRecord, RawLogEntry, TransactionStatus, UploadEvent
from .submission_queue import SubmissionQueue

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Contract entry points
UPLOAD_FUNCTION = "uploadFile"
UPLOAD_EVENT = "FileUploaded"

# Failures that mean the node could not be reached or did not answer
_TRANSPORT_ERRORS = (aiohttp.ClientError, ProviderConnectionError, asyncio.TimeoutError, OSError)


def load_contract_abi(abi_path: str) -> List[Dict[str, Any]]:
    """Loads the ABI from a compiled artifact (``{"abi": [...]}``) or a bare ABI list."""
    with open(abi_path, "r") as f:
        artifact = json.load(f)
    abi = artifact.get("abi") if isinstance(artifact, dict) else artifact
    if not isinstance(abi, list):
        raise ValueError(f"'abi' key not found in artifact file: {abi_path}")
    logger.info(f"Successfully loaded contract ABI from: {abi_path}")
    return abi


def find_event_abi(abi: List[Dict[str, Any]], name: str) -> Dict[str, Any]:
    for entry in abi:
        if entry.get("type") == "event" and entry.get("name") == name:
            return entry
    raise ValueError(f"Event {name} not found in contract ABI")


def event_signature(event_abi: Dict[str, Any]) -> str:
    types = ",".join(inp["type"] for inp in event_abi["inputs"])
    return f"{event_abi['name']}({types})"


def event_topic(event_abi: Dict[str, Any]) -> bytes:
    return bytes(Web3.keccak(text=event_signature(event_abi)))


def decode_event_args(event_abi: Dict[str, Any], entry: RawLogEntry) -> Dict[str, Any]:
    """Decodes a raw log entry against an event ABI.

    Indexed static values come from the topics; dynamic indexed values are
    only available as their keccak hash and are returned as raw bytes.
    """
    indexed = [inp for inp in event_abi["inputs"] if inp.get("indexed")]
    plain = [inp for inp in event_abi["inputs"] if not inp.get("indexed")]

    if not entry.topics or bytes(entry.topics[0]) != event_topic(event_abi):
        raise EventDecodingError(f"Log in tx {entry.transaction_hash} is not a {event_abi['name']} event")
    if len(entry.topics) != len(indexed) + 1:
        raise EventDecodingError(
            f"Log in tx {entry.transaction_hash} has {len(entry.topics) - 1} indexed topics, expected {len(indexed)}"
        )

    args: Dict[str, Any] = {}
    try:
        for inp, topic in zip(indexed, entry.topics[1:]):
            if inp["type"] in ("string", "bytes") or inp["type"].endswith("]"):
                args[inp["name"]] = bytes(topic)
            else:
                args[inp["name"]] = abi_decode([inp["type"]], bytes(topic))[0]
        values = abi_decode([inp["type"] for inp in plain], bytes(entry.data))
    except (DecodingError, ValueError) as e:
        # non-UTF-8 string fields surface as UnicodeDecodeError, a ValueError
        raise EventDecodingError(f"Malformed {event_abi['name']} log in tx {entry.transaction_hash}: {e}") from e

    for inp, value in zip(plain, values):
        args[inp["name"]] = value
    return args


def decode_upload_event(event_abi: Dict[str, Any], entry: RawLogEntry) -> UploadEvent:
    args = decode_event_args(event_abi, entry)
    try:
        return UploadEvent(
            content_hash=bytes(args["fileHash"]),
            uploader=Web3.to_checksum_address(args["uploader"]),
            cid=args["ipfsCID"],
            signature=bytes(args["signature"]),
            timestamp=int(args["timestamp"]),
            tx_hash=entry.transaction_hash,
            block_number=entry.block_number,
            log_index=entry.log_index,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise EventDecodingError(f"Unexpected {UPLOAD_EVENT} arguments in tx {entry.transaction_hash}: {e}") from e


def _revert_reason(error: ContractLogicError) -> str:
    return getattr(error, "message", None) or str(error)


class LedgerClient:
    """Typed wrapper around the BlockVault contract.

    State-changing calls are serialized per signing identity through a
    SubmissionQueue and block until the transaction receipt is available.
    Read calls are plain request/response.
    """

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        abi: List[Dict[str, Any]],
        private_key: str | None = None,
        confirmation_timeout: float = 120,
        request_timeout: float = 30,
        submission_queue: SubmissionQueue | None = None,
        w3: AsyncWeb3 | None = None,
    ):
        if w3 is None:
            provider = AsyncHTTPProvider(
                rpc_url,
                request_kwargs={"timeout": aiohttp.ClientTimeout(total=request_timeout)},
            )
            w3 = AsyncWeb3(provider)
        self.w3 = w3
        self.rpc_url = rpc_url
        self.confirmation_timeout = confirmation_timeout
        self.submission_queue = submission_queue or SubmissionQueue()
        self.contract = self.w3.eth.contract(address=Web3.to_checksum_address(contract_address), abi=abi)
        self.upload_event_abi = find_event_abi(abi, UPLOAD_EVENT)
        self.upload_event_topic = event_topic(self.upload_event_abi)

        self.account = Account.from_key(private_key) if private_key else None
        if self.account:
            self.w3.eth.default_account = self.account.address
            logger.info(f"Relay wallet loaded. Address: {self.account.address}")
        else:
            logger.warning("No signing key configured. Ledger writes will be refused.")

    # --- Lifecycle ---

    async def connect(self) -> bool:
        connected = await self.w3.is_connected()
        if connected:
            logger.info(f"Connected to ledger RPC URL: {self.rpc_url}")
        else:
            logger.error(f"Failed to connect to ledger RPC URL: {self.rpc_url}")
        return connected

    async def close(self) -> None:
        await self.w3.provider.disconnect()
        logger.info("Ledger provider disconnected.")

    # --- Error translation ---

    @contextmanager
    def _ledger_call(self, action: str):
        try:
            yield
        except ContractLogicError as e:
            logger.warning(f"{action} reverted: {_revert_reason(e)}")
            raise LedgerRejected(f"{action} reverted: {_revert_reason(e)}") from e
        except _TRANSPORT_ERRORS as e:
            logger.error(f"{action} failed, ledger node unreachable: {type(e).__name__} - {e}")
            raise LedgerUnavailable(f"{action} failed: ledger node unreachable ({e})") from e
        except BadFunctionCallOutput as e:
            logger.error(f"{action} returned no data. Check CONTRACT_ADDRESS: {e}")
            raise LedgerUnavailable(f"{action} failed: contract not reachable at configured address") from e
        except Web3RPCError as e:
            logger.warning(f"{action} rejected by node: {e}")
            raise LedgerRejected(f"{action} rejected by node: {e}") from e

    # --- State-changing calls ---

    async def register_upload(self, content_hash: bytes, cid: str, signature: bytes) -> str:
        return await self._transact(UPLOAD_FUNCTION, content_hash, cid, signature)

    async def grant_access(self, content_hash: bytes, grantee: str) -> str:
        return await self._transact("grantAccess", content_hash, Web3.to_checksum_address(grantee))

    async def revoke_access(self, content_hash: bytes, grantee: str) -> str:
        return await self._transact("revokeAccess", content_hash, Web3.to_checksum_address(grantee))

    async def _transact(self, function_name: str, *args) -> str:
        if not self.account:
            raise LedgerUnavailable("Signing key not configured; cannot submit ledger transactions")
        function = getattr(self.contract.functions, function_name)(*args)

        async with self.submission_queue.slot(self.account.address):
            with self._ledger_call(function_name):
                nonce = await self.w3.eth.get_transaction_count(self.account.address, "pending")
                logger.info(f"Using nonce {nonce} for {function_name} from {self.account.address}")
                # Gas estimation runs the call first, so reverts surface before broadcast
                tx_data = await function.build_transaction({
                    "from": self.account.address,
                    "nonce": nonce,
                })
                signed_tx = self.account.sign_transaction(tx_data)
                tx_hash = HexBytes(await self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)).to_0x_hex()
            logger.info(f"{function_name} transaction sent! Hash: {tx_hash}")

            receipt = await self._wait_for_receipt(function_name, tx_hash)

        if receipt["status"] != 1:
            logger.error(f"{function_name} transaction {tx_hash} reverted. Receipt: {receipt}")
            raise LedgerRejected(f"{function_name} transaction {tx_hash} reverted")
        logger.info(f"{function_name} transaction {tx_hash} confirmed in block {receipt.get('blockNumber')}")
        return tx_hash

    async def _wait_for_receipt(self, function_name: str, tx_hash: str):
        logger.info(f"Waiting for receipt of {tx_hash}...")
        try:
            return await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.confirmation_timeout)
        except TimeExhausted as e:
            logger.error(f"{function_name} transaction {tx_hash} not confirmed within {self.confirmation_timeout}s")
            raise ConfirmationTimeout(
                f"{function_name} transaction {tx_hash} was not confirmed within {self.confirmation_timeout}s",
                tx_hash=tx_hash,
            ) from e
        except _TRANSPORT_ERRORS as e:
            logger.error(f"Lost ledger connection while waiting for {tx_hash}: {e}")
            raise ConfirmationTimeout(
                f"Lost ledger connection while waiting for {function_name} transaction {tx_hash}",
                tx_hash=tx_hash,
            ) from e

    # --- Read calls ---

    async def get_record(self, content_hash: bytes) -> FileRecord:
        hash_hex = HexBytes(content_hash).to_0x_hex()
        with self._ledger_call("getFileRecord"):
            try:
                uploader, cid, signature, timestamp = await self.contract.functions.getFileRecord(content_hash).call()
            except ContractLogicError as e:
                # The contract reverts when the caller may not view the record
                logger.info(f"getFileRecord for {hash_hex} reverted ({_revert_reason(e)}); reporting not found")
                raise RecordNotFound(f"No visible record for {hash_hex}", reason="denied") from e

        if not uploader or uploader == ZERO_ADDRESS:
            logger.info(f"No record found for {hash_hex} (uploader is zero address).")
            raise RecordNotFound(f"No record for {hash_hex}", reason="absent")

        return FileRecord(
            content_hash=bytes(content_hash),
            cid=cid,
            signature=bytes(signature),
            uploader=Web3.to_checksum_address(uploader),
            timestamp=int(timestamp),
        )

    async def can_access(self, content_hash: bytes, address: str) -> bool:
        with self._ledger_call("canAccess"):
            return bool(
                await self.contract.functions.canAccess(content_hash, Web3.to_checksum_address(address)).call()
            )

    async def block_number(self) -> int:
        with self._ledger_call("eth_blockNumber"):
            return int(await self.w3.eth.block_number)

    async def query_logs(self, topic: bytes, from_block: int, to_block: int) -> List[RawLogEntry]:
        with self._ledger_call("eth_getLogs"):
            logs = await self.w3.eth.get_logs({
                "address": self.contract.address,
                "fromBlock": from_block,
                "toBlock": to_block,
                "topics": [HexBytes(topic).to_0x_hex()],
            })
        return [RawLogEntry.from_web3(log) for log in logs]

    async def transaction_status(self, tx_hash: str) -> TransactionStatus:
        with self._ledger_call("eth_getTransactionReceipt"):
            try:
                receipt = await self.w3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                return TransactionStatus.UNKNOWN
        if receipt is None:
            return TransactionStatus.UNKNOWN
        return TransactionStatus.CONFIRMED if receipt["status"] == 1 else TransactionStatus.REVERTED

    def decode_upload_event(self, entry: RawLogEntry) -> UploadEvent:
        return decode_upload_event(self.upload_event_abi, entry)
