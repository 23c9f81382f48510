"""Tests for LedgerClient: event decoding and error mapping over a mocked web3."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from eth_abi import encode as abi_encode
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound

from blockvault.errors import (
    ConfirmationTimeout,
    EventDecodingError,
    LedgerRejected,
    LedgerUnavailable,
    RecordNotFound,
)
from blockvault.models.records import TransactionStatus
from blockvault.services.ledger_service import (
    ZERO_ADDRESS,
    LedgerClient,
    decode_upload_event,
    event_signature,
)

from conftest import CONTRACT_ABI, UPLOAD_EVENT_ABI, UPLOADER, GRANTEE, make_upload_log

# Well-known development key; never holds funds
TEST_PRIVATE_KEY = "0x4f3edf983ac636a65a842ce7c78d9aa706d3b113bce9c46f30d7d21715b23b1d"
CONTRACT_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
CONTENT_HASH = b"\x42" * 32
TX_HASH = HexBytes(b"\x99" * 32)


@pytest.fixture
def w3():
    mock_w3 = MagicMock()
    contract = MagicMock()
    contract.address = CONTRACT_ADDRESS
    mock_w3.eth.contract.return_value = contract
    mock_w3.eth.get_transaction_count = AsyncMock(return_value=7)
    mock_w3.eth.send_raw_transaction = AsyncMock(return_value=TX_HASH)
    mock_w3.eth.wait_for_transaction_receipt = AsyncMock(return_value={"status": 1, "blockNumber": 12})
    mock_w3.eth.get_logs = AsyncMock(return_value=[])
    return mock_w3


@pytest.fixture
def client(w3):
    return LedgerClient(
        rpc_url="http://localhost:8545",
        contract_address=CONTRACT_ADDRESS,
        abi=CONTRACT_ABI,
        private_key=TEST_PRIVATE_KEY,
        confirmation_timeout=5,
        w3=w3,
    )


def _prepare_transaction(w3, function_name, build_side_effect=None):
    function = getattr(w3.eth.contract.return_value.functions, function_name).return_value
    function.build_transaction = AsyncMock(
        return_value={
            "to": CONTRACT_ADDRESS,
            "data": "0x",
            "value": 0,
            "gas": 100_000,
            "gasPrice": 1_000_000_000,
            "nonce": 7,
            "chainId": 31337,
        },
        side_effect=build_side_effect,
    )
    return function


def test_event_signature_matches_contract():
    assert event_signature(UPLOAD_EVENT_ABI) == "FileUploaded(bytes32,address,string,bytes,uint256)"


def test_decode_upload_event():
    entry = make_upload_log(CONTENT_HASH, timestamp=1_700_000_123, block_number=77, cid="bafyabc",
                            signature=b"\xaa\xbb", log_index=3)

    event = decode_upload_event(UPLOAD_EVENT_ABI, entry)

    assert event.content_hash == CONTENT_HASH
    assert event.uploader == UPLOADER
    assert event.cid == "bafyabc"
    assert event.signature == b"\xaa\xbb"
    assert event.timestamp == 1_700_000_123
    assert event.block_number == 77
    assert event.log_index == 3
    assert event.tx_hash == entry.transaction_hash


def test_decode_rejects_foreign_topic():
    entry = make_upload_log(CONTENT_HASH, timestamp=1, block_number=1)
    foreign = type(entry)(
        topics=[bytes(Web3.keccak(text="Other(uint256)"))] + entry.topics[1:],
        data=entry.data,
        transaction_hash=entry.transaction_hash,
        block_number=entry.block_number,
    )

    with pytest.raises(EventDecodingError):
        decode_upload_event(UPLOAD_EVENT_ABI, foreign)


def test_decode_rejects_missing_topics():
    entry = make_upload_log(CONTENT_HASH, timestamp=1, block_number=1)
    truncated = type(entry)(
        topics=entry.topics[:2],
        data=entry.data,
        transaction_hash=entry.transaction_hash,
        block_number=entry.block_number,
    )

    with pytest.raises(EventDecodingError):
        decode_upload_event(UPLOAD_EVENT_ABI, truncated)


def test_decode_rejects_non_utf8_cid():
    entry = make_upload_log(CONTENT_HASH, timestamp=1, block_number=1)
    garbled = type(entry)(
        topics=entry.topics,
        data=abi_encode(["bytes", "bytes", "uint256"], [b"\xff\xfe\xfd", b"\x01", 5]),
        transaction_hash=entry.transaction_hash,
        block_number=entry.block_number,
    )

    with pytest.raises(EventDecodingError):
        decode_upload_event(UPLOAD_EVENT_ABI, garbled)


def test_register_upload_confirmed(client, w3):
    _prepare_transaction(w3, "uploadFile")

    tx_hash = asyncio.run(client.register_upload(CONTENT_HASH, "bafyabc", b"\x01"))

    assert tx_hash == TX_HASH.to_0x_hex()
    w3.eth.contract.return_value.functions.uploadFile.assert_called_once_with(CONTENT_HASH, "bafyabc", b"\x01")
    w3.eth.get_transaction_count.assert_awaited_once_with(client.account.address, "pending")
    w3.eth.send_raw_transaction.assert_awaited_once()


def test_register_upload_revert_during_estimation(client, w3):
    _prepare_transaction(w3, "uploadFile", build_side_effect=ContractLogicError("execution reverted: File already exists"))

    with pytest.raises(LedgerRejected) as exc_info:
        asyncio.run(client.register_upload(CONTENT_HASH, "bafyabc", b"\x01"))

    assert "File already exists" in exc_info.value.message
    w3.eth.send_raw_transaction.assert_not_awaited()


def test_register_upload_reverted_receipt(client, w3):
    _prepare_transaction(w3, "uploadFile")
    w3.eth.wait_for_transaction_receipt.return_value = {"status": 0, "blockNumber": 12}

    with pytest.raises(LedgerRejected):
        asyncio.run(client.register_upload(CONTENT_HASH, "bafyabc", b"\x01"))


def test_register_upload_confirmation_timeout(client, w3):
    _prepare_transaction(w3, "uploadFile")
    w3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("timed out")

    with pytest.raises(ConfirmationTimeout) as exc_info:
        asyncio.run(client.register_upload(CONTENT_HASH, "bafyabc", b"\x01"))

    assert exc_info.value.tx_hash == TX_HASH.to_0x_hex()


def test_node_unreachable_maps_to_unavailable(client, w3):
    _prepare_transaction(w3, "uploadFile")
    w3.eth.get_transaction_count.side_effect = aiohttp.ClientConnectionError("connection refused")

    with pytest.raises(LedgerUnavailable) as exc_info:
        asyncio.run(client.register_upload(CONTENT_HASH, "bafyabc", b"\x01"))

    assert not isinstance(exc_info.value, ConfirmationTimeout)


def test_writes_refused_without_signing_key(w3):
    read_only = LedgerClient("http://localhost:8545", CONTRACT_ADDRESS, CONTRACT_ABI, private_key=None, w3=w3)

    with pytest.raises(LedgerUnavailable):
        asyncio.run(read_only.grant_access(CONTENT_HASH, GRANTEE))


def test_grant_access_checksums_grantee(client, w3):
    _prepare_transaction(w3, "grantAccess")

    asyncio.run(client.grant_access(CONTENT_HASH, GRANTEE.lower()))

    w3.eth.contract.return_value.functions.grantAccess.assert_called_once_with(CONTENT_HASH, GRANTEE)


def test_get_record_found(client, w3):
    call = w3.eth.contract.return_value.functions.getFileRecord.return_value
    call.call = AsyncMock(return_value=(UPLOADER.lower(), "bafyabc", b"\x01\x02", 1_700_000_000))

    record = asyncio.run(client.get_record(CONTENT_HASH))

    assert record.uploader == UPLOADER
    assert record.cid == "bafyabc"
    assert record.timestamp == 1_700_000_000


def test_get_record_absent(client, w3):
    call = w3.eth.contract.return_value.functions.getFileRecord.return_value
    call.call = AsyncMock(return_value=(ZERO_ADDRESS, "", b"", 0))

    with pytest.raises(RecordNotFound) as exc_info:
        asyncio.run(client.get_record(CONTENT_HASH))

    assert exc_info.value.reason == "absent"


def test_get_record_denied_is_not_found(client, w3):
    call = w3.eth.contract.return_value.functions.getFileRecord.return_value
    call.call = AsyncMock(side_effect=ContractLogicError("execution reverted: Access denied"))

    with pytest.raises(RecordNotFound) as exc_info:
        asyncio.run(client.get_record(CONTENT_HASH))

    assert exc_info.value.reason == "denied"


def test_can_access(client, w3):
    call = w3.eth.contract.return_value.functions.canAccess.return_value
    call.call = AsyncMock(return_value=True)

    assert asyncio.run(client.can_access(CONTENT_HASH, GRANTEE)) is True


def test_query_logs_converts_entries(client, w3):
    entry = make_upload_log(CONTENT_HASH, timestamp=5, block_number=40)
    w3.eth.get_logs.return_value = [{
        "topics": [HexBytes(topic) for topic in entry.topics],
        "data": HexBytes(entry.data),
        "transactionHash": HexBytes(entry.transaction_hash),
        "blockNumber": 40,
        "logIndex": 0,
    }]

    entries = asyncio.run(client.query_logs(client.upload_event_topic, 0, 499))

    assert entries == [entry]
    params = w3.eth.get_logs.await_args.args[0]
    assert params["fromBlock"] == 0
    assert params["toBlock"] == 499
    assert params["address"] == CONTRACT_ADDRESS


def test_query_logs_provider_failure(client, w3):
    w3.eth.get_logs.side_effect = aiohttp.ServerDisconnectedError()

    with pytest.raises(LedgerUnavailable):
        asyncio.run(client.query_logs(client.upload_event_topic, 0, 499))


def test_transaction_status(client, w3):
    w3.eth.get_transaction_receipt = AsyncMock(return_value={"status": 1})
    assert asyncio.run(client.transaction_status("0x01")) is TransactionStatus.CONFIRMED

    w3.eth.get_transaction_receipt = AsyncMock(return_value={"status": 0})
    assert asyncio.run(client.transaction_status("0x01")) is TransactionStatus.REVERTED

    w3.eth.get_transaction_receipt = AsyncMock(side_effect=TransactionNotFound("missing"))
    assert asyncio.run(client.transaction_status("0x01")) is TransactionStatus.UNKNOWN
