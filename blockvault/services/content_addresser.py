from typing import BinaryIO

from eth_hash.auto import keccak
from hexbytes import HexBytes
from web3 import Web3

# Read size used when hashing staged files
READ_CHUNK_SIZE = 1024 * 1024


def content_hash(data: bytes) -> bytes:
    """Returns the 32-byte keccak-256 digest of ``data``."""
    return bytes(Web3.keccak(primitive=bytes(data)))


def hash_stream(stream: BinaryIO) -> bytes:
    """Hashes ``stream`` incrementally, one read chunk at a time.

    Read errors propagate unchanged.
    """
    preimage = keccak.new(b"")
    for chunk in iter(lambda: stream.read(READ_CHUNK_SIZE), b""):
        preimage.update(chunk)
    return preimage.digest()


def hash_file(path: str) -> bytes:
    with open(path, "rb") as f:
        return hash_stream(f)


def to_hex(digest: bytes) -> str:
    """Renders a digest the way the contract and the API expose it (0x-prefixed)."""
    return HexBytes(digest).to_0x_hex()
