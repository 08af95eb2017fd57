"""
Hashing used across the World ID protocol.

    hash_to_field(b)   = uint256(keccak256(b)) >> 8
    encode_signal(v)   = hash_to_field(abi_encode_packed(v))
    external_nullifier = hash_to_field(abi_encode_packed(hash_to_field(app_id), action))

The one-byte shift keeps every output below the BN254 scalar field, so the
result can be used directly as a ZKP public input.
"""

from __future__ import annotations

import base64
from typing import Any

from Crypto.Hash import keccak

from .types import AppId


SNARK_SCALAR_FIELD = 21888242871839275222246405745257275088548364400416034343698204186575808495617

WORD_BYTES = 32
UINT256_MAX = (1 << 256) - 1


def keccak256(data: bytes) -> bytes:
    h = keccak.new(digest_bits=256)
    h.update(data)
    return h.digest()


def hash_to_field(data: bytes) -> int:
    return int.from_bytes(keccak256(data), "big") >> 8


def to_word(n: int) -> bytes:
    """
    Encode n as a 32-byte big-endian uint256.
    """
    if n < 0 or n > UINT256_MAX:
        raise ValueError(f"value does not fit in uint256: {n}")
    return n.to_bytes(WORD_BYTES, "big")


def abi_encode_packed(value: Any) -> bytes:
    """
    Solidity `abi.encodePacked` for the value shapes a signal can take:
    ints become uint256 words, str is UTF-8, bytes are raw, and tuples/lists
    are concatenated element-wise. None and () encode to nothing.
    """
    if value is None:
        return b""
    if isinstance(value, bool):
        return b"\x01" if value else b"\x00"
    if isinstance(value, int):
        return to_word(value)
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, (tuple, list)):
        return b"".join(abi_encode_packed(v) for v in value)
    raise TypeError(f"cannot ABI-pack value of type {type(value).__name__}")


def encode_signal(signal: Any) -> int:
    return hash_to_field(abi_encode_packed(signal))


def generate_external_nullifier(app_id: AppId, action: str) -> int:
    """
    The action hash: binds the action to the app so nullifiers from different
    apps never collide.
    """
    return hash_to_field(abi_encode_packed((hash_to_field(app_id.encode("utf-8")), action)))


def field_hex(n: int) -> str:
    return "0x" + to_word(n).hex()


def b64e(b: bytes) -> str:
    return base64.b64encode(b).decode()


def b64d(s: str) -> bytes:
    return base64.b64decode(s, validate=True)
