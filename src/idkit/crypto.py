from __future__ import annotations

import binascii
import json
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Optional, Set

from Crypto.Cipher import AES

from .errors import DecryptError
from .hashing import b64d, b64e


KEY_LEN = 32
NONCE_LEN = 12
TAG_LEN = 16


# ============================================================
# Envelope (what the bridge stores)
# ============================================================

@dataclass(frozen=True)
class Envelope:
    iv: str
    payload: str

    def to_dict(self) -> Dict[str, str]:
        return {"iv": self.iv, "payload": self.payload}

    @classmethod
    def from_dict(cls, obj: Any) -> "Envelope":
        if not isinstance(obj, dict):
            raise ValueError("envelope must be a JSON object")
        iv, payload = obj.get("iv"), obj.get("payload")
        if not isinstance(iv, str) or not isinstance(payload, str):
            raise ValueError("envelope requires iv and payload strings")
        return cls(iv=iv, payload=payload)


# ============================================================
# AES-256-GCM box
# ============================================================

class CryptoBox:
    """
    Ephemeral AES-256-GCM key for one session.

    Every seal draws a fresh random 96-bit nonce; nonces already used with
    this key are remembered and never handed out twice. `open` collapses every
    failure into the same DecryptError.
    """

    def __init__(self, key: bytes):
        if len(key) != KEY_LEN:
            raise ValueError(f"key must be {KEY_LEN} bytes")
        self._key: Optional[bytearray] = bytearray(key)
        self._used_nonces: Set[bytes] = set()

    @classmethod
    def generate(cls) -> "CryptoBox":
        return cls(secrets.token_bytes(KEY_LEN))

    @property
    def key(self) -> bytes:
        if self._key is None:
            raise ValueError("key has been destroyed")
        return bytes(self._key)

    @property
    def closed(self) -> bool:
        return self._key is None

    def _fresh_nonce(self) -> bytes:
        while True:
            nonce = secrets.token_bytes(NONCE_LEN)
            if nonce not in self._used_nonces:
                self._used_nonces.add(nonce)
                return nonce

    def seal(self, plaintext: bytes) -> Envelope:
        nonce = self._fresh_nonce()
        cipher = AES.new(self.key, AES.MODE_GCM, nonce=nonce, mac_len=TAG_LEN)
        ct, tag = cipher.encrypt_and_digest(plaintext)
        return Envelope(iv=b64e(nonce), payload=b64e(ct + tag))

    def seal_json(self, obj: Any) -> Envelope:
        return self.seal(json.dumps(obj, separators=(",", ":")).encode("utf-8"))

    def open(self, envelope: Envelope) -> bytes:
        try:
            nonce = b64d(envelope.iv)
            blob = b64d(envelope.payload)
        except (binascii.Error, ValueError):
            raise DecryptError() from None
        if len(nonce) != NONCE_LEN or len(blob) < TAG_LEN:
            raise DecryptError()
        ct, tag = blob[:-TAG_LEN], blob[-TAG_LEN:]
        cipher = AES.new(self.key, AES.MODE_GCM, nonce=nonce, mac_len=TAG_LEN)
        try:
            return cipher.decrypt_and_verify(ct, tag)
        except ValueError:
            raise DecryptError() from None

    def close(self) -> None:
        if self._key is not None:
            for i in range(len(self._key)):
                self._key[i] = 0
            self._key = None
        self._used_nonces.clear()
