from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictInt, StrictStr
from pydantic import ValidationError as PydanticValidationError

from .errors import OutOfRangeError, ProtocolError, SchemaError
from .hashing import (
    SNARK_SCALAR_FIELD,
    UINT256_MAX,
    WORD_BYTES,
    encode_signal,
    field_hex,
    generate_external_nullifier,
    to_word,
)
from .types import SessionParams, VerificationLevel


PROOF_WORDS = 8  # Groth16: a (2), b (4), c (2)

Number = Union[StrictInt, StrictStr]

_HEX_NUMBER = re.compile(r"0x([0-9a-fA-F]+)")
_DEC_NUMBER = re.compile(r"[0-9]+")
_HEX_BYTES = re.compile(r"(?:0x)?((?:[0-9a-fA-F]{2})*)")

# widest literal that can still hold a uint256, leading zeros aside
MAX_HEX_DIGITS = 64
MAX_DEC_DIGITS = 78


# ============================================================
# Wire schema of the decrypted payload
# ============================================================

class ProofPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    proof: Union[StrictStr, List[Number]]
    merkle_root: Number
    nullifier_hash: Number
    verification_level: VerificationLevel = Field(
        ..., validation_alias=AliasChoices("verification_level", "credential_type")
    )


def parse_number(value: Union[int, str], name: str, bound: int) -> int:
    """
    Accept JSON ints, 0x-hex strings and plain decimal strings. No sign,
    whitespace or digit separators. Values must be non-negative and strictly
    below `bound`.

    Digit counts are checked before conversion, so a huge literal is out of
    range rather than tripping the interpreter's int conversion limit.
    """
    if isinstance(value, int):
        n = value
    else:
        m = _HEX_NUMBER.fullmatch(value)
        if m:
            digits, base, limit = m.group(1), 16, MAX_HEX_DIGITS
        elif _DEC_NUMBER.fullmatch(value):
            digits, base, limit = value, 10, MAX_DEC_DIGITS
        else:
            raise SchemaError(f"{name} is not a number: {value[:80]!r}")
        if len(digits.lstrip("0")) > limit:
            raise OutOfRangeError(f"{name} out of range")
        n = int(digits, base)
    if n < 0 or n >= bound:
        raise OutOfRangeError(f"{name} out of range")
    return n


def _parse_json_int(literal: str) -> int:
    if len(literal.lstrip("-").lstrip("0")) > MAX_DEC_DIGITS:
        raise OutOfRangeError("integer literal out of range")
    return int(literal)


def parse_proof_words(value: Union[str, List[Union[int, str]]]) -> Tuple[int, ...]:
    if isinstance(value, str):
        m = _HEX_BYTES.fullmatch(value)
        if not m:
            raise SchemaError("proof is not a hex string")
        raw = bytes.fromhex(m.group(1))
        if len(raw) != PROOF_WORDS * WORD_BYTES:
            raise SchemaError(f"proof must be {PROOF_WORDS * WORD_BYTES} bytes, got {len(raw)}")
        return tuple(
            int.from_bytes(raw[i:i + WORD_BYTES], "big") for i in range(0, len(raw), WORD_BYTES)
        )
    if len(value) != PROOF_WORDS:
        raise SchemaError(f"proof must have {PROOF_WORDS} elements, got {len(value)}")
    return tuple(parse_number(v, f"proof[{i}]", UINT256_MAX + 1) for i, v in enumerate(value))


# ============================================================
# Proof
# ============================================================

@dataclass(frozen=True)
class Proof:
    verification_level: VerificationLevel
    merkle_root: int
    nullifier_hash: int
    proof: Tuple[int, ...]
    action_hash: int
    signal_hash: Optional[int] = None

    def abi_encode(self) -> bytes:
        """
        merkle_root || nullifier_hash || proof[0..8], each a 32-byte
        big-endian word. This is the layout verifier contracts take.
        """
        return abi_encode_proof(self.merkle_root, self.nullifier_hash, self.proof)

    @property
    def proof_hex(self) -> str:
        return "0x" + b"".join(to_word(w) for w in self.proof).hex()

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "verification_level": self.verification_level.value,
            "merkle_root": field_hex(self.merkle_root),
            "nullifier_hash": field_hex(self.nullifier_hash),
            "proof": self.proof_hex,
            "action_hash": field_hex(self.action_hash),
        }
        if self.signal_hash is not None:
            out["signal_hash"] = field_hex(self.signal_hash)
        return out


def abi_encode_proof(merkle_root: int, nullifier_hash: int, proof: Tuple[int, ...]) -> bytes:
    return b"".join([to_word(merkle_root), to_word(nullifier_hash)] + [to_word(w) for w in proof])


# ============================================================
# Codec
# ============================================================

class ProofCodec:
    """
    Turns the decrypted World App response into a Proof for one request.

    Knows the request parameters so it can reject proofs below the requested
    verification level and attach the action and signal hashes.
    """

    def __init__(self, params: SessionParams):
        self.params = params
        self.action_hash = generate_external_nullifier(params.app_id, params.action)
        self.signal_hash = encode_signal(params.signal) if params.signal is not None else None

    def parse(self, obj: Any) -> Proof:
        if not isinstance(obj, dict):
            raise SchemaError("payload must be a JSON object")
        try:
            payload = ProofPayload.model_validate(obj)
        except PydanticValidationError as e:
            raise SchemaError(f"invalid proof payload: {e.error_count()} error(s): {_summary(e)}") from e

        merkle_root = parse_number(payload.merkle_root, "merkle_root", SNARK_SCALAR_FIELD)
        nullifier_hash = parse_number(payload.nullifier_hash, "nullifier_hash", SNARK_SCALAR_FIELD)
        words = parse_proof_words(payload.proof)

        level = payload.verification_level
        if not level.satisfies(self.params.verification_level):
            raise ProtocolError(
                f"proof verification level {level.value} is below requested {self.params.verification_level.value}"
            )

        return Proof(
            verification_level=level,
            merkle_root=merkle_root,
            nullifier_hash=nullifier_hash,
            proof=words,
            action_hash=self.action_hash,
            signal_hash=self.signal_hash,
        )

    def decode(self, data: bytes) -> Proof:
        # OutOfRangeError from the int hook is not a ValueError and passes through
        try:
            obj = json.loads(data, parse_int=_parse_json_int)
        except ValueError as e:
            raise SchemaError(f"payload is not JSON: {e}") from e
        return self.parse(obj)


def _summary(e: PydanticValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['type']}" for err in e.errors()
    )
