"""
Cloud verification of a proof through the Developer Portal API.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
import structlog
from pydantic import BaseModel, ConfigDict

from .config import Settings
from .errors import TransportError, VerificationError
from .hashing import abi_encode_packed, field_hex, hash_to_field
from .proof import Proof
from .types import AppId


logger = structlog.get_logger(__name__)


class VerificationRequest(BaseModel):
    action: str
    proof: str
    merkle_root: str
    nullifier_hash: str
    verification_level: str
    signal_hash: Optional[str] = None


class ErrorResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: str
    detail: str
    attribute: Optional[str] = None


def build_verification_request(proof: Proof, action: str, signal: Any = None) -> VerificationRequest:
    packed = abi_encode_packed(signal)
    return VerificationRequest(
        action=action,
        proof=proof.proof_hex,
        merkle_root=field_hex(proof.merkle_root),
        nullifier_hash=field_hex(proof.nullifier_hash),
        verification_level=proof.verification_level.value,
        signal_hash=field_hex(hash_to_field(packed)) if packed else None,
    )


async def verify_proof(
    proof: Proof,
    app_id: AppId,
    action: str,
    signal: Any = None,
    client: Optional[httpx.AsyncClient] = None,
    settings: Optional[Settings] = None,
) -> None:
    """
    Ask the Developer Portal to verify `proof`. Returns on success, raises
    VerificationError when the proof is rejected and TransportError when the
    API cannot be reached or answers unexpectedly.
    """
    settings = settings or Settings()
    body = build_verification_request(proof, action, signal).model_dump(exclude_none=True)
    url = f"{settings.verify_base_url.rstrip('/')}/api/v2/verify/{app_id}"

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=settings.request_timeout_s)
    try:
        resp = await client.post(url, json=body, headers={"User-Agent": settings.user_agent})
    except httpx.HTTPError as e:
        raise TransportError(f"POST {url} failed: {e}") from e
    finally:
        if owns_client:
            await client.aclose()

    if resp.status_code == 200:
        logger.info("proof_verified", app_id=str(app_id), action=action)
        return
    if resp.status_code == 400:
        try:
            err = ErrorResponse.model_validate_json(resp.content)
        except ValueError as e:
            raise TransportError(f"undecodable 400 reply from {url}") from e
        logger.warning("proof_rejected", app_id=str(app_id), action=action, code=err.code)
        raise VerificationError(err.code, err.detail, err.attribute)
    raise TransportError(f"POST {url} returned HTTP {resp.status_code}")
