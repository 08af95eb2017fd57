from __future__ import annotations

from enum import Enum
from typing import List, Optional, Tuple, Union
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import AppIdError, BridgeUrlError


DEFAULT_BRIDGE_URL = "https://bridge.worldcoin.org"

LOCAL_HOSTS = ("localhost", "127.0.0.1")

# str | bytes | int, or a tuple of those, ABI-packed before hashing
Signal = Union[str, bytes, int, Tuple[Union[str, bytes, int], ...]]


# ============================================================
# Verification levels
# ============================================================

class CredentialType(str, Enum):
    """
    The strongest credential with which a user has been verified.
    """
    ORB = "orb"
    DEVICE = "device"


class VerificationLevel(str, Enum):
    """
    The minimum verification level accepted. Ordered by assurance:
    DEVICE < ORB.
    """
    DEVICE = "device"
    ORB = "orb"

    @property
    def rank(self) -> int:
        return _LEVEL_RANKS[self]

    def satisfies(self, required: "VerificationLevel") -> bool:
        return self.rank >= required.rank

    def to_credential_types(self) -> List[CredentialType]:
        if self is VerificationLevel.ORB:
            return [CredentialType.ORB]
        return [CredentialType.ORB, CredentialType.DEVICE]

    def __str__(self) -> str:
        return self.value


_LEVEL_RANKS = {
    VerificationLevel.DEVICE: 1,
    VerificationLevel.ORB: 2,
}


# ============================================================
# Error codes reported by the bridge, the World App, or this client
# ============================================================

class ErrorCode(str, Enum):
    CONNECTION_FAILED = "connection_failed"
    VERIFICATION_REJECTED = "verification_rejected"
    MAX_VERIFICATIONS_REACHED = "max_verifications_reached"
    CREDENTIAL_UNAVAILABLE = "credential_unavailable"
    MALFORMED_REQUEST = "malformed_request"
    INVALID_NETWORK = "invalid_network"
    INCLUSION_PROOF_FAILED = "inclusion_proof_failed"
    INCLUSION_PROOF_PENDING = "inclusion_proof_pending"
    UNEXPECTED_RESPONSE = "unexpected_response"
    FAILED_BY_HOST_APP = "failed_by_host_app"
    GENERIC_ERROR = "generic_error"
    REQUEST_EXPIRED = "request_expired"
    # raised locally, never sent by the bridge
    DECRYPTION_FAILED = "decryption_failed"
    VALIDATION_FAILED = "validation_failed"
    PROTOCOL_VIOLATION = "protocol_violation"

    @property
    def message(self) -> str:
        return _ERROR_MESSAGES[self]


_ERROR_MESSAGES = {
    ErrorCode.CONNECTION_FAILED: "Failed to connect to the World App. Please create a new session and try again.",
    ErrorCode.VERIFICATION_REJECTED: "The user rejected the verification request in the World App.",
    ErrorCode.MAX_VERIFICATIONS_REACHED: "The user already verified the maximum number of times for this action.",
    ErrorCode.CREDENTIAL_UNAVAILABLE: "The user does not have the verification level required by this app.",
    ErrorCode.MALFORMED_REQUEST: "There was a problem with this request. Please try again or contact the app owner.",
    ErrorCode.INVALID_NETWORK: "Invalid network. If you are the app owner, visit docs.worldcoin.org/test for details.",
    ErrorCode.INCLUSION_PROOF_FAILED: "There was an issue fetching the user's credential. Please try again.",
    ErrorCode.INCLUSION_PROOF_PENDING: "The user's identity is still being registered. Please wait a few minutes and try again.",
    ErrorCode.UNEXPECTED_RESPONSE: "Unexpected response from the user's World App. Please try again.",
    ErrorCode.FAILED_BY_HOST_APP: "Verification failed by the app. Please contact the app owner for details.",
    ErrorCode.GENERIC_ERROR: "Something unexpected went wrong. Please try again.",
    ErrorCode.REQUEST_EXPIRED: "The verification request expired. Please create a new session and try again.",
    ErrorCode.DECRYPTION_FAILED: "The response from the World App could not be decrypted.",
    ErrorCode.VALIDATION_FAILED: "The proof returned by the World App is invalid.",
    ErrorCode.PROTOCOL_VIOLATION: "The World App returned a proof that does not match the request.",
}


# ============================================================
# Identifiers
# ============================================================

class AppId(str):
    """
    App ID obtained from the Developer Portal. Always starts with `app_`.
    """

    def __new__(cls, value: str) -> "AppId":
        if not isinstance(value, str) or not value.startswith("app_"):
            raise AppIdError(str(value))
        return super().__new__(cls, value)

    @property
    def is_staging(self) -> bool:
        return "staging" in self


def validate_bridge_url(url: str) -> str:
    """
    Bridge URLs must be bare https origins. Local hosts are exempt so a bridge
    can be run next to the app during development.
    """
    parts = urlsplit(url)
    if not parts.scheme or not parts.hostname:
        raise BridgeUrlError(f"Bridge URL is not absolute: {url!r}")
    if parts.hostname in LOCAL_HOSTS:
        return url.rstrip("/")
    if parts.scheme != "https":
        raise BridgeUrlError("Bridge URL must use HTTPS.")
    if parts.port is not None:
        raise BridgeUrlError("Bridge URL must use the default port.")
    if parts.path not in ("", "/"):
        raise BridgeUrlError("Bridge URL must not contain a path.")
    if parts.query:
        raise BridgeUrlError("Bridge URL must not contain a query.")
    if parts.fragment:
        raise BridgeUrlError("Bridge URL must not contain a fragment.")
    return url.rstrip("/")


# ============================================================
# Session parameters
# ============================================================

class SessionParams(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    app_id: AppId
    action: str = Field(..., min_length=1)
    signal: Optional[Signal] = None
    verification_level: VerificationLevel = VerificationLevel.ORB
    bridge_url: str = DEFAULT_BRIDGE_URL
    action_description: Optional[str] = None

    @field_validator("app_id", mode="before")
    @classmethod
    def _check_app_id(cls, v):
        return v if isinstance(v, AppId) else AppId(v)

    @field_validator("bridge_url")
    @classmethod
    def _check_bridge_url(cls, v: str) -> str:
        return validate_bridge_url(v)

    @property
    def uses_default_bridge(self) -> bool:
        return self.bridge_url == DEFAULT_BRIDGE_URL
