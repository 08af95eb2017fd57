"""
idkit: request World ID proofs from the World App through the Wallet Bridge.
"""

__version__ = "0.1.2"

from .errors import (  # noqa: E402
    AppIdError,
    BridgeError,
    BridgeNotFoundError,
    BridgeUnreachableError,
    BridgeUrlError,
    CryptoError,
    DecryptError,
    IDKitError,
    MalformedResponseError,
    OutOfRangeError,
    ProtocolError,
    SchemaError,
    SessionClosedError,
    TransportError,
    ValidationError,
    VerificationError,
)
from .hashing import encode_signal, generate_external_nullifier, hash_to_field  # noqa: E402
from .proof import Proof, ProofCodec  # noqa: E402
from .session import Session  # noqa: E402
from .status import AwaitingConfirmation, Confirmed, Failed, Status, WaitingForConnection  # noqa: E402
from .types import AppId, CredentialType, ErrorCode, SessionParams, VerificationLevel  # noqa: E402
from .verify import verify_proof  # noqa: E402
