from __future__ import annotations

from typing import Optional


class IDKitError(Exception):
    pass


# ============================================================
# Transport (recoverable: poll again)
# ============================================================

class TransportError(IDKitError):
    pass


class BridgeError(TransportError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class BridgeUnreachableError(BridgeError):
    pass


class BridgeNotFoundError(BridgeError):
    pass


# ============================================================
# Fatal to the session
# ============================================================

class ProtocolError(IDKitError):
    pass


class MalformedResponseError(ProtocolError):
    pass


class CryptoError(IDKitError):
    pass


class DecryptError(CryptoError):
    def __init__(self):
        super().__init__("could not recover payload")


class ValidationError(IDKitError):
    pass


class SchemaError(ValidationError):
    pass


class OutOfRangeError(ValidationError):
    pass


class SessionClosedError(IDKitError):
    pass


# ============================================================
# Configuration
# ============================================================

class AppIdError(IDKitError, ValueError):
    def __init__(self, app_id: str):
        super().__init__(f"Invalid app id provided, expected app_*, got {app_id}")
        self.app_id = app_id


class BridgeUrlError(IDKitError, ValueError):
    pass


# ============================================================
# Cloud verification
# ============================================================

class VerificationError(IDKitError):
    """
    The Developer Portal rejected a proof (HTTP 400).
    """

    def __init__(self, code: str, detail: str, attribute: Optional[str] = None):
        super().__init__(f"verification failed: {code}: {detail}")
        self.code = code
        self.detail = detail
        self.attribute = attribute
