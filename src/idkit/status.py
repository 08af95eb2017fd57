"""
Handshake state machine.

    WaitingForConnection -> AwaitingConfirmation -> Confirmed(proof)
             |                      |
             +----------------------+--------> Failed(code)

`transition` is pure given a pure `resolve`: no I/O, no clock. Terminal
states absorb every further response.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Callable, Optional, Union

from .bridge import BridgeFailed, Completed, Initialized, Retrieved, StatusResponse
from .crypto import Envelope
from .errors import CryptoError, IDKitError, ProtocolError, ValidationError
from .proof import Proof
from .types import ErrorCode


@dataclass(frozen=True)
class WaitingForConnection:
    terminal = False


@dataclass(frozen=True)
class AwaitingConfirmation:
    terminal = False


@dataclass(frozen=True)
class Confirmed:
    proof: Proof
    terminal = True


@dataclass(frozen=True)
class Failed:
    error_code: ErrorCode
    cause: Optional[IDKitError] = None
    terminal = True

    @property
    def message(self) -> str:
        return self.error_code.message


Status = Union[WaitingForConnection, AwaitingConfirmation, Confirmed, Failed]

# envelope -> Proof; raises CryptoError, ValidationError, ProtocolError or AppRejected
Resolver = Callable[[Envelope], Proof]


class AppRejected(ProtocolError):
    """
    The decrypted response is an error report from the World App rather than
    a proof.
    """

    def __init__(self, error_code: ErrorCode):
        super().__init__(f"World App reported {error_code.value}")
        self.error_code = error_code


def app_error_code(plaintext: bytes) -> Optional[ErrorCode]:
    """
    Return the error code if the decrypted body is `{"error_code": ...}`.
    """
    try:
        obj = json.loads(plaintext)
    except ValueError:
        return None
    if not isinstance(obj, dict) or set(obj) != {"error_code"}:
        return None
    try:
        return ErrorCode(obj["error_code"])
    except ValueError:
        return ErrorCode.UNEXPECTED_RESPONSE


def is_terminal(state: Status) -> bool:
    return state.terminal


def transition(state: Status, response: StatusResponse, resolve: Resolver) -> Status:
    if is_terminal(state):
        return state

    if isinstance(response, Initialized):
        # Retrieved is one-way; a stale "initialized" never moves us back
        return state

    if isinstance(response, Retrieved):
        return AwaitingConfirmation()

    if isinstance(response, BridgeFailed):
        return Failed(response.error_code)

    if isinstance(response, Completed):
        try:
            return Confirmed(resolve(response.envelope))
        except AppRejected as e:
            return Failed(e.error_code, cause=e)
        except CryptoError as e:
            return Failed(ErrorCode.DECRYPTION_FAILED, cause=e)
        except ValidationError as e:
            return Failed(ErrorCode.VALIDATION_FAILED, cause=e)
        except ProtocolError as e:
            return Failed(ErrorCode.PROTOCOL_VIOLATION, cause=e)

    raise TypeError(f"not a StatusResponse: {response!r}")
