"""
Wallet Bridge client.

The bridge is a dumb single-slot mailbox keyed by session id. It never sees
plaintext: requests and responses are AES-GCM envelopes.

    PUT /bridge/{session_id}   body: {"iv": ..., "payload": ...}
    GET /bridge/{session_id}   -> {"status": ..., "response": <envelope>|null, "error_code": <str>|null}
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Optional, Union
from uuid import UUID

import httpx
import structlog

from .crypto import Envelope
from .errors import BridgeNotFoundError, BridgeUnreachableError, MalformedResponseError
from .types import ErrorCode


logger = structlog.get_logger(__name__)

BRIDGE_PATH = "/bridge/{session_id}"


# ============================================================
# Poll outcomes
# ============================================================

@dataclass(frozen=True)
class Initialized:
    pass


@dataclass(frozen=True)
class Retrieved:
    pass


@dataclass(frozen=True)
class Completed:
    envelope: Envelope


@dataclass(frozen=True)
class BridgeFailed:
    error_code: ErrorCode


StatusResponse = Union[Initialized, Retrieved, Completed, BridgeFailed]


def parse_status_response(body: bytes) -> StatusResponse:
    """
    Decode a GET reply into exactly one StatusResponse variant.
    Anything else is a MalformedResponseError.
    """
    try:
        obj = json.loads(body)
    except ValueError as e:
        raise MalformedResponseError(f"bridge reply is not JSON: {e}") from e
    if not isinstance(obj, dict):
        raise MalformedResponseError("bridge reply must be a JSON object")

    status = obj.get("status")
    if status == "initialized":
        return Initialized()
    if status == "retrieved":
        return Retrieved()
    if status == "completed":
        try:
            return Completed(Envelope.from_dict(obj.get("response")))
        except ValueError as e:
            raise MalformedResponseError(f"completed reply without valid envelope: {e}") from e
    if status == "failed":
        try:
            return BridgeFailed(ErrorCode(obj.get("error_code")))
        except ValueError as e:
            raise MalformedResponseError(f"unknown error_code: {obj.get('error_code')!r}") from e
    raise MalformedResponseError(f"unknown bridge status: {status!r}")


# ============================================================
# Client
# ============================================================

class BridgeClient:
    """
    One request per call, no retries. Cadence and retry policy belong to the
    caller.
    """

    def __init__(self, bridge_url: str, client: httpx.AsyncClient):
        self.bridge_url = bridge_url.rstrip("/")
        self.client = client

    def _url(self, session_id: UUID) -> str:
        return self.bridge_url + BRIDGE_PATH.format(session_id=session_id)

    async def _send(self, method: str, session_id: UUID, body: Optional[dict] = None) -> httpx.Response:
        url = self._url(session_id)
        try:
            resp = await self.client.request(method, url, json=body)
        except httpx.HTTPError as e:
            logger.warning("bridge_request_failed", method=method, session_id=str(session_id), error=str(e))
            raise BridgeUnreachableError(f"{method} {url} failed: {e}") from e

        if resp.status_code == 404:
            raise BridgeNotFoundError(f"no bridge entry for session {session_id}", status_code=404)
        if not 200 <= resp.status_code < 300:
            logger.warning("bridge_bad_status", method=method, session_id=str(session_id), status=resp.status_code)
            raise BridgeUnreachableError(
                f"{method} {url} returned HTTP {resp.status_code}", status_code=resp.status_code
            )
        return resp

    async def create(self, session_id: UUID, envelope: Envelope) -> None:
        await self._send("PUT", session_id, envelope.to_dict())
        logger.debug("bridge_entry_created", session_id=str(session_id))

    async def fetch(self, session_id: UUID) -> StatusResponse:
        resp = await self._send("GET", session_id)
        return parse_status_response(resp.content)
