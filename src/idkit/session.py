from __future__ import annotations

import asyncio
import uuid
from typing import Any, Dict, Optional
from urllib.parse import quote, urlencode

import httpx
import structlog

from .bridge import BridgeClient
from .config import Settings
from .crypto import CryptoBox, Envelope
from .errors import MalformedResponseError, SessionClosedError
from .hashing import b64e, encode_signal, field_hex
from .proof import Proof, ProofCodec
from .status import AppRejected, Failed, Status, WaitingForConnection, app_error_code, is_terminal, transition
from .types import ErrorCode, SessionParams


logger = structlog.get_logger(__name__)


def build_request_metadata(params: SessionParams) -> Dict[str, Any]:
    """
    What the World App receives after decrypting the bridge entry.
    """
    return {
        "app_id": str(params.app_id),
        "action": params.action,
        "action_description": params.action_description,
        "signal": field_hex(encode_signal(params.signal)),
        "verification_level": params.verification_level.value,
        "credential_types": [c.value for c in params.verification_level.to_credential_types()],
    }


class Session:
    """
    One verification request against the Wallet Bridge.

    Owns the ephemeral key and the current handshake state. Polling is driven
    by the caller, one `poll_once` at a time:

        async with await Session.start(params) as session:
            show_qr(session.connect_url())
            while not session.done:
                status = await session.poll_once()
                await asyncio.sleep(3)
    """

    def __init__(
        self,
        params: SessionParams,
        box: CryptoBox,
        session_id: uuid.UUID,
        bridge: BridgeClient,
        settings: Settings,
        owns_client: bool = False,
    ):
        self.params = params
        self.session_id = session_id
        self.settings = settings
        self._box = box
        self._bridge = bridge
        self._codec = ProofCodec(params)
        self._state: Status = WaitingForConnection()
        self._lock = asyncio.Lock()
        self._owns_client = owns_client

    # ------------------- lifecycle -------------------

    @classmethod
    async def start(
        cls,
        params: SessionParams,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ) -> "Session":
        """
        Create the bridge entry and return the live session.

        The bridge is always `params.bridge_url`; `settings.bridge_url` is only
        the default the CLI fills `params` from. Without `client` the session
        opens its own and closes it in `close()`.
        """
        settings = settings or Settings(bridge_url=params.bridge_url)
        owns_client = client is None
        if client is None:
            client = httpx.AsyncClient(
                timeout=settings.request_timeout_s,
                headers={"User-Agent": settings.user_agent},
            )

        box = CryptoBox.generate()
        session_id = uuid.uuid4()
        bridge = BridgeClient(params.bridge_url, client)
        session = cls(params, box, session_id, bridge, settings, owns_client=owns_client)

        try:
            await bridge.create(session_id, box.seal_json(build_request_metadata(params)))
        except BaseException:
            await session.close()
            raise

        logger.info(
            "session_started",
            session_id=str(session_id),
            app_id=str(params.app_id),
            action=params.action,
            verification_level=params.verification_level.value,
        )
        return session

    async def close(self) -> None:
        # waits for an in-flight poll so the key outlives its resolve
        async with self._lock:
            self._box.close()
            if self._owns_client:
                await self._bridge.client.aclose()
                self._owns_client = False

    async def __aenter__(self) -> "Session":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # ------------------- state -------------------

    @property
    def status(self) -> Status:
        return self._state

    @property
    def done(self) -> bool:
        return is_terminal(self._state)

    def connect_url(self) -> str:
        """
        URL for the World App (shown as a QR code). Carries the key, so it
        goes to the user and nowhere else.
        """
        query = [
            ("t", "wld"),
            ("i", str(self.session_id)),
            # standard base64, percent-encoded by urlencode; the World App decodes it so
            ("k", b64e(self._box.key)),
        ]
        if not self.params.uses_default_bridge:
            query.append(("b", self.params.bridge_url))
        query += [
            ("app_id", str(self.params.app_id)),
            ("action", self.params.action),
            ("verification_level", self.params.verification_level.value),
        ]
        if self.params.signal is not None:
            query.append(("signal", field_hex(self._codec.signal_hash)))
        return self.settings.connect_base_url + "?" + urlencode(query, quote_via=quote)

    # ------------------- polling -------------------

    def _resolve(self, envelope: Envelope) -> Proof:
        plaintext = self._box.open(envelope)
        code = app_error_code(plaintext)
        if code is not None:
            raise AppRejected(code)
        return self._codec.decode(plaintext)

    async def poll_once(self) -> Status:
        """
        One bridge fetch and one state transition. Transport errors propagate
        and leave the state as it was; everything else ends in Failed.
        """
        async with self._lock:
            if is_terminal(self._state):
                return self._state
            if self._box.closed:
                raise SessionClosedError("session is closed")

            previous = self._state
            try:
                response = await self._bridge.fetch(self.session_id)
            except MalformedResponseError as e:
                self._state = Failed(ErrorCode.PROTOCOL_VIOLATION, cause=e)
            else:
                self._state = transition(previous, response, self._resolve)

            if isinstance(self._state, Failed):
                logger.warning(
                    "session_failed",
                    session_id=str(self.session_id),
                    error_code=self._state.error_code.value,
                    cause=str(self._state.cause) if self._state.cause else None,
                )
            elif self._state != previous:
                logger.info(
                    "status_changed",
                    session_id=str(self.session_id),
                    status=type(self._state).__name__,
                )
            return self._state
