"""
In-process Wallet Bridge plus a scripted World App, for tests.

The bridge is a dumb single-slot mailbox per session id, served by FastAPI and
mounted into httpx through ASGITransport. The World App side reads the key
from the connect URL exactly like the phone would.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlsplit

import httpx
from fastapi import Body, FastAPI, HTTPException

from idkit.crypto import CryptoBox, Envelope
from idkit.hashing import b64d


BRIDGE_URL = "http://127.0.0.1"


def build_bridge_app() -> FastAPI:
    app = FastAPI(title="Fake Wallet Bridge")
    mailbox: Dict[str, Dict[str, Any]] = {}
    app.state.mailbox = mailbox

    def _require(session_id: str) -> Dict[str, Any]:
        if session_id not in mailbox:
            raise HTTPException(status_code=404, detail="unknown or expired session")
        return mailbox[session_id]

    @app.put("/bridge/{session_id}")
    def create(session_id: str, envelope: Dict[str, str] = Body(...)):
        mailbox[session_id] = {"status": "initialized", "request": envelope, "response": None, "error_code": None}
        return {"ok": True}

    @app.get("/bridge/{session_id}")
    def poll(session_id: str):
        entry = _require(session_id)
        return {"status": entry["status"], "response": entry["response"], "error_code": entry["error_code"]}

    # ----- World App side -----

    @app.get("/bridge/{session_id}/request")
    def fetch_request(session_id: str):
        entry = _require(session_id)
        entry["status"] = "retrieved"
        return entry["request"]

    @app.put("/bridge/{session_id}/response")
    def put_response(session_id: str, envelope: Dict[str, str] = Body(...)):
        entry = _require(session_id)
        entry["status"] = "completed"
        entry["response"] = envelope
        return {"ok": True}

    @app.put("/bridge/{session_id}/failure")
    def put_failure(session_id: str, body: Dict[str, str] = Body(...)):
        entry = _require(session_id)
        entry["status"] = "failed"
        entry["error_code"] = body["error_code"]
        return {"ok": True}

    return app


def asgi_client(app: FastAPI) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url=BRIDGE_URL)


class FlakyPolls(httpx.AsyncBaseTransport):
    """
    Wraps a transport and interferes with status polls only (plain
    `GET /bridge/{id}`): each is delayed by `delay` seconds, and the first
    `failures` of them get a 503.
    """

    def __init__(self, inner: httpx.AsyncBaseTransport, delay: float = 0.0, failures: int = 0):
        self.inner = inner
        self.delay = delay
        self.failures = failures
        self.polls = 0

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET" and request.url.path.count("/") == 2:
            self.polls += 1
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.polls <= self.failures:
                return httpx.Response(503, request=request)
        return await self.inner.handle_async_request(request)


def flaky_client(app: FastAPI, delay: float = 0.0, failures: int = 0) -> httpx.AsyncClient:
    transport = FlakyPolls(httpx.ASGITransport(app=app), delay=delay, failures=failures)
    return httpx.AsyncClient(transport=transport, base_url=BRIDGE_URL)


class FakeWorldApp:
    """
    Plays the phone: scans the connect URL, reads the request, answers.
    """

    def __init__(self, client: httpx.AsyncClient, connect_url: str):
        query = parse_qs(urlsplit(connect_url).query)
        self.client = client
        self.session_id = query["i"][0]
        self.bridge = query.get("b", [BRIDGE_URL])[0]
        self.box = CryptoBox(b64d(query["k"][0]))
        self.request: Optional[Dict[str, Any]] = None

    def _url(self, suffix: str = "") -> str:
        return f"{self.bridge}/bridge/{self.session_id}{suffix}"

    async def retrieve(self) -> Dict[str, Any]:
        resp = await self.client.get(self._url("/request"))
        resp.raise_for_status()
        self.request = json.loads(self.box.open(Envelope.from_dict(resp.json())))
        return self.request

    async def respond(self, payload: Dict[str, Any], box: Optional[CryptoBox] = None) -> None:
        envelope = (box or self.box).seal_json(payload)
        resp = await self.client.put(self._url("/response"), json=envelope.to_dict())
        resp.raise_for_status()

    async def respond_raw(self, envelope: Dict[str, str]) -> None:
        resp = await self.client.put(self._url("/response"), json=envelope)
        resp.raise_for_status()

    async def fail(self, error_code: str) -> None:
        resp = await self.client.put(self._url("/failure"), json={"error_code": error_code})
        resp.raise_for_status()
