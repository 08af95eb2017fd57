from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time
from typing import List, Optional

import httpx
import structlog
from pydantic import ValidationError as PydanticValidationError

from .config import Settings
from .errors import IDKitError, TransportError
from .hashing import field_hex, generate_external_nullifier, hash_to_field
from .session import Session
from .status import AwaitingConfirmation, Confirmed, Failed
from .types import AppId, SessionParams, VerificationLevel


logger = structlog.get_logger(__name__)


def configure_logging(verbose: bool) -> None:
    # stdout carries the result; logs go to stderr
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG if verbose else logging.INFO),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


# ============================================================
# request: full bridge handshake
# ============================================================

async def run_request(args, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> int:
    params = SessionParams(
        app_id=args.app_id,
        action=args.action,
        signal=args.signal,
        verification_level=VerificationLevel(args.level),
        bridge_url=args.bridge or settings.bridge_url,
        action_description=args.description,
    )
    interval = args.interval if args.interval is not None else settings.poll_interval_s
    timeout = args.timeout if args.timeout is not None else settings.poll_timeout_s

    async with await Session.start(params, client=client, settings=settings) as session:
        print(f"To continue, open this URL with the World App (or render it as a QR code):\n\n  {session.connect_url()}\n", file=sys.stderr)

        deadline = time.monotonic() + timeout
        announced = False
        while True:
            try:
                status = await session.poll_once()
            except TransportError as e:
                logger.warning("poll_failed", error=str(e))
                status = session.status

            if isinstance(status, Confirmed):
                print(json.dumps(status.proof.to_dict(), indent=2))
                return 0
            if isinstance(status, Failed):
                print(f"Verification failed: {status.message}", file=sys.stderr)
                return 1
            if isinstance(status, AwaitingConfirmation) and not announced:
                print("Waiting for confirmation...", file=sys.stderr)
                announced = True

            if time.monotonic() >= deadline:
                print("Timed out waiting for the World App.", file=sys.stderr)
                return 1
            await asyncio.sleep(interval)


# ============================================================
# Entry point
# ============================================================

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="idkit")
    p.add_argument("-v", "--verbose", action="store_true")
    sub = p.add_subparsers(dest="cmd", required=True)

    r = sub.add_parser("request", help="request a World ID proof through the bridge")
    r.add_argument("--app-id", type=str, required=True)
    r.add_argument("--action", type=str, required=True)
    r.add_argument("--signal", type=str, default=None)
    r.add_argument("--level", type=str, choices=[v.value for v in VerificationLevel], default=VerificationLevel.ORB.value)
    r.add_argument("--bridge", type=str, default=None)
    r.add_argument("--description", type=str, default=None)
    r.add_argument("--interval", type=float, default=None)
    r.add_argument("--timeout", type=float, default=None)

    h = sub.add_parser("hash", help="hash_to_field of a UTF-8 string")
    h.add_argument("text", type=str)

    n = sub.add_parser("external-nullifier", help="action hash for an app and action")
    n.add_argument("--app-id", type=str, required=True)
    n.add_argument("--action", type=str, required=True)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    try:
        return dispatch(args)
    except (IDKitError, PydanticValidationError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


def dispatch(args) -> int:
    if args.cmd == "hash":
        print(field_hex(hash_to_field(args.text.encode("utf-8"))))
        return 0
    if args.cmd == "external-nullifier":
        print(field_hex(generate_external_nullifier(AppId(args.app_id), args.action)))
        return 0
    if args.cmd == "request":
        return asyncio.run(run_request(args, Settings.from_env()))
    return 2


if __name__ == "__main__":
    sys.exit(main())
