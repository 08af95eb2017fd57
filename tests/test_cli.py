import asyncio
import json

import httpx
import pytest
import structlog

from conftest import NULLIFIER_HASH
from fake_bridge import BRIDGE_URL, FakeWorldApp, FlakyPolls

from idkit import cli
from idkit.config import Settings
from idkit.errors import BridgeUnreachableError
from idkit.hashing import field_hex, generate_external_nullifier
from idkit.session import Session
from idkit.types import AppId


@pytest.fixture(autouse=True)
def _reset_structlog(capsys):
    # after capsys, so log lines land in the captured stderr
    cli.configure_logging(False)
    yield
    structlog.reset_defaults()


@pytest.fixture
def started(monkeypatch):
    """
    Sessions created by the CLI, so a test can play the World App against them.
    """
    sessions = []
    real_start = Session.start

    async def recording_start(params, client=None, settings=None):
        session = await real_start(params, client=client, settings=settings)
        sessions.append(session)
        return session

    monkeypatch.setattr(cli.Session, "start", staticmethod(recording_start))
    return sessions


def request_args(*extra):
    return cli.build_parser().parse_args([
        "request", "--app-id", "app_123", "--action", "vote", "--level", "device",
        "--bridge", BRIDGE_URL, "--interval", "0.01", *extra,
    ])


async def world_app_for(started, client):
    for _ in range(200):
        if started:
            return FakeWorldApp(client, started[0].connect_url())
        await asyncio.sleep(0.01)
    raise AssertionError("the CLI never started a session")


def test_hash(capsys):
    assert cli.main(["hash", "test"]) == 0
    assert capsys.readouterr().out.strip() == "0x009c22ff5f21f0b81b113e63f7db6da94fedef11b2119b4088b89664fb9a3cb6"


def test_external_nullifier(capsys):
    assert cli.main(["external-nullifier", "--app-id", "app_123", "--action", "vote"]) == 0
    expected = field_hex(generate_external_nullifier(AppId("app_123"), "vote"))
    assert capsys.readouterr().out.strip() == expected


def test_requires_subcommand():
    with pytest.raises(SystemExit):
        cli.main([])


@pytest.mark.parametrize("argv", [
    ["external-nullifier", "--app-id", "not_an_app", "--action", "vote"],
    ["request", "--app-id", "not_an_app", "--action", "vote"],
    ["request", "--app-id", "app_123", "--action", "vote", "--bridge", "http://bridge.example.com"],
])
def test_bad_arguments_exit_cleanly(capsys, argv):
    assert cli.main(argv) == 1
    assert capsys.readouterr().err.startswith("error: ")


def test_unreachable_bridge_exits_cleanly(capsys, monkeypatch):
    async def unreachable(params, client=None, settings=None):
        raise BridgeUnreachableError("bridge unreachable")

    monkeypatch.setattr(cli.Session, "start", staticmethod(unreachable))
    assert cli.main(["request", "--app-id", "app_123", "--action", "vote"]) == 1
    assert "bridge unreachable" in capsys.readouterr().err


async def test_request_prints_proof(capsys, started, http_client, payload):
    cli.configure_logging(False)  # bind the call-phase capsys stderr
    run = asyncio.create_task(cli.run_request(request_args("--timeout", "5"), Settings(), client=http_client))
    app = await world_app_for(started, http_client)
    await app.retrieve()
    await app.respond(payload)

    assert await run == 0
    captured = capsys.readouterr()
    assert json.loads(captured.out)["nullifier_hash"] == NULLIFIER_HASH
    assert "https://worldcoin.org/verify?" in captured.err


async def test_request_reports_failure(capsys, started, http_client):
    cli.configure_logging(False)  # bind the call-phase capsys stderr
    run = asyncio.create_task(cli.run_request(request_args("--timeout", "5"), Settings(), client=http_client))
    app = await world_app_for(started, http_client)
    await app.fail("verification_rejected")

    assert await run == 1
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "Verification failed: The user rejected" in captured.err


async def test_request_times_out(capsys, http_client):
    cli.configure_logging(False)  # bind the call-phase capsys stderr
    assert await cli.run_request(request_args("--timeout", "0.05"), Settings(), client=http_client) == 1
    assert "Timed out" in capsys.readouterr().err


async def test_request_survives_transport_errors(capsys, started, bridge_app, payload):
    cli.configure_logging(False)  # bind the call-phase capsys stderr
    transport = FlakyPolls(httpx.ASGITransport(app=bridge_app), failures=3)
    async with httpx.AsyncClient(transport=transport, base_url=BRIDGE_URL) as client:
        run = asyncio.create_task(cli.run_request(request_args("--timeout", "5"), Settings(), client=client))
        app = await world_app_for(started, client)
        await app.respond(payload)
        assert await run == 0
        assert transport.polls > 3

    captured = capsys.readouterr()
    assert json.loads(captured.out)["nullifier_hash"] == NULLIFIER_HASH
    assert "poll_failed" in captured.err

