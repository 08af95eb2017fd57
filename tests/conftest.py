import pytest

from fake_bridge import BRIDGE_URL, asgi_client, build_bridge_app

from idkit.types import SessionParams, VerificationLevel


MERKLE_ROOT = "0x2264a66d162d7893e12ea8e3c072c51e785bc085ad655f64c10c1a61e00f0bc2"
NULLIFIER_HASH = "0x2bf8406809dcefb1a3a1d9e2e5d0c8f5dd1a8d6b0c9b3a1f4e1b5b0fb5a7e4c1"
PROOF_WORDS = [i * 0x1111 for i in range(1, 9)]


@pytest.fixture
def bridge_app():
    return build_bridge_app()


@pytest.fixture
async def http_client(bridge_app):
    async with asgi_client(bridge_app) as client:
        yield client


@pytest.fixture
def params():
    return SessionParams(
        app_id="app_staging_45068dca85829d2fd90e2dd6f0bff997",
        action="test-action",
        signal="0x12312",
        verification_level=VerificationLevel.DEVICE,
        bridge_url=BRIDGE_URL,
    )


@pytest.fixture
def payload():
    return {
        "proof": "0x" + b"".join(w.to_bytes(32, "big") for w in PROOF_WORDS).hex(),
        "merkle_root": MERKLE_ROOT,
        "nullifier_hash": NULLIFIER_HASH,
        "verification_level": "orb",
    }
