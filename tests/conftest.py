"""Shared test fixtures. No test touches a real RPC, CU, MU or Slack."""

from __future__ import annotations

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from config.settings import Settings
from src.chains.ans104 import b64url_encode
from tests.factories import PRIVATE_KEY, TARGET_WALLET


def _int_b64(n: int) -> str:
    return b64url_encode(n.to_bytes((n.bit_length() + 7) // 8, "big"))


@pytest.fixture(scope="session")
def jwk() -> dict:
    """A fresh 4096-bit Arweave JWK. Generated once per session, it is slow."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=4096)
    priv = key.private_numbers()
    pub = priv.public_numbers
    return {
        "kty": "RSA",
        "e": _int_b64(pub.e),
        "n": _int_b64(pub.n),
        "d": _int_b64(priv.d),
        "p": _int_b64(priv.p),
        "q": _int_b64(priv.q),
        "dp": _int_b64(priv.dmp1),
        "dq": _int_b64(priv.dmq1),
        "qi": _int_b64(priv.iqmp),
    }


@pytest.fixture
def make_settings():
    """Settings factory that ignores the local .env file."""

    def _make(**overrides) -> Settings:
        values = {
            "_env_file": None,
            "target_wallet_address": TARGET_WALLET,
            "base_private_key": PRIVATE_KEY,
            "slack_enabled": False,
            "settlement_wait_sec": 0,
            "state_update_wait_sec": 0,
            "bridge_poll_interval_sec": 1,
            "bridge_max_wait_sec": 5,
        }
        values.update(overrides)
        return Settings(**values)

    return _make
