# tests/conftest.py
from __future__ import annotations

import base64
import dataclasses
import os
from collections.abc import Callable, Iterator
from typing import Any
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from nacl.signing import SigningKey

_SIGNING_KEY = SigningKey.generate()
_SEED = bytes(_SIGNING_KEY)
_PUBLIC_KEY = bytes(_SIGNING_KEY.verify_key)
TEST_FAUCET_ADDRESS = "octFaucetTreasury1111111111111111111111111111"
TEST_RECIPIENT = "oct9gTHVFW4f1LnuAy6btBWowA6QYCmPcGXmbKbNiuVSzFZ"
TEST_TX_HASH = "ab" * 32
START_TIME = 1_700_000_000.0

os.environ.setdefault("FAUCET_PRIVATE_KEY", base64.b64encode(_SEED).decode())
os.environ.setdefault("FAUCET_PUBLIC_KEY", _PUBLIC_KEY.hex())
os.environ.setdefault("FAUCET_ADDRESS", TEST_FAUCET_ADDRESS)
os.environ.setdefault("RECAPTCHA_SECRET_KEY", "test-recaptcha-secret")
os.environ.setdefault("REDIS_URL", "memory://")
os.environ.setdefault("OCTRA_RPC_URL", "http://octra.test")
os.environ.setdefault("CLAIM_RATE_LIMIT", "0")

from octra_faucet.api.v1.dependencies import get_faucet_service
from octra_faucet.core.config import FaucetConfig
from octra_faucet.main import app as fastapi_app
from octra_faucet.services.captcha import RecaptchaVerifier
from octra_faucet.services.faucet import FaucetService
from octra_faucet.services.rpc import OctraRpcClient, SubmitResult
from octra_faucet.services.store import MemoryFaucetStore


class FakeClock:
    """Controllable replacement for `time.time`."""

    def __init__(self, start: float = START_TIME) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(scope="session")
def signing_key() -> SigningKey:
    return _SIGNING_KEY


@pytest.fixture()
def make_config() -> Callable[..., FaucetConfig]:
    """Return a factory for faucet configs with optional overrides."""
    base = FaucetConfig(
        faucet_address=TEST_FAUCET_ADDRESS,
        signing_seed=_SEED,
        public_key=_PUBLIC_KEY,
        rpc_url="http://octra.test",
        rpc_read_timeout_seconds=10.0,
        rpc_submit_timeout_seconds=30.0,
        amount=0.5,
        address_cooldown_seconds=86_400,
        ip_cooldown_seconds=3_600,
        recaptcha_secret="test-recaptcha-secret",
        recaptcha_verify_url="https://captcha.test/siteverify",
        recaptcha_timeout_seconds=10.0,
    )

    def _make(**overrides: Any) -> FaucetConfig:
        return dataclasses.replace(base, **overrides)

    return _make


@pytest.fixture()
def faucet_config(make_config: Callable[..., FaucetConfig]) -> FaucetConfig:
    return make_config()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(clock: FakeClock) -> MemoryFaucetStore:
    return MemoryFaucetStore(clock=clock)


@pytest.fixture()
def rpc_client() -> AsyncMock:
    """RPC client double reporting a funded treasury at nonce 41."""
    client = AsyncMock(spec=OctraRpcClient)
    client.fetch_balance.return_value = 1_000.0
    client.fetch_nonce.return_value = 41
    client.submit.return_value = SubmitResult(success=True, hash=TEST_TX_HASH)
    return client


@pytest.fixture()
def captcha_verifier() -> AsyncMock:
    verifier = AsyncMock(spec=RecaptchaVerifier)
    verifier.verify.return_value = True
    return verifier


@pytest.fixture()
def faucet_service(
    faucet_config: FaucetConfig,
    store: MemoryFaucetStore,
    rpc_client: AsyncMock,
    captcha_verifier: AsyncMock,
    clock: FakeClock,
) -> FaucetService:
    return FaucetService(faucet_config, store, rpc_client, captcha_verifier, clock=clock)


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def client(app: FastAPI, faucet_service: FaucetService) -> Iterator[TestClient]:
    app.dependency_overrides[get_faucet_service] = lambda: faucet_service
    try:
        with TestClient(app, base_url="http://test") as test_client:
            yield test_client
    finally:
        app.dependency_overrides.pop(get_faucet_service, None)
