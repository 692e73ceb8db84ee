"""Tests for claim orchestration, eligibility and statistics."""

from __future__ import annotations

import asyncio
import json
import logging
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from pytest_mock import MockerFixture

from octra_faucet.services.faucet import (
    ADDRESS_KEY_PREFIX,
    IP_KEY_PREFIX,
    STATS_LAST_CLAIM,
    TREASURY_EXHAUSTED_MESSAGE,
    UNAVAILABLE_MESSAGE,
    ClaimErrorKind,
    FaucetService,
)
from octra_faucet.services.rpc import OctraRpcClient, RpcUnavailableError, SubmitResult
from octra_faucet.services.store import MemoryFaucetStore, StoreUnavailableError
from octra_faucet.services.transaction import TransactionBuilder
from tests.conftest import START_TIME, TEST_RECIPIENT, TEST_TX_HASH, FakeClock

CLIENT_IP = "198.51.100.7"
OTHER_ADDRESS = "octOtherRecipient22222222222222222222222222"


@pytest.mark.asyncio
async def test_successful_claim_uses_next_nonce(
    faucet_service: FaucetService, rpc_client: AsyncMock
) -> None:
    result = await faucet_service.claim(TEST_RECIPIENT, CLIENT_IP)

    assert result.success is True
    assert result.tx_hash == TEST_TX_HASH
    assert result.kind is None

    rpc_client.submit.assert_awaited_once()
    tx = rpc_client.submit.await_args.args[0]
    assert tx.nonce == 42
    assert tx.recipient == TEST_RECIPIENT
    assert tx.amount == "500000"


@pytest.mark.asyncio
async def test_repeat_claim_within_address_cooldown_is_rejected(
    faucet_service: FaucetService, rpc_client: AsyncMock, clock: FakeClock
) -> None:
    assert (await faucet_service.claim(TEST_RECIPIENT, CLIENT_IP)).success
    clock.advance(60)

    result = await faucet_service.claim(TEST_RECIPIENT, "192.0.2.50")

    assert result.success is False
    assert result.kind is ClaimErrorKind.RATE_LIMITED
    assert result.error == "Address rate limit exceeded. You can claim again in 24 hours."
    assert result.next_claim_time == int(START_TIME) + 86_400
    assert rpc_client.submit.await_count == 1


@pytest.mark.asyncio
async def test_ip_cooldown_blocks_second_address(
    faucet_service: FaucetService, rpc_client: AsyncMock
) -> None:
    assert (await faucet_service.claim(TEST_RECIPIENT, CLIENT_IP)).success

    result = await faucet_service.claim(OTHER_ADDRESS, CLIENT_IP)

    assert result.kind is ClaimErrorKind.RATE_LIMITED
    assert result.error == "IP rate limit exceeded. You can claim again in 1 hour."
    assert result.next_claim_time == int(START_TIME) + 3_600
    assert rpc_client.submit.await_count == 1


@pytest.mark.asyncio
async def test_claim_allowed_after_cooldowns_elapse(
    faucet_service: FaucetService, clock: FakeClock
) -> None:
    assert (await faucet_service.claim(TEST_RECIPIENT, CLIENT_IP)).success
    clock.advance(86_400)
    assert (await faucet_service.claim(TEST_RECIPIENT, CLIENT_IP)).success


@pytest.mark.asyncio
async def test_stale_record_is_taken_over(
    faucet_service: FaucetService, store: MemoryFaucetStore
) -> None:
    """A cooldown record older than its window does not block a claim."""
    await store.set_value(f"{ADDRESS_KEY_PREFIX}{TEST_RECIPIENT}", str(int(START_TIME) - 90_000))

    result = await faucet_service.claim(TEST_RECIPIENT, CLIENT_IP)

    assert result.success is True
    assert await store.get(f"{ADDRESS_KEY_PREFIX}{TEST_RECIPIENT}") == float(int(START_TIME))


@pytest.mark.asyncio
async def test_treasury_exhausted_builds_nothing(
    make_config, store: MemoryFaucetStore, rpc_client: AsyncMock, captcha_verifier: AsyncMock,
    clock: FakeClock,
) -> None:
    rpc_client.fetch_balance.return_value = 0.1
    builder = MagicMock(spec=TransactionBuilder)
    service = FaucetService(
        make_config(amount=10.0), store, rpc_client, captcha_verifier, builder=builder, clock=clock
    )

    result = await service.claim(TEST_RECIPIENT, CLIENT_IP)

    assert result.kind is ClaimErrorKind.TREASURY_EXHAUSTED
    assert result.error == TREASURY_EXHAUSTED_MESSAGE
    builder.build.assert_not_called()
    rpc_client.submit.assert_not_awaited()
    # Both reservations released.
    assert await store.get(f"{ADDRESS_KEY_PREFIX}{TEST_RECIPIENT}") is None
    assert await store.get(f"{IP_KEY_PREFIX}{CLIENT_IP}") is None


@pytest.mark.asyncio
async def test_balance_equal_to_amount_is_enough(
    faucet_service: FaucetService, rpc_client: AsyncMock
) -> None:
    rpc_client.fetch_balance.return_value = 0.5
    assert (await faucet_service.claim(TEST_RECIPIENT, CLIENT_IP)).success


@pytest.mark.asyncio
async def test_balance_unavailable_is_upstream_error(
    faucet_service: FaucetService, rpc_client: AsyncMock, store: MemoryFaucetStore
) -> None:
    rpc_client.fetch_balance.side_effect = RpcUnavailableError("node down")

    result = await faucet_service.claim(TEST_RECIPIENT, CLIENT_IP)

    assert result.kind is ClaimErrorKind.UPSTREAM
    assert result.error == "Unable to fetch faucet balance"
    assert await store.get(f"{ADDRESS_KEY_PREFIX}{TEST_RECIPIENT}") is None


@pytest.mark.asyncio
async def test_nonce_unavailable_is_upstream_error(
    faucet_service: FaucetService, rpc_client: AsyncMock
) -> None:
    rpc_client.fetch_nonce.side_effect = RpcUnavailableError("node down")

    result = await faucet_service.claim(TEST_RECIPIENT, CLIENT_IP)

    assert result.kind is ClaimErrorKind.UPSTREAM
    assert result.error == "Unable to fetch faucet nonce"
    rpc_client.submit.assert_not_awaited()


@pytest.mark.asyncio
async def test_submit_failure_releases_cooldowns(
    faucet_service: FaucetService, rpc_client: AsyncMock, store: MemoryFaucetStore
) -> None:
    rpc_client.submit.return_value = SubmitResult(success=False, error="nonce too low")

    result = await faucet_service.claim(TEST_RECIPIENT, CLIENT_IP)

    assert result.kind is ClaimErrorKind.UPSTREAM
    assert result.error == "nonce too low"
    assert await store.get(f"{ADDRESS_KEY_PREFIX}{TEST_RECIPIENT}") is None
    assert await store.get(f"{IP_KEY_PREFIX}{CLIENT_IP}") is None

    rpc_client.submit.return_value = SubmitResult(success=True, hash=TEST_TX_HASH)
    assert (await faucet_service.claim(TEST_RECIPIENT, CLIENT_IP)).success


@pytest.mark.asyncio
async def test_submit_failure_without_message(
    faucet_service: FaucetService, rpc_client: AsyncMock
) -> None:
    rpc_client.submit.return_value = SubmitResult(success=False)
    result = await faucet_service.claim(TEST_RECIPIENT, CLIENT_IP)
    assert result.error == "Transaction failed"


@pytest.mark.asyncio
async def test_store_outage_fails_closed(
    faucet_config, rpc_client: AsyncMock, captcha_verifier: AsyncMock, clock: FakeClock
) -> None:
    broken = AsyncMock(spec=MemoryFaucetStore)
    broken.reserve.side_effect = StoreUnavailableError("redis down")
    service = FaucetService(faucet_config, broken, rpc_client, captcha_verifier, clock=clock)

    result = await service.claim(TEST_RECIPIENT, CLIENT_IP)

    assert result.success is False
    assert result.kind is ClaimErrorKind.INTERNAL
    assert result.error == UNAVAILABLE_MESSAGE
    rpc_client.fetch_balance.assert_not_awaited()
    rpc_client.submit.assert_not_awaited()


@pytest.mark.asyncio
async def test_unexpected_error_is_internal(
    faucet_service: FaucetService, rpc_client: AsyncMock, store: MemoryFaucetStore
) -> None:
    rpc_client.submit.side_effect = RuntimeError("boom")

    result = await faucet_service.claim(TEST_RECIPIENT, CLIENT_IP)

    assert result.kind is ClaimErrorKind.INTERNAL
    assert result.error == "Internal server error"
    assert await store.get(f"{ADDRESS_KEY_PREFIX}{TEST_RECIPIENT}") is None


@pytest.mark.asyncio
async def test_post_claim_write_failure_is_logged_not_raised(
    faucet_config,
    store: MemoryFaucetStore,
    rpc_client: AsyncMock,
    captcha_verifier: AsyncMock,
    clock: FakeClock,
    caplog: pytest.LogCaptureFixture,
    mocker: MockerFixture,
) -> None:
    mocker.patch.object(store, "incr_float", side_effect=StoreUnavailableError("redis down"))
    service = FaucetService(faucet_config, store, rpc_client, captcha_verifier, clock=clock)

    with caplog.at_level(logging.ERROR, logger="octra_faucet.services.faucet"):
        result = await service.claim(TEST_RECIPIENT, CLIENT_IP)

    assert result.success is True
    assert result.tx_hash == TEST_TX_HASH
    assert any(
        record.getMessage() == "Post-claim write failed" and record.write == "total_claimed"
        for record in caplog.records
    )
    assert await store.get(f"{ADDRESS_KEY_PREFIX}{TEST_RECIPIENT}") == float(int(START_TIME))


@pytest.mark.asyncio
async def test_success_updates_statistics(
    faucet_service: FaucetService, store: MemoryFaucetStore, clock: FakeClock
) -> None:
    assert (await faucet_service.claim(TEST_RECIPIENT, CLIENT_IP)).success
    clock.advance(86_400)
    assert (await faucet_service.claim(TEST_RECIPIENT, CLIENT_IP)).success
    assert (await faucet_service.claim(OTHER_ADDRESS, "192.0.2.1")).success

    stats = await faucet_service.get_stats()

    assert stats.total_claimed == pytest.approx(1.5)
    assert stats.total_transactions == 3
    assert stats.total_users == 2
    assert stats.faucet_balance == 1_000.0
    assert stats.last_claim == "2023-11-15T22:13:20.000Z"
    assert await store.get_transaction(f"faucet:tx:{TEST_TX_HASH}") == {
        "address": OTHER_ADDRESS,
        "amount": "0.5",
        "timestamp": "2023-11-15T22:13:20.000Z",
    }


@pytest.mark.asyncio
async def test_stats_are_read_only(
    faucet_service: FaucetService, rpc_client: AsyncMock
) -> None:
    first = await faucet_service.get_stats()
    second = await faucet_service.get_stats()
    assert first == second
    assert first.total_transactions == 0
    assert first.last_claim is None
    rpc_client.submit.assert_not_awaited()


@pytest.mark.asyncio
async def test_stats_degrade_when_sources_fail(
    faucet_service: FaucetService, rpc_client: AsyncMock, store: MemoryFaucetStore
) -> None:
    rpc_client.fetch_balance.side_effect = RpcUnavailableError("node down")
    await store.set_value("faucet:stats:totalUsers", "not-a-number")
    await store.set_value(STATS_LAST_CLAIM, "2024-01-01T00:00:00.000Z")

    stats = await faucet_service.get_stats()

    assert stats.faucet_balance == 0.0
    assert stats.total_users == 0
    assert stats.last_claim == "2024-01-01T00:00:00.000Z"


@pytest.mark.asyncio
async def test_eligibility_tracks_address_cooldown(
    faucet_service: FaucetService, clock: FakeClock, rpc_client: AsyncMock
) -> None:
    assert (await faucet_service.check_eligibility(TEST_RECIPIENT)).eligible is True

    await faucet_service.claim(TEST_RECIPIENT, CLIENT_IP)
    clock.advance(3_600)
    blocked = await faucet_service.check_eligibility(TEST_RECIPIENT)

    assert blocked.eligible is False
    assert blocked.reason == "Address rate limit active"
    assert blocked.next_claim_time == int(START_TIME) + 86_400

    clock.advance(86_400 - 3_600)
    assert (await faucet_service.check_eligibility(TEST_RECIPIENT)).eligible is True
    assert rpc_client.submit.await_count == 1


@pytest.mark.asyncio
async def test_eligibility_store_outage(
    faucet_config, rpc_client: AsyncMock, captcha_verifier: AsyncMock
) -> None:
    broken = AsyncMock(spec=MemoryFaucetStore)
    broken.get.side_effect = StoreUnavailableError("redis down")
    service = FaucetService(faucet_config, broken, rpc_client, captcha_verifier)

    result = await service.check_eligibility(TEST_RECIPIENT)

    assert result.eligible is False
    assert result.reason == "Unable to check eligibility"


@pytest.mark.asyncio
async def test_submit_claim_rejects_failed_captcha(
    faucet_service: FaucetService, captcha_verifier: AsyncMock, rpc_client: AsyncMock,
    store: MemoryFaucetStore,
) -> None:
    captcha_verifier.verify.return_value = False

    result = await faucet_service.submit_claim(TEST_RECIPIENT, "bad-token", CLIENT_IP)

    assert result.kind is ClaimErrorKind.CAPTCHA
    assert result.error == "reCAPTCHA verification failed"
    captcha_verifier.verify.assert_awaited_once_with("bad-token", CLIENT_IP)
    rpc_client.fetch_balance.assert_not_awaited()
    assert await store.get(f"{ADDRESS_KEY_PREFIX}{TEST_RECIPIENT}") is None


@pytest.mark.asyncio
async def test_submit_claim_runs_pipeline_after_captcha(
    faucet_service: FaucetService, rpc_client: AsyncMock
) -> None:
    result = await faucet_service.submit_claim(TEST_RECIPIENT, "good-token", CLIENT_IP)
    assert result.success is True
    assert result.tx_hash == TEST_TX_HASH
    rpc_client.submit.assert_awaited_once()


@pytest.mark.asyncio
async def test_end_to_end_claim_against_node(
    faucet_config, store: MemoryFaucetStore, captcha_verifier: AsyncMock, clock: FakeClock
) -> None:
    """Real RPC client over a mocked node: nonce 41 is followed by nonce 42."""
    submitted: list[dict] = []

    def node(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, json={"balance": "100.5", "nonce": 41})
        submitted.append(json.loads(request.content))
        return httpx.Response(200, json={"status": "accepted", "tx_hash": TEST_TX_HASH})

    http = httpx.AsyncClient(
        base_url=faucet_config.rpc_url, transport=httpx.MockTransport(node)
    )
    rpc = OctraRpcClient(faucet_config, client=http)
    service = FaucetService(faucet_config, store, rpc, captcha_verifier, clock=clock)

    result = await service.submit_claim(TEST_RECIPIENT, "captcha-ok", CLIENT_IP)

    assert result.success is True
    assert result.tx_hash == TEST_TX_HASH
    assert submitted[0]["nonce"] == 42
    assert submitted[0]["to_"] == TEST_RECIPIENT
    assert (await service.check_eligibility(TEST_RECIPIENT)).eligible is False

    clock.advance(60)
    again = await service.submit_claim(TEST_RECIPIENT, "captcha-ok", CLIENT_IP)

    assert again.kind is ClaimErrorKind.RATE_LIMITED
    assert len(submitted) == 1
    await http.aclose()


@pytest.mark.asyncio
async def test_concurrent_claims_for_one_address_pay_once(
    faucet_service: FaucetService, rpc_client: AsyncMock
) -> None:
    results = await asyncio.gather(
        *(faucet_service.claim(TEST_RECIPIENT, f"203.0.113.{index}") for index in range(5))
    )

    assert [result.success for result in results].count(True) == 1
    assert all(
        result.kind is ClaimErrorKind.RATE_LIMITED for result in results if not result.success
    )
    assert rpc_client.submit.await_count == 1


@pytest.mark.asyncio
async def test_concurrent_takeover_of_stale_record_pays_once(
    faucet_service: FaucetService, rpc_client: AsyncMock, store: MemoryFaucetStore
) -> None:
    await store.set_value(f"{ADDRESS_KEY_PREFIX}{TEST_RECIPIENT}", str(int(START_TIME) - 90_000))

    results = await asyncio.gather(
        faucet_service.claim(TEST_RECIPIENT, "203.0.113.1"),
        faucet_service.claim(TEST_RECIPIENT, "203.0.113.2"),
    )

    assert [result.success for result in results].count(True) == 1
    rejected = next(result for result in results if not result.success)
    assert rejected.kind is ClaimErrorKind.RATE_LIMITED
    assert rejected.next_claim_time == int(START_TIME) + 86_400
    assert rpc_client.submit.await_count == 1
