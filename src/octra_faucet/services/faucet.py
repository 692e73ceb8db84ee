"""Claim orchestration: cooldowns, treasury checks, disbursement and statistics."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from octra_faucet.core.config import FaucetConfig
from octra_faucet.services.captcha import RecaptchaVerifier
from octra_faucet.services.rpc import OctraRpcClient, RpcUnavailableError
from octra_faucet.services.store import FaucetStore, StoreUnavailableError
from octra_faucet.services.transaction import TransactionBuilder

logger = logging.getLogger(__name__)

ADDRESS_KEY_PREFIX = "faucet:address:"
IP_KEY_PREFIX = "faucet:ip:"
USER_KEY_PREFIX = "faucet:user:"
TX_KEY_PREFIX = "faucet:tx:"
STATS_TOTAL_CLAIMED = "faucet:stats:totalClaimed"
STATS_TOTAL_USERS = "faucet:stats:totalUsers"
STATS_TOTAL_TRANSACTIONS = "faucet:stats:totalTransactions"
STATS_LAST_CLAIM = "faucet:stats:lastClaim"

CAPTCHA_FAILED_MESSAGE = "reCAPTCHA verification failed"
TREASURY_EXHAUSTED_MESSAGE = "Faucet is temporarily out of funds. Please try again later."
INTERNAL_ERROR_MESSAGE = "Internal server error"
UNAVAILABLE_MESSAGE = "Faucet is temporarily unavailable. Please try again later."


class ClaimErrorKind(str, Enum):
    """Why a claim did not result in a disbursement."""

    VALIDATION = "validation_error"
    CAPTCHA = "captcha_failed"
    RATE_LIMITED = "rate_limited"
    TREASURY_EXHAUSTED = "treasury_exhausted"
    UPSTREAM = "upstream_error"
    INTERNAL = "internal_error"


@dataclass(frozen=True)
class ClaimResult:
    """Outcome of a claim attempt."""

    success: bool
    tx_hash: str | None = None
    error: str | None = None
    kind: ClaimErrorKind | None = None
    next_claim_time: int | None = None

    @classmethod
    def failed(
        cls, kind: ClaimErrorKind, error: str, *, next_claim_time: int | None = None
    ) -> ClaimResult:
        return cls(success=False, error=error, kind=kind, next_claim_time=next_claim_time)


@dataclass(frozen=True)
class Eligibility:
    """Read-only cooldown check for an address."""

    eligible: bool
    reason: str | None = None
    next_claim_time: int | None = None


@dataclass(frozen=True)
class FaucetStats:
    """Aggregate faucet counters."""

    total_claimed: float
    total_users: int
    total_transactions: int
    faucet_balance: float
    last_claim: str | None


def _format_window(seconds: int) -> str:
    if seconds % 3600 == 0:
        hours = seconds // 3600
        return f"{hours} hour" if hours == 1 else f"{hours} hours"
    if seconds % 60 == 0:
        minutes = seconds // 60
        return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"
    return f"{seconds} seconds"


def _isoformat(timestamp: float) -> str:
    moment = datetime.fromtimestamp(timestamp, UTC)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class FaucetService:
    """Decides claim eligibility and executes disbursements."""

    def __init__(
        self,
        config: FaucetConfig,
        store: FaucetStore,
        rpc: OctraRpcClient,
        verifier: RecaptchaVerifier,
        *,
        builder: TransactionBuilder | None = None,
        clock: Callable[[], float] = time.time,
        log: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self._store = store
        self._rpc = rpc
        self._verifier = verifier
        self._builder = builder or TransactionBuilder()
        self._clock = clock
        self._log = log or logger

    async def submit_claim(self, address: str, captcha_token: str, client_ip: str) -> ClaimResult:
        """Verify the CAPTCHA token, then run the claim pipeline."""
        self._log.info("Faucet claim attempt", extra={"address": address, "client_ip": client_ip})
        if not await self._verifier.verify(captcha_token, client_ip):
            self._log.warning(
                "Invalid reCAPTCHA attempt",
                extra={"address": address, "client_ip": client_ip},
            )
            return ClaimResult.failed(ClaimErrorKind.CAPTCHA, CAPTCHA_FAILED_MESSAGE)

        result = await self.claim(address, client_ip)
        if result.success:
            self._log.info(
                "Successful faucet claim",
                extra={"address": address, "client_ip": client_ip, "tx_hash": result.tx_hash},
            )
        else:
            self._log.warning(
                "Failed faucet claim",
                extra={
                    "address": address,
                    "client_ip": client_ip,
                    "error_kind": result.kind.value if result.kind else None,
                },
            )
        return result

    async def claim(self, address: str, client_ip: str) -> ClaimResult:
        """Disburse the configured amount to `address` if both cooldowns allow it.

        The address and IP cooldown records are reserved atomically before any
        funds move, and released again if the claim does not go through.
        """
        now = int(self._clock())
        reserved: list[str] = []
        committed = False
        try:
            rejection = await self._reserve(
                f"{ADDRESS_KEY_PREFIX}{address}",
                now,
                self.config.address_cooldown_seconds,
                "Address",
                reserved,
            )
            if rejection is not None:
                return rejection

            rejection = await self._reserve(
                f"{IP_KEY_PREFIX}{client_ip}",
                now,
                self.config.ip_cooldown_seconds,
                "IP",
                reserved,
            )
            if rejection is not None:
                return rejection

            try:
                balance = await self._rpc.fetch_balance()
            except RpcUnavailableError:
                return ClaimResult.failed(ClaimErrorKind.UPSTREAM, "Unable to fetch faucet balance")

            if balance < self.config.amount:
                self._log.error(
                    "Insufficient faucet balance",
                    extra={"balance": balance, "required": self.config.amount},
                )
                return ClaimResult.failed(
                    ClaimErrorKind.TREASURY_EXHAUSTED, TREASURY_EXHAUSTED_MESSAGE
                )

            try:
                nonce = await self._rpc.fetch_nonce()
            except RpcUnavailableError:
                return ClaimResult.failed(ClaimErrorKind.UPSTREAM, "Unable to fetch faucet nonce")

            transaction = self._builder.build(
                self.config.faucet_address,
                address,
                self.config.amount,
                nonce + 1,
                self.config.signing_seed,
                self.config.public_key,
            )
            self._log.info(
                "Transaction created",
                extra={"nonce": transaction.nonce, "amount": transaction.amount, "ou": transaction.ou},
            )

            submitted = await self._rpc.submit(transaction)
            if not submitted.success or not submitted.hash:
                self._log.error(
                    "Transaction failed",
                    extra={"address": address, "error": submitted.error},
                )
                return ClaimResult.failed(
                    ClaimErrorKind.UPSTREAM, submitted.error or "Transaction failed"
                )

            committed = True
            await self._record_success(address, client_ip, submitted.hash, now)
            return ClaimResult(success=True, tx_hash=submitted.hash)
        except StoreUnavailableError:
            self._log.exception(
                "Rate limit store unavailable; denying claim",
                extra={"address": address, "client_ip": client_ip},
            )
            return ClaimResult.failed(ClaimErrorKind.INTERNAL, UNAVAILABLE_MESSAGE)
        except Exception:
            self._log.exception(
                "Claim tokens error",
                extra={"address": address, "client_ip": client_ip},
            )
            return ClaimResult.failed(ClaimErrorKind.INTERNAL, INTERNAL_ERROR_MESSAGE)
        finally:
            if not committed:
                await self._release(reserved, now)

    async def _reserve(
        self,
        key: str,
        now: int,
        cooldown_seconds: int,
        label: str,
        reserved: list[str],
    ) -> ClaimResult | None:
        held = await self._store.reserve(key, now, cooldown_seconds)
        if held is not None and now - held >= cooldown_seconds:
            # Record outlived its window without expiring; take it over unless
            # a concurrent claim already did.
            if await self._store.replace(key, held, now, cooldown_seconds):
                held = None
            else:
                held = await self._store.reserve(key, now, cooldown_seconds)

        if held is None:
            reserved.append(key)
            return None

        return ClaimResult.failed(
            ClaimErrorKind.RATE_LIMITED,
            f"{label} rate limit exceeded. You can claim again in "
            f"{_format_window(cooldown_seconds)}.",
            next_claim_time=int(held) + cooldown_seconds,
        )

    async def _release(self, keys: list[str], now: int) -> None:
        for key in keys:
            try:
                await self._store.release(key, now)
            except StoreUnavailableError:
                self._log.exception("Failed to release cooldown reservation", extra={"key": key})

    async def _record_success(self, address: str, client_ip: str, tx_hash: str, now: int) -> None:
        """Refresh cooldowns and update statistics; failures are logged only."""
        claimed_at = _isoformat(now)

        async def mark_user() -> None:
            if await self._store.set_if_absent(f"{USER_KEY_PREFIX}{address}", "1"):
                await self._store.incr(STATS_TOTAL_USERS)

        writes: dict[str, Awaitable[object]] = {
            "address_cooldown": self._store.set(
                f"{ADDRESS_KEY_PREFIX}{address}", now, self.config.address_cooldown_seconds
            ),
            "ip_cooldown": self._store.set(
                f"{IP_KEY_PREFIX}{client_ip}", now, self.config.ip_cooldown_seconds
            ),
            "total_claimed": self._store.incr_float(STATS_TOTAL_CLAIMED, self.config.amount),
            "total_transactions": self._store.incr(STATS_TOTAL_TRANSACTIONS),
            "total_users": mark_user(),
            "last_claim": self._store.set_value(STATS_LAST_CLAIM, claimed_at),
            "tx_record": self._store.record_transaction(
                f"{TX_KEY_PREFIX}{tx_hash}",
                {"address": address, "amount": str(self.config.amount), "timestamp": claimed_at},
            ),
        }
        outcomes = await asyncio.gather(*writes.values(), return_exceptions=True)
        for name, outcome in zip(writes, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                self._log.error(
                    "Post-claim write failed",
                    extra={"write": name, "address": address, "tx_hash": tx_hash, "error": str(outcome)},
                )

    async def check_eligibility(self, address: str) -> Eligibility:
        """Report whether `address` is outside its cooldown window."""
        now = int(self._clock())
        try:
            last_claim = await self._store.get(f"{ADDRESS_KEY_PREFIX}{address}")
        except StoreUnavailableError:
            self._log.exception("Check eligibility error", extra={"address": address})
            return Eligibility(eligible=False, reason="Unable to check eligibility")

        cooldown = self.config.address_cooldown_seconds
        if last_claim is None or now - last_claim >= cooldown:
            return Eligibility(eligible=True)

        return Eligibility(
            eligible=False,
            reason="Address rate limit active",
            next_claim_time=int(last_claim) + cooldown,
        )

    async def get_stats(self) -> FaucetStats:
        """Return aggregate counters; any field that cannot be read is zeroed."""
        total_claimed, total_users, total_transactions, last_claim, balance = await asyncio.gather(
            self._store.get_value(STATS_TOTAL_CLAIMED),
            self._store.get_value(STATS_TOTAL_USERS),
            self._store.get_value(STATS_TOTAL_TRANSACTIONS),
            self._store.get_value(STATS_LAST_CLAIM),
            self._rpc.fetch_balance(),
            return_exceptions=True,
        )
        return FaucetStats(
            total_claimed=self._coerce(total_claimed, float, 0.0, "totalClaimed"),
            total_users=self._coerce(total_users, int, 0, "totalUsers"),
            total_transactions=self._coerce(total_transactions, int, 0, "totalTransactions"),
            faucet_balance=self._coerce(balance, float, 0.0, "faucetBalance"),
            last_claim=last_claim if isinstance(last_claim, str) else None,
        )

    def _coerce(self, raw: object, kind: type, default: float | int, field_name: str) -> float | int:
        if isinstance(raw, BaseException):
            self._log.error("Get stats error", extra={"field": field_name, "error": str(raw)})
            return default
        if raw is None:
            return default
        try:
            return kind(raw)
        except (TypeError, ValueError):
            self._log.error("Corrupt statistics value", extra={"field": field_name, "value": raw})
            return default
