"""Octra node RPC client.

This module provides the OctraRpcClient class that handles all communication
between the faucet and the Octra node. It includes:

- Account reads (balance and nonce) parsed into typed results
- Transaction submission with tolerant response parsing
- Bounded timeouts on every request; nothing is retried
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any

import httpx

from octra_faucet.core.config import FaucetConfig
from octra_faucet.services.transaction import Transaction

# Configure logger for this module
logger = logging.getLogger(__name__)

# HTTP status codes
HTTP_OK = 200

_OK_HASH_PATTERN = re.compile(r"OK\s+([0-9a-fA-F]{64})")


class RpcError(RuntimeError):
    """Base exception raised for node RPC failures."""


class RpcUnavailableError(RpcError):
    """Raised when the balance or nonce of the faucet account cannot be read."""


@dataclass(frozen=True)
class AccountInfo:
    """Typed view of the node's `/address/<addr>` response."""

    balance: float
    nonce: int

    @classmethod
    def from_payload(cls, payload: Any) -> AccountInfo:
        """Parse a decoded JSON body, defaulting absent fields to zero.

        Raises:
            ValueError: If the body is not an object or a field is malformed.
        """
        if not isinstance(payload, dict):
            raise ValueError("Account response is not a JSON object")

        raw_balance = payload.get("balance")
        if raw_balance in (None, ""):
            balance = 0.0
        elif isinstance(raw_balance, bool):
            raise ValueError("Account balance must be numeric")
        else:
            balance = float(raw_balance)

        raw_nonce = payload.get("nonce")
        if raw_nonce in (None, ""):
            nonce = 0
        elif isinstance(raw_nonce, bool):
            raise ValueError("Account nonce must be an integer")
        else:
            nonce = int(raw_nonce)

        return cls(balance=balance, nonce=nonce)


@dataclass(frozen=True)
class SubmitResult:
    """Outcome of a transaction submission."""

    success: bool
    hash: str | None = None
    error: str | None = None


def parse_submit_response(status_code: int, body: str) -> SubmitResult:
    """Extract a transaction hash from a submit response.

    Strategies are tried in order: a JSON body with ``status == "accepted"``,
    a plain-text ``OK <64 hex>`` line, then the raw body. The last one exists
    because the node does not commit to a single success shape.
    """
    if status_code != HTTP_OK:
        return SubmitResult(success=False, error=body)

    try:
        data = json.loads(body)
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("status") == "accepted" and data.get("tx_hash"):
        return SubmitResult(success=True, hash=str(data["tx_hash"]))

    match = _OK_HASH_PATTERN.search(body)
    if match:
        return SubmitResult(success=True, hash=match.group(1))

    logger.warning("Submit response matched no known shape; using raw body", extra={"body": body})
    return SubmitResult(success=True, hash=body)


class OctraRpcClient:
    """HTTP client wrapper for Octra node interactions."""

    def __init__(
        self,
        config: FaucetConfig,
        *,
        client: httpx.AsyncClient | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self._client = client
        self._owns_client = client is None
        self._client_lock = asyncio.Lock()
        self._log = log or logger

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.rpc_url,
                    timeout=httpx.Timeout(self.config.rpc_read_timeout_seconds),
                )
        return self._client

    def _account_path(self) -> str:
        return f"/address/{self.config.faucet_address}"

    async def fetch_account(self) -> AccountInfo:
        """Read balance and nonce of the faucet account.

        Raises:
            RpcUnavailableError: On network failure, a non-200 status or a
                malformed body.
        """
        client = await self._ensure_client()
        path = self._account_path()
        try:
            response = await client.get(
                path,
                timeout=httpx.Timeout(self.config.rpc_read_timeout_seconds),
            )
        except httpx.HTTPError as exc:
            self._log.error(
                "Failed to fetch faucet account",
                extra={"address": self.config.faucet_address, "path": path, "error": str(exc)},
            )
            raise RpcUnavailableError(f"Unable to fetch faucet account: {exc}") from exc

        if response.status_code != HTTP_OK:
            self._log.error(
                "Unexpected account response",
                extra={"status": response.status_code, "body": response.text},
            )
            raise RpcUnavailableError(
                f"Node responded with {response.status_code} for account lookup"
            )

        try:
            account = AccountInfo.from_payload(response.json())
        except (TypeError, ValueError) as exc:
            self._log.error("Malformed account response", extra={"body": response.text})
            raise RpcUnavailableError(f"Malformed account response: {exc}") from exc

        self._log.info(
            "Faucet account fetched",
            extra={"balance": account.balance, "nonce": account.nonce},
        )
        return account

    async def fetch_balance(self) -> float:
        """Return the faucet balance in whole tokens."""
        return (await self.fetch_account()).balance

    async def fetch_nonce(self) -> int:
        """Return the faucet account's current on-chain nonce."""
        return (await self.fetch_account()).nonce

    async def submit(self, transaction: Transaction) -> SubmitResult:
        """Submit a signed transaction. Failures are returned, not raised."""
        client = await self._ensure_client()
        try:
            response = await client.post(
                "/send-tx",
                json=transaction.to_wire(),
                timeout=httpx.Timeout(self.config.rpc_submit_timeout_seconds),
            )
        except httpx.HTTPError as exc:
            self._log.error(
                "Send transaction error",
                extra={"recipient": transaction.recipient, "error": str(exc)},
            )
            return SubmitResult(success=False, error=str(exc) or exc.__class__.__name__)

        result = parse_submit_response(response.status_code, response.text)
        if result.success:
            self._log.info("Transaction accepted", extra={"tx_hash": result.hash})
        else:
            self._log.error(
                "Transaction rejected",
                extra={"status": response.status_code, "body": response.text},
            )
        return result

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""
        async with self._client_lock:
            if self._client is not None and self._owns_client:
                await self._client.aclose()
            self._client = None
