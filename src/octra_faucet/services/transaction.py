"""Transaction construction and signing for Octra transfers."""

from __future__ import annotations

import base64
import json
import math
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from octra_faucet.services.crypto import CryptoService

MU_FACTOR = 1_000_000
OU_THRESHOLD = 1000
OU_STANDARD = "1"
OU_LARGE = "3"
TIMESTAMP_JITTER_SECONDS = 0.01


@dataclass(frozen=True)
class Transaction:
    """Signed transfer ready for submission to the node."""

    sender: str
    recipient: str
    amount: str
    nonce: int
    ou: str
    timestamp: float
    signature: str
    public_key: str

    def unsigned_payload(self) -> dict[str, Any]:
        """Return the signed fields in canonical order, using wire names."""
        return {
            "from": self.sender,
            "to_": self.recipient,
            "amount": self.amount,
            "nonce": self.nonce,
            "ou": self.ou,
            "timestamp": self.timestamp,
        }

    def canonical_message(self) -> bytes:
        """Return the exact bytes that were signed."""
        return canonical_json(self.unsigned_payload())

    def to_wire(self) -> dict[str, Any]:
        """Return the JSON body expected by the node's submit endpoint."""
        payload = self.unsigned_payload()
        payload["signature"] = self.signature
        payload["public_key"] = self.public_key
        return payload


def canonical_json(payload: dict[str, Any]) -> bytes:
    """Serialize a payload compactly, preserving key order."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def operational_unit(amount: float) -> str:
    """Return the operational unit tier the network uses to price a transfer."""
    return OU_STANDARD if amount < OU_THRESHOLD else OU_LARGE


def to_minor_units(amount: float) -> int:
    """Convert a token amount into integer micro-units, rounding down."""
    return math.floor(amount * MU_FACTOR)


class TransactionBuilder:
    """Builds and signs transfers from the faucet wallet."""

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        jitter: Callable[[], float] = random.random,
    ) -> None:
        self._clock = clock
        self._jitter = jitter

    def build(
        self,
        sender: str,
        recipient: str,
        amount: float,
        nonce: int,
        private_seed: bytes,
        public_key: bytes,
    ) -> Transaction:
        """Assemble and sign a transfer.

        Args:
            sender: Faucet address.
            recipient: Destination address.
            amount: Token amount; must be positive.
            nonce: Nonce to use, normally the on-chain nonce plus one.
            private_seed: 32-byte Ed25519 seed.
            public_key: 32-byte Ed25519 public key matching the seed.

        Returns:
            The signed `Transaction`.

        Raises:
            ValueError: If the amount is not positive or the key is invalid.
        """
        if amount <= 0:
            raise ValueError("Transaction amount must be positive")

        # Sub-second jitter keeps hashes of back-to-back transfers distinct.
        timestamp = self._clock() + self._jitter() * TIMESTAMP_JITTER_SECONDS
        unsigned = {
            "from": sender,
            "to_": recipient,
            "amount": str(to_minor_units(amount)),
            "nonce": int(nonce),
            "ou": operational_unit(amount),
            "timestamp": timestamp,
        }
        signature = CryptoService.sign_message(private_seed, canonical_json(unsigned))

        return Transaction(
            sender=sender,
            recipient=recipient,
            amount=unsigned["amount"],
            nonce=unsigned["nonce"],
            ou=unsigned["ou"],
            timestamp=timestamp,
            signature=base64.b64encode(signature).decode(),
            public_key=base64.b64encode(public_key).decode(),
        )
