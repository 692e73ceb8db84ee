"""Cryptographic services for the faucet wallet."""

from __future__ import annotations

import base64
import binascii
import hashlib

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

PUBKEY_LENGTH_BYTES = 32
SEED_LENGTH_BYTES = 32
SECRET_KEY_LENGTH_BYTES = 64
ADDRESS_PREFIX = "oct"
BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


class CryptoService:
    """Service handling Ed25519 key material and signatures."""

    @staticmethod
    def _decode_base64(data: str) -> bytes:
        """Decode a standard or URL-safe base64 string, accepting omitted padding."""
        padding = "=" * (-len(data) % 4)
        normalized = data.replace("-", "+").replace("_", "/") + padding
        try:
            return base64.b64decode(normalized, validate=True)
        except (binascii.Error, ValueError) as err:
            raise ValueError(f"Invalid base64 encoding: {err}") from err

    @staticmethod
    def _decode_hex(data: str) -> bytes:
        try:
            return bytes.fromhex(data)
        except ValueError as err:
            raise ValueError(f"Invalid hex encoding: {err}") from err

    @staticmethod
    def validate_and_decode_pubkey(pubkey_encoded: str) -> bytes:
        """Validate and decode an Ed25519 public key given as hex or base64."""
        cleaned = pubkey_encoded.strip()
        errors: list[str] = []
        for decoder in (
            CryptoService._decode_hex,
            CryptoService._decode_base64,
        ):
            try:
                result = decoder(cleaned)
            except ValueError as err:
                errors.append(str(err))
                continue
            if len(result) != PUBKEY_LENGTH_BYTES:
                errors.append("Ed25519 public keys must be 32 bytes")
                continue
            return result
        joined = "; ".join(errors) if errors else "unknown decoding error"
        raise ValueError(f"Invalid public key format: {joined}")

    @staticmethod
    def decode_private_seed(private_key_b64: str) -> bytes:
        """Decode a base64 private key into its 32-byte Ed25519 seed.

        Accepts either the bare seed or the 64-byte secret key layout
        (seed followed by public key).
        """
        raw = CryptoService._decode_base64(private_key_b64.strip())
        if len(raw) == SECRET_KEY_LENGTH_BYTES:
            return raw[:SEED_LENGTH_BYTES]
        if len(raw) != SEED_LENGTH_BYTES:
            raise ValueError(
                f"Ed25519 private keys must be {SEED_LENGTH_BYTES} or "
                f"{SECRET_KEY_LENGTH_BYTES} bytes, got {len(raw)}"
            )
        return raw

    @staticmethod
    def public_key_from_seed(seed: bytes) -> bytes:
        """Derive the raw public key bytes for a 32-byte seed."""
        private_key = Ed25519PrivateKey.from_private_bytes(seed)
        return private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    @staticmethod
    def sign_message(seed: bytes, message: bytes) -> bytes:
        """Sign a message with an Ed25519 seed.

        Args:
            seed: Raw 32-byte Ed25519 private seed
            message: Message to sign

        Returns:
            Raw 64-byte signature
        """
        try:
            private_key = Ed25519PrivateKey.from_private_bytes(seed)
        except ValueError as err:
            raise ValueError(f"Invalid private key: {err}") from err
        return private_key.sign(message)

    @staticmethod
    def verify(pubkey_bytes: bytes, message: bytes, signature: bytes) -> bool:
        """Verify an Ed25519 signature.

        Returns:
            True if signature is valid, False otherwise
        """
        try:
            pubkey = Ed25519PublicKey.from_public_bytes(pubkey_bytes)
            pubkey.verify(signature, message)
            return True
        except (InvalidSignature, ValueError):
            return False

    @staticmethod
    def generate_key_pair() -> tuple[bytes, bytes]:
        """Generate a new Ed25519 key pair.

        Returns:
            Tuple of (seed_bytes, public_key_bytes)
        """
        private_key = Ed25519PrivateKey.generate()
        seed = private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )
        public = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return seed, public

    @staticmethod
    def derive_address(pubkey_bytes: bytes) -> str:
        """Return the Octra address for a public key: "oct" + base58(sha256(pubkey))."""
        return ADDRESS_PREFIX + base58_encode(hashlib.sha256(pubkey_bytes).digest())


def base58_encode(data: bytes) -> str:
    """Encode bytes with the Bitcoin base58 alphabet."""
    if not data:
        return ""
    num = int.from_bytes(data, "big")
    encoded = ""
    while num > 0:
        num, remainder = divmod(num, 58)
        encoded = BASE58_ALPHABET[remainder] + encoded
    leading_zeros = len(data) - len(data.lstrip(b"\x00"))
    return "1" * leading_zeros + encoded
