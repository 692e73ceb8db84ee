"""Immutable faucet configuration built from `Settings`.

`FaucetConfig` is constructed once at process start and handed to every
component constructor, so no service reads environment state on its own.

Example:
    from octra_faucet.core.config import load_faucet_config
    config = load_faucet_config()
    print(config.faucet_address)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from octra_faucet.core.settings import Settings, settings as default_settings
from octra_faucet.services.crypto import CryptoService

logger = logging.getLogger(__name__)

REQUIRED_VARIABLES = ("FAUCET_PRIVATE_KEY", "FAUCET_PUBLIC_KEY", "FAUCET_ADDRESS")


class ConfigurationError(RuntimeError):
    """Raised when required faucet configuration is missing or inconsistent."""


@dataclass(frozen=True)
class FaucetConfig:
    """Immutable configuration for faucet operations."""

    faucet_address: str
    signing_seed: bytes = field(repr=False)
    public_key: bytes
    rpc_url: str
    rpc_read_timeout_seconds: float
    rpc_submit_timeout_seconds: float
    amount: float
    address_cooldown_seconds: int
    ip_cooldown_seconds: int
    recaptcha_secret: str | None = field(repr=False)
    recaptcha_verify_url: str
    recaptcha_timeout_seconds: float


def missing_variables(source: Settings) -> list[str]:
    """Return the names of required variables that are unset or blank."""
    values = {
        "FAUCET_PRIVATE_KEY": source.faucet_private_key,
        "FAUCET_PUBLIC_KEY": source.faucet_public_key,
        "FAUCET_ADDRESS": source.faucet_address,
    }
    return [name for name in REQUIRED_VARIABLES if not (values[name] or "").strip()]


def load_faucet_config(source: Settings | None = None) -> FaucetConfig:
    """Build configuration object from settings.

    Raises:
        ConfigurationError: If signing material or the faucet address is
            missing, malformed, or the key pair does not match.
    """
    source = source or default_settings
    missing = missing_variables(source)
    if missing:
        raise ConfigurationError(
            "Missing required environment variables: " + ", ".join(missing)
        )

    try:
        seed = CryptoService.decode_private_seed(source.faucet_private_key or "")
        public_key = CryptoService.validate_and_decode_pubkey(source.faucet_public_key or "")
    except ValueError as err:
        raise ConfigurationError(f"Invalid faucet key material: {err}") from err

    if CryptoService.public_key_from_seed(seed) != public_key:
        raise ConfigurationError("FAUCET_PUBLIC_KEY does not match FAUCET_PRIVATE_KEY")

    recaptcha_secret = (source.recaptcha_secret_key or "").strip() or None
    if recaptcha_secret is None:
        logger.error("RECAPTCHA_SECRET_KEY is not configured; every claim will be rejected")

    config = FaucetConfig(
        faucet_address=(source.faucet_address or "").strip(),
        signing_seed=seed,
        public_key=public_key,
        rpc_url=source.octra_rpc_url.rstrip("/"),
        rpc_read_timeout_seconds=float(source.rpc_read_timeout_seconds),
        rpc_submit_timeout_seconds=float(source.rpc_submit_timeout_seconds),
        amount=float(source.faucet_amount),
        address_cooldown_seconds=int(source.address_cooldown_seconds),
        ip_cooldown_seconds=int(source.ip_cooldown_seconds),
        recaptcha_secret=recaptcha_secret,
        recaptcha_verify_url=source.recaptcha_verify_url,
        recaptcha_timeout_seconds=float(source.recaptcha_timeout_seconds),
    )
    logger.info(
        "Faucet configuration loaded",
        extra={"faucet_address": config.faucet_address, "rpc_url": config.rpc_url},
    )
    return config
