# src/octra_faucet/scripts/check_env.py
"""Report whether the faucet environment is complete, without printing secrets."""

from __future__ import annotations

import argparse

from octra_faucet.core.config import ConfigurationError, load_faucet_config, missing_variables
from octra_faucet.core.settings import Settings


def collect_report(source: Settings) -> tuple[list[str], bool]:
    """Return human-readable report lines and whether the configuration is usable."""
    lines = [
        f"REDIS_URL: {source.redis_url}",
        f"OCTRA_RPC_URL: {source.octra_rpc_url}",
        f"FAUCET_ADDRESS: {source.faucet_address or 'NOT SET'}",
        f"FAUCET_PRIVATE_KEY: {'SET' if source.faucet_private_key else 'NOT SET'}",
        f"FAUCET_PUBLIC_KEY: {'SET' if source.faucet_public_key else 'NOT SET'}",
        f"RECAPTCHA_SECRET_KEY: {'SET' if source.recaptcha_configured else 'NOT SET'}",
        f"TRUST_PROXY: {source.trust_proxy}",
    ]

    missing = missing_variables(source)
    if missing:
        lines.append("Missing required variables: " + ", ".join(missing))
        return lines, False

    try:
        load_faucet_config(source)
    except ConfigurationError as err:
        lines.append(f"Configuration error: {err}")
        return lines, False

    if not source.recaptcha_configured:
        lines.append("Warning: claims will be rejected until RECAPTCHA_SECRET_KEY is set")
    lines.append("Key material is consistent")
    return lines, True


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Check faucet environment configuration")
    parser.add_argument("--env-file", default=".env", help="Path to the .env file to read")
    args = parser.parse_args(argv)

    source = Settings(_env_file=args.env_file)  # type: ignore[call-arg]
    lines, ok = collect_report(source)
    for line in lines:
        print(line)
    return 0 if ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
