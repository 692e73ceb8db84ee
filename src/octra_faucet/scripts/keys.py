# src/octra_faucet/scripts/keys.py
"""
Generate a development key pair for the faucet wallet.

Prints FAUCET_PRIVATE_KEY (base64 seed), FAUCET_PUBLIC_KEY (hex) and the
derived FAUCET_ADDRESS in `.env` format. These keys are for local
development only.
"""

from __future__ import annotations

import argparse
import base64
from pathlib import Path

from octra_faucet.services.crypto import CryptoService


def generate_env_lines() -> list[str]:
    """Return `.env` lines for a freshly generated key pair."""
    seed, public_key = CryptoService.generate_key_pair()
    return [
        f"FAUCET_PRIVATE_KEY={base64.b64encode(seed).decode()}",
        f"FAUCET_PUBLIC_KEY={public_key.hex()}",
        f"FAUCET_ADDRESS={CryptoService.derive_address(public_key)}",
    ]


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Generate development faucet keys")
    parser.add_argument(
        "--append-to",
        type=Path,
        default=None,
        help="Append the generated variables to this .env file instead of printing them",
    )
    args = parser.parse_args(argv)

    lines = generate_env_lines()
    if args.append_to is not None:
        with args.append_to.open("a", encoding="utf-8") as handle:
            handle.write("\n".join(lines) + "\n")
        print(f"Appended faucet keys to {args.append_to}")
    else:
        print("\n".join(lines))
    print("WARNING: these keys are for development only; never fund them on mainnet.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
