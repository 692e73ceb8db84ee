"""Service layer for the faucet backend."""
