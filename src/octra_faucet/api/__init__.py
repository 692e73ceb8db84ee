"""HTTP API for the faucet backend."""
