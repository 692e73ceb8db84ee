"""Configuration for the faucet backend."""
