# src/octra_faucet/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import faucet_router

__all__ = ["faucet_router"]
