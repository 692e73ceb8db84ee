"""Version 1 endpoint routers."""

from .faucet import router as faucet_router

__all__ = ["faucet_router"]
