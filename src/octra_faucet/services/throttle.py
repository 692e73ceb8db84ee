"""Coarse per-IP request throttling on top of the faucet store."""

from __future__ import annotations

import logging

from octra_faucet.services.store import FaucetStore, StoreUnavailableError

logger = logging.getLogger(__name__)

THROTTLE_KEY_PREFIX = "faucet:throttle:"


class RequestThrottle:
    """Fixed-window request counter keyed by scope and client IP.

    A non-positive limit disables the throttle. If the store is down the
    request is let through; the claim pipeline has its own fail-closed checks.
    """

    def __init__(
        self,
        store: FaucetStore,
        *,
        scope: str,
        limit: int,
        window_seconds: int,
        log: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self.scope = scope
        self.limit = limit
        self.window_seconds = window_seconds
        self._log = log or logger

    @property
    def enabled(self) -> bool:
        return self.limit > 0 and self.window_seconds > 0

    async def allow(self, client_ip: str) -> bool:
        """Count a request from `client_ip` and report whether it is within the limit."""
        if not self.enabled:
            return True
        key = f"{THROTTLE_KEY_PREFIX}{self.scope}:{client_ip}"
        try:
            count = await self._store.hit(key, self.window_seconds)
        except StoreUnavailableError:
            self._log.exception("Throttle store unavailable", extra={"scope": self.scope})
            return True
        if count > self.limit:
            self._log.warning(
                "Request throttled",
                extra={"scope": self.scope, "client_ip": client_ip, "count": count},
            )
            return False
        return True
