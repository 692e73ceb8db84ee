"""reCAPTCHA verification for claim requests."""

from __future__ import annotations

import logging

import httpx

from octra_faucet.core.config import FaucetConfig

logger = logging.getLogger(__name__)


class RecaptchaVerifier:
    """Verifies client tokens against the reCAPTCHA `siteverify` endpoint.

    Every failure mode (missing secret, empty token, rejected token, HTTP or
    network error) collapses to ``False`` so callers cannot tell a
    misconfigured server from a bad token.
    """

    def __init__(
        self,
        config: FaucetConfig,
        *,
        client: httpx.AsyncClient | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self._secret = config.recaptcha_secret
        self._verify_url = config.recaptcha_verify_url
        self._timeout = httpx.Timeout(config.recaptcha_timeout_seconds)
        self._client = client
        self._owns_client = client is None
        self._log = log or logger

    @property
    def configured(self) -> bool:
        return bool(self._secret and self._secret.strip())

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def verify(self, token: str | None, client_ip: str) -> bool:
        """Return True only if the verification service accepts the token."""
        if not self.configured:
            self._log.error("reCAPTCHA secret key is not configured")
            return False

        if not token or not token.strip():
            self._log.warning("Empty reCAPTCHA token provided", extra={"client_ip": client_ip})
            return False

        form = {"secret": self._secret, "response": token, "remoteip": client_ip}
        try:
            response = await self._get_client().post(
                self._verify_url,
                data=form,
                timeout=self._timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except Exception as exc:  # any transport or decode failure counts as a rejection
            self._log.error(
                "reCAPTCHA verification error",
                extra={"client_ip": client_ip, "error": str(exc)},
            )
            return False

        if not isinstance(payload, dict) or payload.get("success") is not True:
            error_codes = payload.get("error-codes") if isinstance(payload, dict) else None
            self._log.warning(
                "reCAPTCHA verification failed",
                extra={"client_ip": client_ip, "error_codes": error_codes},
            )
            return False

        self._log.info("reCAPTCHA verification successful", extra={"client_ip": client_ip})
        return True

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
