"""Faucet request and response schemas."""

from __future__ import annotations

import re

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

ADDRESS_PATTERN = re.compile(r"^oct[a-zA-Z0-9]+$")
ADDRESS_MIN_LENGTH = 10
ADDRESS_MAX_LENGTH = 100


def is_valid_address(address: str) -> bool:
    """Return True if `address` looks like an Octra address."""
    candidate = address.strip()
    return (
        ADDRESS_MIN_LENGTH <= len(candidate) <= ADDRESS_MAX_LENGTH
        and ADDRESS_PATTERN.match(candidate) is not None
    )


class CamelModel(BaseModel):
    """Base model serialising snake_case fields as camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ClaimRequest(BaseModel):
    """Body of a claim submission."""

    address: str = Field(..., description="Octra address receiving the tokens")
    captcha_token: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("captchaToken", "recaptchaToken", "captcha_token"),
        description="Client-side reCAPTCHA token",
    )

    @field_validator("address")
    @classmethod
    def check_address(cls, value: str) -> str:
        value = value.strip()
        if not is_valid_address(value):
            raise ValueError("Invalid Octra address format")
        return value

    @field_validator("captcha_token")
    @classmethod
    def check_token(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("reCAPTCHA token is required")
        return value


class ClaimResponse(CamelModel):
    """Result of a claim attempt as returned to clients."""

    success: bool
    tx_hash: str | None = None
    error: str | None = None
    code: str | None = Field(None, description="Machine-readable failure kind")
    next_claim_time: int | None = Field(
        None, description="Unix time at which the blocking cooldown ends"
    )


class EligibilityResponse(CamelModel):
    """Cooldown status for an address."""

    eligible: bool
    reason: str | None = None
    next_claim_time: int | None = None


class StatsResponse(CamelModel):
    """Aggregate faucet statistics."""

    total_claimed: float
    total_users: int
    total_transactions: int
    faucet_balance: float
    last_claim: str | None = None


class ErrorResponse(BaseModel):
    """Generic error payload."""

    error: str
    details: list[dict[str, object]] | None = None
