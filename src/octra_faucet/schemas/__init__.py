"""Pydantic schemas for the faucet API."""

from .faucet import (
    ClaimRequest,
    ClaimResponse,
    EligibilityResponse,
    ErrorResponse,
    StatsResponse,
)

__all__ = [
    "ClaimRequest",
    "ClaimResponse",
    "EligibilityResponse",
    "ErrorResponse",
    "StatsResponse",
]
