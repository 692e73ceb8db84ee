"""Faucet claim, eligibility and statistics endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from octra_faucet.api.v1.dependencies import (
    ClientIpDep,
    FaucetServiceDep,
    enforce_claim_throttle,
    enforce_global_throttle,
)
from octra_faucet.schemas.faucet import (
    ClaimRequest,
    ClaimResponse,
    EligibilityResponse,
    ErrorResponse,
    StatsResponse,
    is_valid_address,
)
from octra_faucet.services.faucet import ClaimErrorKind, ClaimResult

router = APIRouter(
    prefix="/faucet",
    tags=["faucet"],
    dependencies=[Depends(enforce_global_throttle)],
)

_STATUS_BY_KIND = {
    ClaimErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ClaimErrorKind.CAPTCHA: status.HTTP_400_BAD_REQUEST,
    ClaimErrorKind.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    ClaimErrorKind.TREASURY_EXHAUSTED: status.HTTP_400_BAD_REQUEST,
    ClaimErrorKind.UPSTREAM: status.HTTP_400_BAD_REQUEST,
    ClaimErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _to_response(result: ClaimResult) -> ClaimResponse:
    return ClaimResponse(
        success=result.success,
        tx_hash=result.tx_hash,
        error=result.error,
        code=result.kind.value if result.kind else None,
        next_claim_time=result.next_claim_time,
    )


@router.get("/stats", response_model=StatsResponse)
async def get_stats(service: FaucetServiceDep) -> StatsResponse:
    """Return aggregate faucet statistics and the current treasury balance."""
    stats = await service.get_stats()
    return StatsResponse(
        total_claimed=stats.total_claimed,
        total_users=stats.total_users,
        total_transactions=stats.total_transactions,
        faucet_balance=stats.faucet_balance,
        last_claim=stats.last_claim,
    )


@router.get(
    "/eligibility/{address}",
    response_model=EligibilityResponse,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}},
)
async def get_eligibility(address: str, service: FaucetServiceDep) -> EligibilityResponse:
    """Report whether an address may claim now, and if not, when."""
    if not is_valid_address(address):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid address format",
        )
    eligibility = await service.check_eligibility(address.strip())
    return EligibilityResponse(
        eligible=eligibility.eligible,
        reason=eligibility.reason,
        next_claim_time=eligibility.next_claim_time,
    )


@router.post(
    "/claim",
    response_model=ClaimResponse,
    response_model_exclude_none=True,
    responses={
        400: {"model": ClaimResponse},
        429: {"model": ClaimResponse},
        500: {"model": ClaimResponse},
    },
    dependencies=[Depends(enforce_claim_throttle)],
)
async def claim(
    payload: ClaimRequest,
    client_ip: ClientIpDep,
    service: FaucetServiceDep,
) -> ClaimResponse | JSONResponse:
    """Verify the CAPTCHA and disburse tokens to the requested address."""
    result = await service.submit_claim(payload.address, payload.captcha_token, client_ip)
    response = _to_response(result)
    if result.success:
        return response
    return JSONResponse(
        status_code=_STATUS_BY_KIND.get(result.kind, status.HTTP_400_BAD_REQUEST),
        content=response.model_dump(by_alias=True, exclude_none=True),
    )
