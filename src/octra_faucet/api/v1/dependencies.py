"""Shared API dependencies for client identification, throttling and services."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from octra_faucet.core.settings import settings
from octra_faucet.services.faucet import FaucetService
from octra_faucet.services.throttle import RequestThrottle

UNKNOWN_CLIENT = "unknown"


def get_client_ip(request: Request) -> str:
    """Return the caller's IP address.

    Uses the first `X-Forwarded-For` hop only when TRUST_PROXY is enabled;
    otherwise the socket peer address.
    """
    if settings.trust_proxy:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
        real_ip = request.headers.get("x-real-ip", "").strip()
        if real_ip:
            return real_ip
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_CLIENT


def get_faucet_service(request: Request) -> FaucetService:
    """Return the faucet service created at startup."""
    service: FaucetService | None = getattr(request.app.state, "faucet_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Faucet is not configured",
        )
    return service


def get_global_throttle(request: Request) -> RequestThrottle | None:
    return getattr(request.app.state, "global_throttle", None)


def get_claim_throttle(request: Request) -> RequestThrottle | None:
    return getattr(request.app.state, "claim_throttle", None)


ClientIpDep = Annotated[str, Depends(get_client_ip)]
FaucetServiceDep = Annotated[FaucetService, Depends(get_faucet_service)]


async def enforce_global_throttle(
    client_ip: ClientIpDep,
    throttle: Annotated[RequestThrottle | None, Depends(get_global_throttle)],
) -> None:
    """Reject callers exceeding the coarse request budget."""
    if throttle is not None and not await throttle.allow(client_ip):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests from this IP, please try again later.",
        )


async def enforce_claim_throttle(
    client_ip: ClientIpDep,
    throttle: Annotated[RequestThrottle | None, Depends(get_claim_throttle)],
) -> None:
    """Reject callers exceeding the claim submission budget."""
    if throttle is not None and not await throttle.allow(client_ip):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded. Too many claim attempts from this IP address.",
        )
