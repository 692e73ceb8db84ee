# src/octra_faucet/main.py
"""Main entry point for the Octra faucet application."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from octra_faucet import __version__
from octra_faucet.api.v1 import faucet_router
from octra_faucet.core.config import load_faucet_config
from octra_faucet.core.settings import settings
from octra_faucet.services.captcha import RecaptchaVerifier
from octra_faucet.services.faucet import FaucetService
from octra_faucet.services.rpc import OctraRpcClient
from octra_faucet.services.store import MEMORY_URL_SCHEME, create_store
from octra_faucet.services.throttle import RequestThrottle

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("octra_faucet")

_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
}

# Initialize FastAPI app
app = FastAPI(
    title="Octra Faucet API",
    description="Rate-limited testnet token faucet",
    version=__version__,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
    max_age=86_400,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(faucet_router, prefix="/api/v1")


@app.middleware("http")
async def log_requests(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    started = time.perf_counter()
    response = await call_next(request)
    for header, value in _SECURITY_HEADERS.items():
        response.headers.setdefault(header, value)
    logger.info(
        "%s %s -> %s (%.1f ms)",
        request.method,
        request.url.path,
        response.status_code,
        (time.perf_counter() - started) * 1000,
    )
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    details = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Validation failed", "details": details},
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail
    if exc.status_code == status.HTTP_404_NOT_FOUND and detail == "Not Found":
        detail = "Endpoint not found"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


@app.on_event("startup")
async def on_startup() -> None:
    app.state.started_at = time.monotonic()
    store = create_store(settings.redis_url)
    app.state.store = store
    app.state.global_throttle = RequestThrottle(
        store,
        scope="global",
        limit=settings.global_rate_limit,
        window_seconds=settings.global_rate_limit_window_seconds,
    )
    app.state.claim_throttle = RequestThrottle(
        store,
        scope="claim",
        limit=settings.claim_rate_limit,
        window_seconds=settings.claim_rate_limit_window_seconds,
    )

    config = load_faucet_config(settings)
    rpc = OctraRpcClient(config, log=logging.getLogger("octra_faucet.rpc"))
    verifier = RecaptchaVerifier(config, log=logging.getLogger("octra_faucet.captcha"))
    app.state.rpc_client = rpc
    app.state.captcha_verifier = verifier
    app.state.faucet_service = FaucetService(
        config,
        store,
        rpc,
        verifier,
        log=logging.getLogger("octra_faucet.faucet"),
    )
    logger.info(
        "Faucet backend started",
        extra={
            "faucet_address": config.faucet_address,
            "recaptcha_configured": verifier.configured,
            "trust_proxy": settings.trust_proxy,
        },
    )


@app.on_event("shutdown")
async def on_shutdown() -> None:
    for name in ("rpc_client", "captcha_verifier", "store"):
        component = getattr(app.state, name, None)
        if component is not None:
            await component.close()


@app.get("/health")
async def health_check() -> dict[str, Any]:
    """Health check endpoint to verify the service is running."""
    started_at = getattr(app.state, "started_at", None)
    uptime = time.monotonic() - started_at if started_at is not None else 0.0
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat(),
        "uptime": round(uptime, 3),
        "environment": {
            "recaptchaConfigured": settings.recaptcha_configured,
            "faucetConfigured": settings.faucet_configured,
            "storeBackend": "memory" if settings.redis_url.startswith(MEMORY_URL_SCHEME) else "redis",
            "trustProxy": settings.trust_proxy,
        },
    }


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": "Rate-limited testnet token faucet",
        "docs": "/docs",
        "redoc": "/redoc",
    }


def run() -> None:
    """Start the application under uvicorn."""
    import uvicorn

    uvicorn.run("octra_faucet.main:app", host=settings.host, port=settings.port, reload=settings.debug)


if __name__ == "__main__":
    run()
