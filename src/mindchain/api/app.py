"""MindChain gateway API — FastAPI application.

Verifies signed workflow credentials and serves pay-per-request predictions.
Signature-only auth: the ECDSA bearer credential IS the authentication.
"""

from __future__ import annotations

import os
from typing import Mapping, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mindchain import __version__ as _VERSION
from mindchain.api.deps import PaywallSettings
from mindchain.api.replay import ReplayCache
from mindchain.api.routers import predict, verify
from mindchain.exceptions import (
    ConfigurationError,
    DigestMismatchError,
    ExpiredCredentialError,
    InvalidSignatureError,
    MalformedInputError,
    MalformedTokenError,
    MissingCredentialError,
    ReplayedCredentialError,
)
from mindchain.payments import FacilitatorClient


def _parse_csv_env(value: str | None, default: list[str]) -> list[str]:
    if value is None:
        return default
    parts = [part.strip() for part in value.split(",") if part.strip()]
    return parts or default


def _env_truthy(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_cors_settings(environ: Mapping[str, str] | None = None) -> dict:
    env = os.environ if environ is None else environ
    return {
        "allow_origins": _parse_csv_env(
            env.get("MINDCHAIN_CORS_ALLOW_ORIGINS"),
            ["http://localhost:3000"],
        ),
        "allow_methods": _parse_csv_env(
            env.get("MINDCHAIN_CORS_ALLOW_METHODS"),
            ["GET", "POST", "OPTIONS"],
        ),
        "allow_headers": _parse_csv_env(
            env.get("MINDCHAIN_CORS_ALLOW_HEADERS"),
            ["Content-Type", "Authorization", "X-Payment-Signature", "Payment-Signature"],
        ),
        "allow_credentials": _env_truthy(
            env.get("MINDCHAIN_CORS_ALLOW_CREDENTIALS"),
            default=False,
        ),
    }


def _error(status_code: int):
    async def handler(request: Request, exc: Exception):
        return JSONResponse(status_code=status_code, content={"error": str(exc)})
    return handler


def create_app(
    facilitator: Optional[FacilitatorClient] = None,
    replay_cache: Optional[ReplayCache] = None,
    paywall: Optional[PaywallSettings] = None,
) -> FastAPI:
    """Build the API with explicitly supplied (or env-configured) collaborators."""
    app = FastAPI(
        title="MindChain Gateway API",
        description="Signed workflow credential verification and x402 pay-per-request predictions.",
        version=_VERSION,
    )
    app.state.facilitator = facilitator or FacilitatorClient()
    app.state.replay_cache = replay_cache or ReplayCache()
    app.state.paywall = paywall or PaywallSettings.from_env()

    cors_settings = _get_cors_settings()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_settings["allow_origins"],
        allow_methods=cors_settings["allow_methods"],
        allow_headers=cors_settings["allow_headers"],
        allow_credentials=cors_settings["allow_credentials"],
    )

    # --- Exception handlers ---
    app.add_exception_handler(MalformedTokenError, _error(400))
    app.add_exception_handler(MalformedInputError, _error(400))
    app.add_exception_handler(MissingCredentialError, _error(401))
    app.add_exception_handler(InvalidSignatureError, _error(401))
    app.add_exception_handler(ExpiredCredentialError, _error(401))
    app.add_exception_handler(DigestMismatchError, _error(401))
    app.add_exception_handler(ReplayedCredentialError, _error(401))
    app.add_exception_handler(ConfigurationError, _error(500))

    # --- Routers ---
    app.include_router(verify.router)
    app.include_router(predict.router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "version": _VERSION}

    return app


app = create_app()
