"""Shared dependencies for the MindChain gateway API.

Shared objects (facilitator client, replay cache, paywall settings) are
built by create_app() and held on app.state, never at module level.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request

from mindchain.api.replay import ReplayCache
from mindchain.exceptions import ConfigurationError, MalformedInputError, MissingCredentialError
from mindchain.models import CredentialPayload
from mindchain.payments import FacilitatorClient
from mindchain.signing import verify_token

DEFAULT_MODEL_API_URL = "http://127.0.0.1:3002/predict"
DEFAULT_PRICE_USD = 0.01


@dataclass
class PaywallSettings:
    price_usd: float = DEFAULT_PRICE_USD
    pay_to: Optional[str] = None
    model_api_url: str = DEFAULT_MODEL_API_URL
    description: str = "Handwritten digit prediction"

    @classmethod
    def from_env(cls) -> PaywallSettings:
        raw_price = os.environ.get("MINDCHAIN_PRICE_USD")
        try:
            price = float(raw_price) if raw_price else DEFAULT_PRICE_USD
        except ValueError as e:
            raise ConfigurationError(f"MINDCHAIN_PRICE_USD is not a number: {raw_price}") from e
        return cls(
            price_usd=price,
            pay_to=os.environ.get("MINDCHAIN_PAY_TO"),
            model_api_url=os.environ.get("MINDCHAIN_MNIST_API_URL", DEFAULT_MODEL_API_URL),
        )

    def require_pay_to(self) -> str:
        if not self.pay_to:
            raise ConfigurationError("MINDCHAIN_PAY_TO is not configured")
        return self.pay_to


def get_facilitator(request: Request) -> FacilitatorClient:
    """FastAPI dependency: the app's facilitator client."""
    return request.app.state.facilitator


def get_replay_cache(request: Request) -> ReplayCache:
    return request.app.state.replay_cache


def get_paywall(request: Request) -> PaywallSettings:
    return request.app.state.paywall


async def require_credential(
    request: Request,
    replay_cache: ReplayCache = Depends(get_replay_cache),
) -> CredentialPayload:
    """FastAPI dependency: verify the bearer token against the raw JSON body."""
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise MissingCredentialError("Missing bearer credential")

    raw = await request.body()
    try:
        body = json.loads(raw) if raw else None
    except ValueError as e:
        raise MalformedInputError(f"Request body is not valid JSON: {e}") from e

    payload = verify_token(token, body)
    replay_cache.check_and_record(payload.jti, payload.exp)
    return payload
