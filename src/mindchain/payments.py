"""x402 pay-per-request helpers: requirements, 402 bodies, facilitator client.

Payments are USDC on Base Sepolia using the "exact" scheme. The facilitator
is an explicitly constructed object: build one, pass it where it is needed,
and it initializes itself once on first use.

Configuration via environment variables:
  MINDCHAIN_FACILITATOR_URL — facilitator base URL (default: https://x402.org/facilitator)
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import math
import os
from http.client import HTTPException
from typing import Any, Mapping, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from mindchain.models import AssetAmount, PaymentRequirements, SettleResponse, VerifyResponse

logger = logging.getLogger(__name__)

X402_VERSION = 2
BASE_SEPOLIA = "eip155:84532"
USDC_BASE_SEPOLIA = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
USDC_DECIMALS = 6
DEFAULT_FACILITATOR_URL = "https://x402.org/facilitator"
MAX_TIMEOUT_SECONDS = 300

PAYMENT_SIGNATURE_HEADERS = ("X-Payment-Signature", "Payment-Signature")


class FacilitatorError(Exception):
    """Raised when the facilitator is unreachable or returns an error."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"HTTP {status_code}: {message}")


# ---------------------------------------------------------------------------
# Requirements
# ---------------------------------------------------------------------------

def usd_to_usdc(usd_amount: float) -> AssetAmount:
    """Convert USD to USDC atomic units (6 decimals), rounding down."""
    if usd_amount < 0 or not math.isfinite(usd_amount):
        raise ValueError(f"Invalid USD amount: {usd_amount}")
    atomic = math.floor(round(usd_amount * 10**USDC_DECIMALS, 6))
    return AssetAmount(
        asset=USDC_BASE_SEPOLIA,
        amount=str(atomic),
        extra={"name": "USDC", "version": "2"},
    )


def build_payment_requirements(price_usd: float, pay_to: str) -> PaymentRequirements:
    usdc = usd_to_usdc(price_usd)
    return PaymentRequirements(
        scheme="exact",
        network=BASE_SEPOLIA,
        asset=usdc.asset,
        amount=usdc.amount,
        pay_to=pay_to,
        max_timeout_seconds=MAX_TIMEOUT_SECONDS,
        extra=usdc.extra,
    )


def payment_required_response(
    url: str,
    price_usd: float,
    pay_to: str,
    description: Optional[str] = None,
) -> dict:
    """Body of an HTTP 402 response advertising how to pay for url."""
    resource: dict[str, Any] = {"url": url, "mimeType": "application/json"}
    if description is not None:
        resource["description"] = description
    return {
        "x402Version": X402_VERSION,
        "resource": resource,
        "accepts": [build_payment_requirements(price_usd, pay_to).to_wire()],
    }


def parse_payment_signature(headers: Mapping[str, str]) -> Optional[dict]:
    """Decode the base64 JSON payment payload from request headers.

    Returns None if no payment header is present or it cannot be decoded.
    """
    lowered = {k.lower(): v for k, v in headers.items()}
    value = None
    for name in PAYMENT_SIGNATURE_HEADERS:
        value = lowered.get(name.lower())
        if value:
            break
    if not value:
        return None

    try:
        padded = value + "=" * (-len(value) % 4)
        decoded = base64.b64decode(padded.replace("-", "+").replace("_", "/"), validate=True)
        payload = json.loads(decoded)
    except (binascii.Error, ValueError) as e:
        logger.warning("Failed to decode payment signature: %s", e)
        return None
    if not isinstance(payload, dict):
        logger.warning("Payment signature is not a JSON object")
        return None
    return payload


# ---------------------------------------------------------------------------
# Facilitator client
# ---------------------------------------------------------------------------

class FacilitatorClient:
    """Client for an x402 facilitator's /supported, /verify and /settle.

    Construct once and reuse; initialize() runs a single /supported check
    and later calls are no-ops.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        network: str = BASE_SEPOLIA,
        scheme: str = "exact",
        timeout: float = 30,
    ):
        self.url = (
            url
            or os.environ.get("MINDCHAIN_FACILITATOR_URL")
            or DEFAULT_FACILITATOR_URL
        ).rstrip("/")
        self.network = network
        self.scheme = scheme
        self.timeout = timeout
        self._initialized = False
        self._init_lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        return self._initialized

    def _request(self, method: str, path: str, body: Optional[dict] = None) -> dict:
        data = json.dumps(body).encode("utf-8") if body is not None else None
        req = Request(f"{self.url}{path}", data=data, method=method)
        req.add_header("Accept", "application/json")
        if data is not None:
            req.add_header("Content-Type", "application/json")
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                return json.loads(resp.read().decode("utf-8"))
        except HTTPError as e:
            raise FacilitatorError(e.code, str(e.reason)) from e
        except URLError as e:
            raise FacilitatorError(0, f"Cannot reach facilitator at {self.url}: {e.reason}") from e
        except (OSError, HTTPException) as e:
            raise FacilitatorError(0, f"Facilitator connection failed: {e!r}") from e
        except ValueError as e:
            raise FacilitatorError(0, f"Facilitator returned invalid JSON: {e}") from e

    async def initialize(self) -> None:
        """Check once that the facilitator supports our scheme and network."""
        async with self._init_lock:
            if self._initialized:
                return
            supported = await asyncio.to_thread(self._request, "GET", "/supported")
            kinds = supported.get("kinds") or []
            if not any(
                k.get("scheme") == self.scheme and k.get("network") == self.network
                for k in kinds
            ):
                raise FacilitatorError(
                    0, f"Facilitator does not support {self.scheme} on {self.network}"
                )
            self._initialized = True
            logger.info("Facilitator %s initialized for %s/%s", self.url, self.scheme, self.network)

    def _envelope(self, payment_payload: dict, requirements: PaymentRequirements) -> dict:
        return {
            "x402Version": payment_payload.get("x402Version", X402_VERSION),
            "paymentPayload": payment_payload,
            "paymentRequirements": requirements.to_wire(),
        }

    async def verify_payment(
        self, payment_payload: dict, requirements: PaymentRequirements
    ) -> VerifyResponse:
        """Verify a payment payload. Facilitator failures yield isValid=False."""
        logger.info(
            "Verifying payment amount=%s payTo=%s network=%s",
            requirements.amount, requirements.pay_to, requirements.network,
        )
        try:
            await self.initialize()
            result = await asyncio.to_thread(
                self._request, "POST", "/verify", self._envelope(payment_payload, requirements)
            )
            response = VerifyResponse.model_validate(result)
        except (FacilitatorError, ValueError) as e:
            logger.error("Payment verification failed: %s", e)
            return VerifyResponse(is_valid=False, invalid_reason=str(e))
        logger.info("Verification result valid=%s", response.is_valid)
        return response

    async def settle_payment(
        self, payment_payload: dict, requirements: PaymentRequirements
    ) -> SettleResponse:
        """Settle a payment payload. Facilitator failures yield success=False."""
        logger.info(
            "Settling payment amount=%s payTo=%s network=%s",
            requirements.amount, requirements.pay_to, requirements.network,
        )
        try:
            await self.initialize()
            result = await asyncio.to_thread(
                self._request, "POST", "/settle", self._envelope(payment_payload, requirements)
            )
            response = SettleResponse.model_validate(result)
        except (FacilitatorError, ValueError) as e:
            logger.error("Payment settlement failed: %s", e)
            return SettleResponse(
                success=False,
                error_reason=str(e),
                transaction="",
                network=requirements.network,
            )
        logger.info("Settlement result success=%s tx=%s", response.success, response.transaction)
        return response
