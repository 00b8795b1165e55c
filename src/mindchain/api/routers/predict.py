"""Pay-per-request prediction endpoint (x402).

POST /predict — verify and settle an x402 payment, then forward the image
                to the digit-recognition model API
"""

from __future__ import annotations

import asyncio
import http.client
import json
import logging
import urllib.error
import urllib.request
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from mindchain.api.deps import PaywallSettings, get_facilitator, get_paywall
from mindchain.payments import (
    FacilitatorClient,
    build_payment_requirements,
    parse_payment_signature,
    payment_required_response,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["predict"])


class ModelAPIError(Exception):
    """Raised when the upstream model API fails."""


def _call_model(url: str, image: Any, timeout: float = 30) -> dict:
    req = urllib.request.Request(
        url,
        data=json.dumps(image).encode("utf-8"),
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            return json.loads(resp.read().decode("utf-8"))
    except urllib.error.HTTPError as e:
        raise ModelAPIError(f"Model API failed: {e.code} {e.reason}") from e
    except urllib.error.URLError as e:
        raise ModelAPIError(f"Cannot reach model API at {url}: {e.reason}") from e
    except (OSError, http.client.HTTPException) as e:
        raise ModelAPIError(f"Model API connection failed: {e!r}") from e
    except ValueError as e:
        raise ModelAPIError(f"Model API returned invalid JSON: {e}") from e


def _payment_required(request: Request, paywall: PaywallSettings, error: str) -> JSONResponse:
    content = payment_required_response(
        url=str(request.url),
        price_usd=paywall.price_usd,
        pay_to=paywall.require_pay_to(),
        description=paywall.description,
    )
    content["error"] = error
    return JSONResponse(status_code=402, content=content)


@router.post("/predict")
async def predict(
    request: Request,
    facilitator: FacilitatorClient = Depends(get_facilitator),
    paywall: PaywallSettings = Depends(get_paywall),
):
    """Charge for one prediction, then proxy it to the model API."""
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse(status_code=400, content={"error": "Request body must be JSON"})
    image = body.get("image") if isinstance(body, dict) else None
    if not image:
        return JSONResponse(status_code=400, content={"error": "Image data required"})

    payment = parse_payment_signature(request.headers)
    if payment is None:
        return _payment_required(request, paywall, "Payment required")

    requirements = build_payment_requirements(paywall.price_usd, paywall.require_pay_to())

    verification = await facilitator.verify_payment(payment, requirements)
    if not verification.is_valid:
        return _payment_required(
            request, paywall, verification.invalid_reason or "Payment invalid"
        )

    settlement = await facilitator.settle_payment(payment, requirements)
    if not settlement.success:
        return _payment_required(
            request, paywall, settlement.error_reason or "Payment settlement failed"
        )

    logger.info("Payment settled tx=%s, forwarding prediction", settlement.transaction)
    try:
        result = await asyncio.to_thread(_call_model, paywall.model_api_url, image)
    except ModelAPIError as e:
        logger.error("Prediction failed after settlement tx=%s: %s", settlement.transaction, e)
        return JSONResponse(
            status_code=502,
            content={"error": str(e), "transaction": settlement.transaction},
        )

    if not isinstance(result, dict):
        result = {"prediction": result}
    return {
        **result,
        "paymentVerified": True,
        "paymentSettled": True,
        "transaction": settlement.transaction,
    }
