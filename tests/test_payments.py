"""Tests for mindchain.payments — x402 requirements, headers, facilitator client."""

from __future__ import annotations

import asyncio
import base64
import http.client
import json
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from mindchain.payments import (
    BASE_SEPOLIA,
    DEFAULT_FACILITATOR_URL,
    USDC_BASE_SEPOLIA,
    FacilitatorClient,
    build_payment_requirements,
    parse_payment_signature,
    payment_required_response,
    usd_to_usdc,
)

PAY_TO = "0x" + "ab" * 20
PAYMENT = {"x402Version": 2, "payload": {"signature": "0xdead", "authorization": {"value": "10000"}}}

SUPPORTED = {"kinds": [{"x402Version": 2, "scheme": "exact", "network": BASE_SEPOLIA}]}


def _fake_urlopen(responses: dict, calls: list):
    """Route requests by their last path segment to canned JSON replies."""
    def fake(req, timeout=None):
        calls.append(req)
        reply = responses[req.full_url.rsplit("/", 1)[-1]]
        if isinstance(reply, Exception):
            raise reply
        resp = MagicMock()
        resp.__enter__.return_value.read.return_value = json.dumps(reply).encode("utf-8")
        return resp
    return fake


def _header(payload: dict) -> str:
    return base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


class TestUsdToUsdc:
    @pytest.mark.parametrize("usd,atomic", [
        (0.01, "10000"),
        (1, "1000000"),
        (1.5, "1500000"),
        (0.57, "570000"),
        (0.0000019, "1"),
        (0, "0"),
    ])
    def test_conversion(self, usd, atomic):
        assert usd_to_usdc(usd).amount == atomic

    def test_asset(self):
        amount = usd_to_usdc(0.01)
        assert amount.asset == USDC_BASE_SEPOLIA
        assert amount.extra == {"name": "USDC", "version": "2"}

    @pytest.mark.parametrize("usd", [-1, float("nan"), float("inf")])
    def test_invalid(self, usd):
        with pytest.raises(ValueError):
            usd_to_usdc(usd)


class TestRequirements:
    def test_wire_format(self):
        wire = build_payment_requirements(0.01, PAY_TO).to_wire()
        assert wire == {
            "scheme": "exact",
            "network": BASE_SEPOLIA,
            "asset": USDC_BASE_SEPOLIA,
            "amount": "10000",
            "payTo": PAY_TO,
            "maxTimeoutSeconds": 300,
            "extra": {"name": "USDC", "version": "2"},
        }

    def test_payment_required_response(self):
        body = payment_required_response("https://api.test/predict", 0.02, PAY_TO, description="Digit")
        assert body["x402Version"] == 2
        assert body["resource"] == {
            "url": "https://api.test/predict",
            "description": "Digit",
            "mimeType": "application/json",
        }
        assert len(body["accepts"]) == 1
        assert body["accepts"][0]["amount"] == "20000"

    def test_description_optional(self):
        body = payment_required_response("https://api.test/predict", 0.02, PAY_TO)
        assert "description" not in body["resource"]


class TestParsePaymentSignature:
    def test_x_header(self):
        assert parse_payment_signature({"X-Payment-Signature": _header(PAYMENT)}) == PAYMENT

    def test_plain_header_case_insensitive(self):
        assert parse_payment_signature({"payment-signature": _header(PAYMENT)}) == PAYMENT

    def test_x_header_preferred(self):
        other = {"x402Version": 2, "payload": {}}
        headers = {"X-Payment-Signature": _header(PAYMENT), "Payment-Signature": _header(other)}
        assert parse_payment_signature(headers) == PAYMENT

    def test_missing(self):
        assert parse_payment_signature({"Content-Type": "application/json"}) is None

    def test_garbage_logged(self, caplog):
        with caplog.at_level("WARNING", logger="mindchain.payments"):
            assert parse_payment_signature({"X-Payment-Signature": "%%%not base64"}) is None
        assert "Failed to decode" in caplog.text

    def test_non_object(self):
        assert parse_payment_signature({"X-Payment-Signature": _header([1, 2])}) is None


class TestFacilitatorClient:
    def test_url_resolution(self, monkeypatch):
        monkeypatch.delenv("MINDCHAIN_FACILITATOR_URL", raising=False)
        assert FacilitatorClient().url == DEFAULT_FACILITATOR_URL
        monkeypatch.setenv("MINDCHAIN_FACILITATOR_URL", "https://fac.test/")
        assert FacilitatorClient().url == "https://fac.test"
        assert FacilitatorClient("https://explicit.test").url == "https://explicit.test"

    def test_verify_initializes_once(self):
        calls: list = []
        responses = {"supported": SUPPORTED, "verify": {"isValid": True, "payer": PAY_TO}}
        client = FacilitatorClient("https://fac.test")
        requirements = build_payment_requirements(0.01, PAY_TO)

        async def run():
            first = await client.verify_payment(PAYMENT, requirements)
            second = await client.verify_payment(PAYMENT, requirements)
            return first, second

        with patch("mindchain.payments.urlopen", side_effect=_fake_urlopen(responses, calls)):
            first, second = asyncio.run(run())

        assert first.is_valid and second.is_valid
        assert first.payer == PAY_TO
        assert client.initialized
        paths = [c.full_url for c in calls]
        assert paths.count("https://fac.test/supported") == 1
        assert paths.count("https://fac.test/verify") == 2

    def test_verify_envelope(self):
        calls: list = []
        responses = {"supported": SUPPORTED, "verify": {"isValid": True}}
        client = FacilitatorClient("https://fac.test")
        requirements = build_payment_requirements(0.01, PAY_TO)
        with patch("mindchain.payments.urlopen", side_effect=_fake_urlopen(responses, calls)):
            asyncio.run(client.verify_payment(PAYMENT, requirements))
        sent = json.loads(calls[-1].data)
        assert sent == {
            "x402Version": 2,
            "paymentPayload": PAYMENT,
            "paymentRequirements": requirements.to_wire(),
        }

    def test_unsupported_network_is_invalid(self):
        calls: list = []
        responses = {"supported": {"kinds": [{"scheme": "exact", "network": "eip155:1"}]}}
        client = FacilitatorClient("https://fac.test")
        with patch("mindchain.payments.urlopen", side_effect=_fake_urlopen(responses, calls)):
            result = asyncio.run(
                client.verify_payment(PAYMENT, build_payment_requirements(0.01, PAY_TO))
            )
        assert result.is_valid is False
        assert "does not support" in result.invalid_reason
        assert not client.initialized

    def test_verify_unreachable(self):
        calls: list = []
        responses = {"supported": urllib.error.URLError("timed out")}
        client = FacilitatorClient("https://fac.test")
        with patch("mindchain.payments.urlopen", side_effect=_fake_urlopen(responses, calls)):
            result = asyncio.run(
                client.verify_payment(PAYMENT, build_payment_requirements(0.01, PAY_TO))
            )
        assert result.is_valid is False
        assert "Cannot reach facilitator" in result.invalid_reason

    def test_settle_success(self):
        calls: list = []
        responses = {
            "supported": SUPPORTED,
            "settle": {"success": True, "transaction": "0xabc", "network": BASE_SEPOLIA},
        }
        client = FacilitatorClient("https://fac.test")
        with patch("mindchain.payments.urlopen", side_effect=_fake_urlopen(responses, calls)):
            result = asyncio.run(
                client.settle_payment(PAYMENT, build_payment_requirements(0.01, PAY_TO))
            )
        assert result.success is True
        assert result.transaction == "0xabc"

    def test_settle_http_error(self):
        calls: list = []
        responses = {
            "supported": SUPPORTED,
            "settle": urllib.error.HTTPError("https://fac.test/settle", 500, "Server Error", {}, None),
        }
        client = FacilitatorClient("https://fac.test")
        with patch("mindchain.payments.urlopen", side_effect=_fake_urlopen(responses, calls)):
            result = asyncio.run(
                client.settle_payment(PAYMENT, build_payment_requirements(0.01, PAY_TO))
            )
        assert result.success is False
        assert "500" in result.error_reason
        assert result.network == BASE_SEPOLIA
        assert result.transaction == ""

    def test_verify_timeout_is_invalid(self):
        calls: list = []
        responses = {"supported": SUPPORTED, "verify": TimeoutError("timed out")}
        client = FacilitatorClient("https://fac.test", timeout=0.5)
        with patch("mindchain.payments.urlopen", side_effect=_fake_urlopen(responses, calls)):
            result = asyncio.run(
                client.verify_payment(PAYMENT, build_payment_requirements(0.01, PAY_TO))
            )
        assert result.is_valid is False
        assert "timed out" in result.invalid_reason

    def test_settle_disconnect_is_failure(self):
        calls: list = []
        responses = {
            "supported": SUPPORTED,
            "settle": http.client.RemoteDisconnected("Remote end closed connection"),
        }
        client = FacilitatorClient("https://fac.test")
        with patch("mindchain.payments.urlopen", side_effect=_fake_urlopen(responses, calls)):
            result = asyncio.run(
                client.settle_payment(PAYMENT, build_payment_requirements(0.01, PAY_TO))
            )
        assert result.success is False
        assert "Remote end closed" in result.error_reason

    def test_read_timeout_is_invalid(self):
        resp = MagicMock()
        resp.__enter__.return_value.read.side_effect = TimeoutError("timed out")
        client = FacilitatorClient("https://fac.test")
        with patch("mindchain.payments.urlopen", return_value=resp):
            result = asyncio.run(
                client.verify_payment(PAYMENT, build_payment_requirements(0.01, PAY_TO))
            )
        assert result.is_valid is False
        assert not client.initialized
