"""HTTP client for a Chainlink CRE workflow gateway.

Uses stdlib urllib, run off the event loop so the signer stays awaitable.
Gateway URL: explicit argument or MINDCHAIN_CRE_GATEWAY_URL env var.
"""

from __future__ import annotations

import asyncio
import http.client
import json
import logging
import os
import urllib.error
import urllib.request
import uuid
from typing import Any, Optional

from mindchain.exceptions import ConfigurationError
from mindchain.signing import DEFAULT_TTL_SECONDS, Signer, authenticate

logger = logging.getLogger(__name__)

WORKFLOW_EXECUTE_METHOD = "workflows.execute"


class CREGatewayError(Exception):
    """Raised when the workflow gateway returns an error."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"HTTP {status_code}: {message}")


def build_workflow_request(
    workflow_id: str,
    input: Any,
    request_id: Optional[str] = None,
) -> dict:
    """Build the JSON-RPC 2.0 body for a workflows.execute call."""
    return {
        "jsonrpc": "2.0",
        "id": request_id or str(uuid.uuid4()),
        "method": WORKFLOW_EXECUTE_METHOD,
        "params": {
            "input": input,
            "workflow": {"workflowID": workflow_id},
        },
    }


class CREClient:
    """Signs and sends workflow execution requests to a CRE gateway."""

    def __init__(
        self,
        signer: Signer,
        gateway_url: Optional[str] = None,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        timeout: float = 30,
    ):
        url = gateway_url or os.environ.get("MINDCHAIN_CRE_GATEWAY_URL")
        if not url:
            raise ConfigurationError(
                "Missing CRE gateway URL (pass gateway_url or set MINDCHAIN_CRE_GATEWAY_URL)"
            )
        self.gateway_url = url
        self.signer = signer
        self.ttl_seconds = ttl_seconds
        self.timeout = timeout

    def _post(self, body: dict, token: str) -> dict:
        data = json.dumps(body).encode("utf-8")
        req = urllib.request.Request(self.gateway_url, data=data, method="POST")
        req.add_header("Content-Type", "application/json")
        req.add_header("Accept", "application/json")
        req.add_header("Authorization", f"Bearer {token}")

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                return json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as e:
            try:
                msg = e.read().decode("utf-8") or e.reason
            except Exception:
                msg = e.reason
            raise CREGatewayError(e.code, msg) from e
        except urllib.error.URLError as e:
            raise CREGatewayError(0, f"Connection failed: {e.reason}") from e
        except (OSError, http.client.HTTPException) as e:
            raise CREGatewayError(0, f"Connection failed: {e!r}") from e
        except ValueError as e:
            raise CREGatewayError(0, f"Gateway returned invalid JSON: {e}") from e

    async def send(self, body: dict, signing_timeout: Optional[float] = None) -> dict:
        """Authenticate an already-built body and POST it to the gateway."""
        token = await authenticate(
            body,
            self.signer,
            ttl_seconds=self.ttl_seconds,
            timeout=signing_timeout,
        )
        logger.info(
            "POST %s method=%s id=%s", self.gateway_url, body.get("method"), body.get("id")
        )
        return await asyncio.to_thread(self._post, body, token)

    async def execute_workflow(
        self,
        workflow_id: str,
        input: Any,
        request_id: Optional[str] = None,
        signing_timeout: Optional[float] = None,
    ) -> dict:
        """Execute a workflow with the given input and return the JSON-RPC response."""
        if not workflow_id:
            raise ConfigurationError("Missing CRE workflow ID")
        body = build_workflow_request(workflow_id, input, request_id=request_id)
        return await self.send(body, signing_timeout=signing_timeout)
