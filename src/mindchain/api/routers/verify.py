"""Credential verification endpoint.

POST /verify — verify the bearer token against the JSON body it was minted for
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from mindchain.api.deps import require_credential
from mindchain.models import CredentialPayload

router = APIRouter(tags=["verify"])


@router.post("/verify")
async def verify_credential(
    credential: CredentialPayload = Depends(require_credential),
):
    """Echo the verified claims. Errors are mapped by the app's handlers."""
    return {"valid": True, **credential.model_dump()}
