"""Pydantic models for MindChain credentials, identities, and x402 payments.

Field order on TokenHeader and CredentialPayload is part of the wire format:
model_dump_json() output is what gets base64url-encoded and signed.
"""

from __future__ import annotations

import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_DIGEST_RE = re.compile(r"^0x[0-9a-f]{64}$")

TOKEN_ALG = "ETH"
TOKEN_TYP = "JWT"


# --- Credential ---

class TokenHeader(BaseModel):
    alg: str = TOKEN_ALG
    typ: str = TOKEN_TYP


class CredentialPayload(BaseModel):
    digest: str
    iss: str
    iat: int
    exp: int
    jti: str

    @field_validator("digest")
    @classmethod
    def validate_digest(cls, v: str) -> str:
        if not _DIGEST_RE.match(v):
            raise ValueError("digest must be '0x' followed by 64 lowercase hex characters")
        return v

    @field_validator("iss")
    @classmethod
    def validate_iss(cls, v: str) -> str:
        if not _ADDRESS_RE.match(v):
            raise ValueError("iss must be a 0x-prefixed 20-byte address")
        return v


# --- Identity ---

class Identity(BaseModel):
    address: str
    name: str
    is_encrypted: bool = False
    is_default: bool = False

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        if not _ADDRESS_RE.match(v):
            raise ValueError("address must be a 0x-prefixed 20-byte address")
        return v


# --- x402 ---

class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class AssetAmount(_CamelModel):
    asset: str
    amount: str
    extra: dict[str, Any] = Field(default_factory=dict)


class PaymentRequirements(_CamelModel):
    scheme: str = "exact"
    network: str
    asset: str
    amount: str
    pay_to: str = Field(alias="payTo")
    max_timeout_seconds: int = Field(300, alias="maxTimeoutSeconds")
    extra: dict[str, Any] = Field(default_factory=dict)


class VerifyResponse(_CamelModel):
    is_valid: bool = Field(alias="isValid")
    invalid_reason: Optional[str] = Field(None, alias="invalidReason")
    payer: Optional[str] = None


class SettleResponse(_CamelModel):
    success: bool
    error_reason: Optional[str] = Field(None, alias="errorReason")
    transaction: str = ""
    network: str = ""
    payer: Optional[str] = None
