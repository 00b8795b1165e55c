"""ECDSA bearer credentials for workflow gateway requests.

Token format: b64url(header) "." b64url(payload) "." b64url(signature)

The signature is an EIP-191 personal_sign over the UTF-8 "header.payload"
string, 65 bytes r||s||v. The verifier recomputes the body digest, checks
expiry, and recovers the signer address to compare against the issuer.
"""

from __future__ import annotations

import asyncio
import base64
import re
import time
import uuid
from typing import Optional, Protocol, Union

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from pydantic import ValidationError

from mindchain._canonical import JSONValue, digest
from mindchain.exceptions import (
    DigestMismatchError,
    ExpiredCredentialError,
    InvalidSignatureError,
    MalformedTokenError,
    SigningError,
)
from mindchain.models import TOKEN_ALG, TOKEN_TYP, CredentialPayload, TokenHeader

DEFAULT_TTL_SECONDS = 300

_B64URL_RE = re.compile(r"^[A-Za-z0-9_-]*$")
_SIGNATURE_SIZE = 65


# ---------------------------------------------------------------------------
# base64url (no padding)
# ---------------------------------------------------------------------------

def b64url_encode(data: bytes) -> str:
    """base64url-encode bytes without '=' padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(segment: str) -> bytes:
    """Decode an unpadded base64url segment. Raises ValueError if malformed."""
    if not _B64URL_RE.match(segment) or len(segment) % 4 == 1:
        raise ValueError(f"Invalid base64url segment: {segment[:16]!r}")
    return base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))


# ---------------------------------------------------------------------------
# Signers
# ---------------------------------------------------------------------------

class Signer(Protocol):
    """Anything holding a private key that can personal_sign a text message."""

    @property
    def address(self) -> str: ...

    async def sign_message(self, message: str) -> Union[bytes, str]:
        """Return the raw 65-byte signature (or its 0x hex form)."""
        ...


class LocalAccountSigner:
    """Signer backed by an in-process eth_account LocalAccount."""

    def __init__(self, account: LocalAccount):
        self._account = account

    @classmethod
    def from_key(cls, private_key: Union[str, bytes]) -> LocalAccountSigner:
        return cls(Account.from_key(private_key))

    @property
    def address(self) -> str:
        return self._account.address

    async def sign_message(self, message: str) -> bytes:
        signed = self._account.sign_message(encode_defunct(text=message))
        return bytes(signed.signature)


def _signature_bytes(raw: Union[bytes, str]) -> bytes:
    if isinstance(raw, str):
        hex_part = raw[2:] if raw.startswith("0x") else raw
        return bytes.fromhex(hex_part)
    return bytes(raw)


# ---------------------------------------------------------------------------
# Minting
# ---------------------------------------------------------------------------

def build_credential(
    body: JSONValue,
    identity: str,
    now: Optional[int] = None,
    ttl_seconds: int = DEFAULT_TTL_SECONDS,
) -> CredentialPayload:
    """Build the credential payload for a request body.

    Every call draws a fresh jti, so identical bodies never share a token.
    """
    if ttl_seconds <= 0:
        raise ValueError("ttl_seconds must be positive")
    issued_at = int(time.time()) if now is None else int(now)
    return CredentialPayload(
        digest=digest(body),
        iss=identity,
        iat=issued_at,
        exp=issued_at + ttl_seconds,
        jti=str(uuid.uuid4()),
    )


def _signing_input(header: TokenHeader, payload: CredentialPayload) -> str:
    encoded_header = b64url_encode(header.model_dump_json().encode("utf-8"))
    encoded_payload = b64url_encode(payload.model_dump_json().encode("utf-8"))
    return f"{encoded_header}.{encoded_payload}"


async def sign_credential(
    header: TokenHeader,
    payload: CredentialPayload,
    signer: Signer,
    timeout: Optional[float] = None,
) -> str:
    """Sign header.payload with the signer and return the full bearer token.

    Raises SigningError if the signer fails, rejects, or exceeds timeout.
    """
    message = _signing_input(header, payload)
    try:
        if timeout is None:
            raw = await signer.sign_message(message)
        else:
            raw = await asyncio.wait_for(signer.sign_message(message), timeout)
    except asyncio.TimeoutError as e:
        raise SigningError(f"Signer did not respond within {timeout}s") from e
    except Exception as e:
        raise SigningError(f"Signer failed: {e}") from e

    try:
        signature = _signature_bytes(raw)
    except (TypeError, ValueError) as e:
        raise SigningError(f"Signer returned an unreadable signature: {e}") from e
    if len(signature) != _SIGNATURE_SIZE:
        raise SigningError(
            f"Signer returned {len(signature)} bytes, expected {_SIGNATURE_SIZE}"
        )
    return f"{message}.{b64url_encode(signature)}"


async def authenticate(
    body: JSONValue,
    signer: Signer,
    identity: Optional[str] = None,
    ttl_seconds: int = DEFAULT_TTL_SECONDS,
    now: Optional[int] = None,
    timeout: Optional[float] = None,
) -> str:
    """Mint a bearer token for body, signed by signer.

    identity defaults to the signer's address. Nothing is retained between
    calls; either a complete token is returned or the error propagates.
    """
    payload = build_credential(
        body,
        identity or signer.address,
        now=now,
        ttl_seconds=ttl_seconds,
    )
    return await sign_credential(TokenHeader(), payload, signer, timeout=timeout)


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------

def decode_token(token: str) -> tuple[TokenHeader, CredentialPayload, bytes]:
    """Split and decode a bearer token. Raises MalformedTokenError."""
    parts = token.strip().split(".")
    if len(parts) != 3:
        raise MalformedTokenError(
            f"Token must have 3 segments, got {len(parts)}"
        )
    try:
        header = TokenHeader.model_validate_json(b64url_decode(parts[0]))
        payload = CredentialPayload.model_validate_json(b64url_decode(parts[1]))
        signature = b64url_decode(parts[2])
    except (ValueError, ValidationError) as e:
        raise MalformedTokenError(f"Token segment could not be decoded: {e}") from e

    if header.alg != TOKEN_ALG or header.typ != TOKEN_TYP:
        raise MalformedTokenError(
            f"Unsupported token header: alg={header.alg} typ={header.typ}"
        )
    return header, payload, signature


def recover_signer(message: str, signature: bytes) -> str:
    """Recover the checksummed address that personal_signed message."""
    if len(signature) != _SIGNATURE_SIZE:
        raise InvalidSignatureError(
            f"Signature must be {_SIGNATURE_SIZE} bytes, got {len(signature)}"
        )
    if signature[64] in (0, 1):
        signature = signature[:64] + bytes([signature[64] + 27])
    try:
        return Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception as e:
        raise InvalidSignatureError(f"Signature recovery failed: {e}") from e


def verify_token(
    token: str,
    body: JSONValue,
    now: Optional[int] = None,
) -> CredentialPayload:
    """Verify a bearer token against the body actually transmitted.

    Returns the credential payload if valid. Raises DigestMismatchError,
    ExpiredCredentialError, InvalidSignatureError, or MalformedTokenError.
    """
    _, payload, signature = decode_token(token)

    if digest(body) != payload.digest:
        raise DigestMismatchError("Request body does not match credential digest")

    current = int(time.time()) if now is None else int(now)
    if current > payload.exp:
        raise ExpiredCredentialError(
            f"Credential expired at {payload.exp} (now {current})"
        )

    message = token.strip().rsplit(".", 1)[0]
    recovered = recover_signer(message, signature)
    if recovered.lower() != payload.iss.lower():
        raise InvalidSignatureError(
            f"Signature recovers to {recovered}, credential claims {payload.iss}"
        )
    return payload
