"""MindChain — signed, replay-resistant requests for CRE workflow gateways."""

from pathlib import Path

_VERSION_FILE = Path(__file__).resolve().parent.parent.parent / "VERSION"
__version__ = _VERSION_FILE.read_text().strip() if _VERSION_FILE.exists() else "0.0.0"

from mindchain.exceptions import (
    MindchainError,
    MalformedInputError,
    SigningError,
    MalformedTokenError,
    ExpiredCredentialError,
    DigestMismatchError,
    InvalidSignatureError,
    ReplayedCredentialError,
    MissingCredentialError,
    KeyNotFoundError,
    InvalidPassphraseError,
    StoreError,
    ConfigurationError,
)

__all__ = [
    "__version__",
    "MindchainError",
    "MalformedInputError",
    "SigningError",
    "MalformedTokenError",
    "ExpiredCredentialError",
    "DigestMismatchError",
    "InvalidSignatureError",
    "ReplayedCredentialError",
    "MissingCredentialError",
    "KeyNotFoundError",
    "InvalidPassphraseError",
    "StoreError",
    "ConfigurationError",
]
