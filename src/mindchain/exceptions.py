"""MindChain error hierarchy."""


class MindchainError(Exception):
    """Base exception for all MindChain errors."""


class MalformedInputError(MindchainError):
    """Request body is not JSON-representable (cycle, bad key, unsupported type)."""


class SigningError(MindchainError):
    """Signer unavailable, rejected the request, failed, or timed out."""


class MalformedTokenError(MindchainError):
    """Bearer token is not three decodable base64url segments."""


class ExpiredCredentialError(MindchainError):
    """Credential is past its exp timestamp."""


class DigestMismatchError(MindchainError):
    """Recomputed body digest differs from the digest claimed by the token."""


class InvalidSignatureError(MindchainError):
    """Recovered signer address does not match the token issuer."""


class ReplayedCredentialError(MindchainError):
    """Credential jti has already been presented."""


class KeyNotFoundError(MindchainError):
    """Requested identity or private key does not exist in the store."""


class InvalidPassphraseError(MindchainError):
    """Passphrase failed to decrypt a stored private key."""


class StoreError(MindchainError):
    """SQLite storage operation failed."""


class ConfigurationError(MindchainError):
    """Required setting missing from arguments and environment."""


class MissingCredentialError(MindchainError):
    """Request carries no bearer credential."""
