"""secp256k1 identity management — key generation, encrypted storage, loading.

Identity format: checksummed 0x address (what tokens carry as ``iss``).
Private keys encrypted at rest via argon2id + secretbox (PyNaCl).
Passphrase-free mode for automated agents (warns in logs).
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from eth_account import Account
from nacl.exceptions import CryptoError
from nacl.pwhash import argon2id
from nacl.secret import SecretBox
from nacl.utils import random as nacl_random

from mindchain.exceptions import InvalidPassphraseError, KeyNotFoundError
from mindchain.models import Identity
from mindchain.signing import LocalAccountSigner
from mindchain.store import MindchainStore

logger = logging.getLogger(__name__)

_SALT_SIZE = 16
_KEY_SIZE = 32


def _derive_box(passphrase: str, salt: bytes) -> SecretBox:
    key = argon2id.kdf(
        _KEY_SIZE,
        passphrase.encode("utf-8"),
        salt,
        opslimit=argon2id.OPSLIMIT_INTERACTIVE,
        memlimit=argon2id.MEMLIMIT_INTERACTIVE,
    )
    return SecretBox(key)


def _encrypt_key(private_key: bytes, passphrase: str) -> bytes:
    """Returns: salt (16) + nonce (24) + ciphertext (32 key + 16 mac)."""
    salt = nacl_random(_SALT_SIZE)
    return salt + bytes(_derive_box(passphrase, salt).encrypt(private_key))


def _decrypt_key(blob: bytes, passphrase: str) -> bytes:
    salt, encrypted = blob[:_SALT_SIZE], blob[_SALT_SIZE:]
    try:
        return _derive_box(passphrase, salt).decrypt(encrypted)
    except CryptoError as e:
        raise InvalidPassphraseError("Wrong passphrase for stored key") from e


def _save(
    name: str,
    private_key: bytes,
    store: MindchainStore,
    passphrase: Optional[str],
) -> Identity:
    address = Account.from_key(private_key).address

    if passphrase:
        blob = _encrypt_key(private_key, passphrase)
        is_encrypted = True
    else:
        logger.warning(
            "Storing identity %s without passphrase, private key is unencrypted. "
            "Acceptable for automated agents, not recommended for humans.",
            address,
        )
        blob = private_key
        is_encrypted = False

    is_default = not store.list_identities()
    store.save_identity(
        address=address,
        name=name,
        private_key_encrypted=blob,
        is_encrypted=is_encrypted,
        is_default=is_default,
    )
    return _row_to_identity(store.get_identity(address))


def generate_identity(
    name: str,
    store: MindchainStore,
    passphrase: Optional[str] = None,
) -> Identity:
    """Generate a new secp256k1 key and save it to the store.

    The first identity in a store becomes the default.
    """
    account = Account.create()
    return _save(name, bytes(account.key), store, passphrase)


def import_identity(
    name: str,
    private_key: Union[str, bytes],
    store: MindchainStore,
    passphrase: Optional[str] = None,
) -> Identity:
    """Import an existing private key (hex, 0x prefix optional)."""
    if isinstance(private_key, str):
        hex_part = private_key[2:] if private_key.startswith("0x") else private_key
        try:
            private_key = bytes.fromhex(hex_part)
        except ValueError as e:
            raise ValueError("Private key must be hex-encoded") from e
    if len(private_key) != _KEY_SIZE:
        raise ValueError(f"Private key must be {_KEY_SIZE} bytes")
    return _save(name, private_key, store, passphrase)


def load_signer(
    address: str,
    store: MindchainStore,
    passphrase: Optional[str] = None,
) -> LocalAccountSigner:
    """Load a stored identity as a signer.

    Raises:
        KeyNotFoundError: If the identity doesn't exist, or is encrypted
            and no passphrase was given.
        InvalidPassphraseError: If the passphrase is wrong.
    """
    blob, is_encrypted = store.get_private_key(address)
    if is_encrypted:
        if not passphrase:
            raise KeyNotFoundError(f"Key {address} is encrypted: passphrase required")
        private_key = _decrypt_key(blob, passphrase)
    else:
        private_key = blob
    return LocalAccountSigner.from_key(private_key)


def _row_to_identity(row: dict) -> Identity:
    return Identity(
        address=row["address"],
        name=row["name"],
        is_encrypted=bool(row["is_encrypted"]),
        is_default=bool(row["is_default"]),
    )


def list_identities(store: MindchainStore) -> list[Identity]:
    return [_row_to_identity(r) for r in store.list_identities()]


def get_default_identity(store: MindchainStore) -> Optional[Identity]:
    row = store.get_default_identity()
    return _row_to_identity(row) if row else None


def set_default_identity(address: str, store: MindchainStore) -> None:
    store.set_default_identity(address)
