"""Tests for mindchain.identity and mindchain.store — keystore, encryption, defaults."""

import asyncio

import pytest
from eth_account import Account

from mindchain.exceptions import InvalidPassphraseError, KeyNotFoundError
from mindchain.identity import (
    generate_identity,
    get_default_identity,
    import_identity,
    list_identities,
    load_signer,
    set_default_identity,
)
from mindchain.signing import authenticate, verify_token
from mindchain.store import MindchainStore
from tests.conftest import KEY_A


class TestGenerateIdentity:
    def test_generate_unencrypted(self, store):
        identity = generate_identity("agent", store)
        assert identity.address.startswith("0x")
        assert len(identity.address) == 42
        assert identity.is_encrypted is False
        row = store.get_identity(identity.address)
        assert len(row["private_key_encrypted"]) == 32

    def test_generate_encrypted(self, store):
        identity = generate_identity("secure", store, passphrase="hunter2")
        row = store.get_identity(identity.address)
        assert row["is_encrypted"] == 1
        # salt + nonce + key + mac
        assert len(row["private_key_encrypted"]) == 16 + 24 + 32 + 16

    def test_unencrypted_logs_warning(self, store, caplog):
        with caplog.at_level("WARNING", logger="mindchain.identity"):
            generate_identity("agent", store)
        assert "without passphrase" in caplog.text

    def test_first_identity_is_default(self, store):
        identity = generate_identity("first", store)
        assert identity.is_default is True
        assert get_default_identity(store).address == identity.address

    def test_second_identity_not_default(self, store):
        first = generate_identity("first", store)
        second = generate_identity("second", store)
        assert second.is_default is False
        assert get_default_identity(store).address == first.address


class TestImportIdentity:
    def test_import_hex(self, store):
        identity = import_identity("imported", KEY_A, store)
        assert identity.address == Account.from_key(KEY_A).address

    def test_import_without_prefix(self, store):
        identity = import_identity("imported", KEY_A[2:], store)
        assert identity.address == Account.from_key(KEY_A).address

    def test_import_bad_hex(self, store):
        with pytest.raises(ValueError, match="hex"):
            import_identity("bad", "0xnothex", store)

    def test_import_wrong_length(self, store):
        with pytest.raises(ValueError, match="32 bytes"):
            import_identity("short", "0x1234", store)


class TestLoadSigner:
    def test_load_unencrypted(self, store):
        identity = generate_identity("agent", store)
        signer = load_signer(identity.address, store)
        assert signer.address == identity.address

    def test_load_encrypted(self, store):
        identity = generate_identity("agent", store, passphrase="pw")
        signer = load_signer(identity.address, store, passphrase="pw")
        assert signer.address == identity.address

    def test_load_case_insensitive_address(self, store):
        identity = generate_identity("agent", store)
        signer = load_signer(identity.address.lower(), store)
        assert signer.address == identity.address

    def test_wrong_passphrase(self, store):
        identity = generate_identity("agent", store, passphrase="right")
        with pytest.raises(InvalidPassphraseError):
            load_signer(identity.address, store, passphrase="wrong")

    def test_encrypted_without_passphrase(self, store):
        identity = generate_identity("agent", store, passphrase="pw")
        with pytest.raises(KeyNotFoundError, match="passphrase required"):
            load_signer(identity.address, store)

    def test_missing_identity(self, store):
        with pytest.raises(KeyNotFoundError):
            load_signer("0x" + "ab" * 20, store)

    def test_loaded_signer_mints_valid_tokens(self, store):
        identity = import_identity("agent", KEY_A, store, passphrase="pw")
        signer = load_signer(identity.address, store, passphrase="pw")
        body = {"hello": "world"}
        token = asyncio.run(authenticate(body, signer))
        assert verify_token(token, body).iss == identity.address


class TestDefaults:
    def test_list(self, store):
        generate_identity("a", store)
        generate_identity("b", store)
        names = [i.name for i in list_identities(store)]
        assert names == ["a", "b"]

    def test_set_default(self, store):
        generate_identity("a", store)
        second = generate_identity("b", store)
        set_default_identity(second.address, store)
        assert get_default_identity(store).address == second.address
        defaults = [i for i in list_identities(store) if i.is_default]
        assert len(defaults) == 1

    def test_reimport_keeps_default(self, store):
        first = import_identity("a", KEY_A, store)
        again = import_identity("a", KEY_A, store, passphrase="pw")
        assert again.is_default is True
        assert again.is_encrypted is True
        assert get_default_identity(store).address == first.address
        assert len(list_identities(store)) == 1
        signer = load_signer(first.address, store, passphrase="pw")
        assert signer.address == first.address

    def test_reimport_keeps_created_at(self, store):
        identity = import_identity("a", KEY_A, store)
        store._conn.execute(
            "UPDATE identities SET created_at = ? WHERE address = ?",
            ("2020-01-01T00:00:00Z", identity.address),
        )
        store._conn.commit()
        import_identity("renamed", KEY_A, store)
        row = store.get_identity(identity.address)
        assert row["created_at"] == "2020-01-01T00:00:00Z"
        assert row["name"] == "renamed"

    def test_reimport_non_default_stays_non_default(self, store):
        first = generate_identity("first", store)
        import_identity("second", KEY_A, store)
        again = import_identity("second", KEY_A, store, passphrase="pw")
        assert again.is_default is False
        assert get_default_identity(store).address == first.address

    def test_set_default_unknown(self, store):
        with pytest.raises(KeyNotFoundError):
            set_default_identity("0x" + "cd" * 20, store)

    def test_no_default_when_empty(self, store):
        assert get_default_identity(store) is None

    def test_find_by_name(self, store):
        identity = generate_identity("Worker", store)
        assert store.find_identity_by_name("worker")["address"] == identity.address
        assert store.find_identity_by_name("nobody") is None


class TestStorePath:
    def test_env_path(self, tmp_path, monkeypatch):
        db = tmp_path / "nested" / "env.db"
        monkeypatch.setenv("MINDCHAIN_DB_PATH", str(db))
        with MindchainStore() as s:
            assert s.db_path == db
        assert db.exists()

    def test_explicit_path_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MINDCHAIN_DB_PATH", str(tmp_path / "env.db"))
        explicit = tmp_path / "explicit.db"
        with MindchainStore(db_path=explicit) as s:
            assert s.db_path == explicit
