"""SQLite storage for local MindChain signing identities.

WAL mode, row_factory=sqlite3.Row, context manager, check_same_thread=False.
Private keys are stored as written by mindchain.identity (raw or encrypted).
"""

from __future__ import annotations

import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from mindchain.exceptions import KeyNotFoundError, StoreError

DEFAULT_DB_PATH = Path.home() / ".mindchain" / "mindchain.db"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS identities (
    address TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    private_key_encrypted BLOB,
    is_encrypted INTEGER NOT NULL DEFAULT 0,
    is_default INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_identities_name ON identities(name);
"""


def _now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _default_path() -> Path:
    env_path = os.environ.get("MINDCHAIN_DB_PATH")
    return Path(env_path) if env_path else DEFAULT_DB_PATH


class MindchainStore:
    """SQLite-backed keystore."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path else _default_path()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._init_schema()
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open keystore at {self.db_path}: {e}") from e

    def _init_schema(self):
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    def close(self):
        self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    # --- Identities ---

    def save_identity(
        self,
        address: str,
        name: str,
        private_key_encrypted: Optional[bytes] = None,
        is_encrypted: bool = False,
        is_default: bool = False,
    ) -> None:
        """Save a local identity (with private key).

        Re-saving an existing address replaces its name and key material but
        keeps its default flag and created_at.
        """
        try:
            if is_default:
                self._conn.execute(
                    "UPDATE identities SET is_default = 0 WHERE is_default = 1 AND address != ?",
                    (address,),
                )
            self._conn.execute(
                """INSERT INTO identities
                   (address, name, private_key_encrypted, is_encrypted, is_default, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT(address) DO UPDATE SET
                       name = excluded.name,
                       private_key_encrypted = excluded.private_key_encrypted,
                       is_encrypted = excluded.is_encrypted,
                       is_default = MAX(is_default, excluded.is_default)""",
                (address, name, private_key_encrypted,
                 int(is_encrypted), int(is_default), _now_iso()),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to save identity: {e}") from e

    def get_identity(self, address: str) -> dict:
        """Get an identity by address (case-insensitive). Raises KeyNotFoundError."""
        row = self._conn.execute(
            "SELECT * FROM identities WHERE LOWER(address) = LOWER(?)", (address,)
        ).fetchone()
        if row is None:
            raise KeyNotFoundError(f"Identity not found: {address}")
        return dict(row)

    def find_identity_by_name(self, name: str) -> Optional[dict]:
        row = self._conn.execute(
            "SELECT * FROM identities WHERE LOWER(name) = LOWER(?) ORDER BY created_at",
            (name,),
        ).fetchone()
        return dict(row) if row else None

    def list_identities(self) -> list[dict]:
        """List all local identities (without key material)."""
        rows = self._conn.execute(
            "SELECT address, name, is_encrypted, is_default, created_at "
            "FROM identities ORDER BY created_at, rowid"
        ).fetchall()
        return [dict(r) for r in rows]

    def get_default_identity(self) -> Optional[dict]:
        row = self._conn.execute(
            "SELECT * FROM identities WHERE is_default = 1"
        ).fetchone()
        return dict(row) if row else None

    def set_default_identity(self, address: str) -> None:
        row = self.get_identity(address)
        try:
            self._conn.execute("UPDATE identities SET is_default = 0 WHERE is_default = 1")
            self._conn.execute(
                "UPDATE identities SET is_default = 1 WHERE address = ?", (row["address"],)
            )
            self._conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to set default identity: {e}") from e

    def get_private_key(self, address: str) -> tuple[bytes, bool]:
        """Get stored private key bytes and whether they are encrypted."""
        row = self.get_identity(address)
        if row["private_key_encrypted"] is None:
            raise KeyNotFoundError(f"No private key stored for: {address}")
        return row["private_key_encrypted"], bool(row["is_encrypted"])
