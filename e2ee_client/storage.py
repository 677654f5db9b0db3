"""
Persistent local key storage for the chat client.

Holds one StoredKeyRecord per user id plus a single device-key slot, in a
SQLite database on disk. Private-key material in this store is always
encrypted under the device key; this module never sees it in the clear.
"""

import sqlite3
from typing import Optional
from pathlib import Path
from dataclasses import dataclass


DEVICE_KEY_SLOT = "device-key"


@dataclass
class StoredKeyRecord:
    """
    A user's keypair as persisted on this device.

    Attributes:
        user_id: Owner of the keys
        encrypted_private_key: Device-key encrypted private key (ciphertext + tag)
        iv: AES-GCM nonce used for ``encrypted_private_key``
        public_key_pem: SPKI PEM public key
        created_at: Creation time, epoch milliseconds
        imported_at: Time the record was restored from a backup, if it was
    """
    user_id: str
    encrypted_private_key: bytes
    iv: bytes
    public_key_pem: str
    created_at: int
    imported_at: Optional[int] = None


class LocalKeyStore:
    """
    SQLite-backed key-value store for key records and the device key.
    """

    def __init__(self, db_path: str = ":memory:"):
        """
        Open (or create) the local key database.

        Args:
            db_path: Database file path, or ``":memory:"`` for a throwaway store
        """
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.db_path = db_path
        self.db: Optional[sqlite3.Connection] = sqlite3.connect(db_path)
        self._init_database()

    def _init_database(self):
        """Initialize SQLite database"""
        cursor = self.db.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS key_records (
                user_id TEXT PRIMARY KEY,
                encrypted_private_key BLOB NOT NULL,
                iv BLOB NOT NULL,
                public_key_pem TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                imported_at INTEGER
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS device_keys (
                slot TEXT PRIMARY KEY,
                key_material BLOB NOT NULL
            )
        """)

        self.db.commit()

    def _connection(self) -> sqlite3.Connection:
        if not self.db:
            raise ValueError("Key store is closed")
        return self.db

    def get_record(self, user_id: str) -> Optional[StoredKeyRecord]:
        """
        Load a user's key record.

        Returns:
            The record, or None if the user has no keys on this device
        """
        cursor = self._connection().cursor()
        cursor.execute(
            "SELECT user_id, encrypted_private_key, iv, public_key_pem, created_at, imported_at "
            "FROM key_records WHERE user_id = ?",
            (user_id,)
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return StoredKeyRecord(
            user_id=row[0],
            encrypted_private_key=bytes(row[1]),
            iv=bytes(row[2]),
            public_key_pem=row[3],
            created_at=row[4],
            imported_at=row[5],
        )

    def put_record(self, record: StoredKeyRecord):
        """Insert or replace a user's key record"""
        db = self._connection()
        db.execute(
            "INSERT OR REPLACE INTO key_records "
            "(user_id, encrypted_private_key, iv, public_key_pem, created_at, imported_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                record.user_id,
                record.encrypted_private_key,
                record.iv,
                record.public_key_pem,
                record.created_at,
                record.imported_at,
            )
        )
        db.commit()

    def has_record(self, user_id: str) -> bool:
        cursor = self._connection().cursor()
        cursor.execute("SELECT 1 FROM key_records WHERE user_id = ?", (user_id,))
        return cursor.fetchone() is not None

    def delete_record(self, user_id: str):
        """Remove a user's key record; a missing record is not an error"""
        db = self._connection()
        db.execute("DELETE FROM key_records WHERE user_id = ?", (user_id,))
        db.commit()

    def list_users(self) -> list[str]:
        """User ids with a key record on this device"""
        cursor = self._connection().cursor()
        cursor.execute("SELECT user_id FROM key_records ORDER BY user_id")
        return [row[0] for row in cursor.fetchall()]

    def get_device_key(self) -> Optional[bytes]:
        """Raw device key material, or None if none has been created"""
        cursor = self._connection().cursor()
        cursor.execute("SELECT key_material FROM device_keys WHERE slot = ?", (DEVICE_KEY_SLOT,))
        row = cursor.fetchone()
        return bytes(row[0]) if row else None

    def put_device_key_if_absent(self, key_material: bytes) -> bytes:
        """
        Persist device key material unless a key already exists.

        Returns:
            The key that is persisted afterwards, which is the existing key if
            another writer got there first
        """
        db = self._connection()
        db.execute(
            "INSERT OR IGNORE INTO device_keys (slot, key_material) VALUES (?, ?)",
            (DEVICE_KEY_SLOT, key_material)
        )
        db.commit()
        return self.get_device_key()

    def delete_device_key(self):
        db = self._connection()
        db.execute("DELETE FROM device_keys WHERE slot = ?", (DEVICE_KEY_SLOT,))
        db.commit()

    def close(self):
        """Close database connection"""
        if self.db:
            self.db.close()
            self.db = None
