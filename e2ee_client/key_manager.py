"""
Key management for per-user RSA keypairs.

Handles generation, device-bound storage, restoration and password-protected
backup of each user's keys. A user is either Absent (no record on this device)
or Present (a record encrypted under the device key exists).
"""

import json
import time
import asyncio
import logging
from typing import Any, Dict, Optional
from datetime import datetime, timezone
from dataclasses import dataclass
from cryptography.exceptions import InvalidTag

from e2ee.hybrid import KeyPair, generate_key_pair
from e2ee.primitives import (
    generate_iv,
    generate_salt,
    aes_gcm_encrypt,
    aes_gcm_decrypt,
    derive_backup_key,
    export_private_key_pem,
    export_public_key_pem,
    import_private_key_pem,
    import_private_key_jwk,
    import_public_key_pem,
    b64encode,
    b64decode,
    CryptoError,
    BackupImportError,
    KeyNotFoundError,
    StorageCorruptError,
    UnsupportedVersionError,
)
from .storage import LocalKeyStore, StoredKeyRecord
from .device_key import DeviceKeyStore, encrypt_blob, decrypt_blob

logger = logging.getLogger(__name__)

BACKUP_VERSION = 1
MIN_BACKUP_PASSWORD_LENGTH = 8


def _now_ms() -> int:
    return int(time.time() * 1000)


def _iso(epoch_ms: Optional[int]) -> Optional[str]:
    if epoch_ms is None:
        return None
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc).isoformat()


@dataclass
class BackupRecord:
    """
    Password-protected export of a user's keypair.

    Attributes:
        version: Backup format version
        user_id: User the backup was created for
        public_key_pem: SPKI PEM public key
        encrypted_private_key: Password-encrypted PKCS#8 PEM private key
        salt: PBKDF2 salt
        iv: AES-GCM nonce
        created_at: Creation time, epoch milliseconds
    """
    version: int
    user_id: str
    public_key_pem: str
    encrypted_private_key: bytes
    salt: bytes
    iv: bytes
    created_at: int

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase wire representation"""
        return {
            "version": self.version,
            "userId": self.user_id,
            "publicKeyPem": self.public_key_pem,
            "encryptedPrivateKey": b64encode(self.encrypted_private_key),
            "salt": b64encode(self.salt),
            "iv": b64encode(self.iv),
            "createdAt": self.created_at,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, serialized: str) -> "BackupRecord":
        """
        Parse a serialized backup.

        Raises:
            UnsupportedVersionError: If the backup version is not supported
            BackupImportError: If the backup is malformed
        """
        try:
            data = json.loads(serialized)
        except (TypeError, ValueError, RecursionError) as e:
            raise BackupImportError("Backup import failed") from e
        if not isinstance(data, dict):
            raise BackupImportError("Backup import failed")

        version = data.get("version")
        if type(version) is not int or version != BACKUP_VERSION:
            raise UnsupportedVersionError(f"Unsupported backup version: {version!r}")

        if not isinstance(data.get("publicKeyPem"), str):
            raise BackupImportError("Backup import failed")

        try:
            return cls(
                version=data["version"],
                user_id=str(data.get("userId", "")),
                public_key_pem=data["publicKeyPem"],
                encrypted_private_key=b64decode(data["encryptedPrivateKey"]),
                salt=b64decode(data["salt"]),
                iv=b64decode(data["iv"]),
                created_at=int(data.get("createdAt") or 0),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise BackupImportError("Backup import failed") from e


@dataclass
class EncryptionStatus:
    """Summary of the encryption state for one user on this device"""
    user_id: str
    has_user_keys: bool
    has_device_key: bool
    key_created_at: Optional[str] = None
    key_imported_at: Optional[str] = None


class KeyManager:
    """
    Manages RSA keypairs with device-key protected storage.

    Cryptographic work runs in worker threads so the event loop stays
    responsive; storage access happens on the loop thread.
    """

    def __init__(self, store: LocalKeyStore, device_keys: Optional[DeviceKeyStore] = None):
        """
        Initialize the key manager.

        Args:
            store: Local key store for records and the device key
            device_keys: Device key store; one is created over ``store`` if omitted
        """
        self.store = store
        self.device_keys = device_keys or DeviceKeyStore(store)

    async def initialize_keys(self, user_id: str) -> KeyPair:
        """
        Generate and persist a new keypair for a user.

        The public key is not registered with the key directory; callers do
        that once this returns.

        Args:
            user_id: Owner of the keys

        Returns:
            The live keypair

        Raises:
            KeyGenError: If key generation is unavailable
        """
        logger.info("Initializing keys for user %s", user_id)

        key_pair = await asyncio.to_thread(generate_key_pair)
        private_key_pem = export_private_key_pem(key_pair.private_key)

        device_key = await self.device_keys.get_or_create_device_key()
        encrypted, iv = await asyncio.to_thread(encrypt_blob, private_key_pem, device_key)

        self.store.put_record(StoredKeyRecord(
            user_id=user_id,
            encrypted_private_key=encrypted,
            iv=iv,
            public_key_pem=key_pair.public_key_pem,
            created_at=_now_ms(),
        ))

        logger.info("Keys initialized and stored for user %s", user_id)
        return key_pair

    async def restore_keys(self, user_id: str) -> Optional[KeyPair]:
        """
        Load a user's keypair from this device.

        Returns:
            The keypair, or None if no record exists or it cannot be decrypted
        """
        record = self.store.get_record(user_id)
        if record is None:
            logger.info("No keys found for user %s", user_id)
            return None

        try:
            device_key = await self.device_keys.get_or_create_device_key()
            private_key_pem = await asyncio.to_thread(
                decrypt_blob, record.encrypted_private_key, record.iv, device_key
            )
            if not isinstance(private_key_pem, str):
                raise StorageCorruptError("Stored private key has an unexpected type")
            private_key = import_private_key_pem(private_key_pem)
            public_key = import_public_key_pem(record.public_key_pem)
        except CryptoError as e:
            logger.error("Failed to restore keys for user %s: %s", user_id, e)
            return None

        logger.info("Keys restored for user %s", user_id)
        return KeyPair(
            public_key=public_key,
            private_key=private_key,
            public_key_pem=record.public_key_pem,
        )

    async def has_keys(self, user_id: str) -> bool:
        """Check whether a key record exists for a user (no decryption)"""
        return self.store.has_record(user_id)

    async def delete_keys(self, user_id: str):
        """
        Remove a user's key record.

        The device key is left in place: other accounts on this device may
        still depend on it.
        """
        self.store.delete_record(user_id)
        logger.info("Keys deleted for user %s", user_id)

    async def export_backup(self, user_id: str, backup_password: str) -> str:
        """
        Export a user's keypair encrypted under a backup password.

        Args:
            user_id: Owner of the keys
            backup_password: Password protecting the backup, at least
                ``MIN_BACKUP_PASSWORD_LENGTH`` characters

        Returns:
            Serialized BackupRecord (JSON)

        Raises:
            KeyNotFoundError: If the user has no keys on this device
            StorageCorruptError: If the stored record cannot be decrypted
            ValueError: If the password is too short
        """
        if len(backup_password) < MIN_BACKUP_PASSWORD_LENGTH:
            raise ValueError(
                f"Backup password must be at least {MIN_BACKUP_PASSWORD_LENGTH} characters"
            )

        record = self.store.get_record(user_id)
        if record is None:
            raise KeyNotFoundError("No keys found to export")

        device_key = await self.device_keys.get_or_create_device_key()
        private_key_pem = await asyncio.to_thread(
            decrypt_blob, record.encrypted_private_key, record.iv, device_key
        )
        if not isinstance(private_key_pem, str):
            raise StorageCorruptError("Stored private key has an unexpected type")

        salt = generate_salt()
        iv = generate_iv()
        backup_key = await asyncio.to_thread(derive_backup_key, backup_password, salt)
        encrypted = aes_gcm_encrypt(backup_key, iv, private_key_pem.encode("utf-8"))

        backup = BackupRecord(
            version=BACKUP_VERSION,
            user_id=user_id,
            public_key_pem=record.public_key_pem,
            encrypted_private_key=encrypted,
            salt=salt,
            iv=iv,
            created_at=_now_ms(),
        )

        logger.info("Key backup created for user %s", user_id)
        return backup.to_json()

    async def import_backup(self, serialized_backup: str, backup_password: str, user_id: str) -> bool:
        """
        Restore a keypair from a backup and store it under this device's key.

        Nothing is written unless the backup decrypts and its private key
        matches its public key.

        Args:
            serialized_backup: Output of ``export_backup``
            backup_password: Password the backup was created with
            user_id: User to store the keys for

        Returns:
            True once the keys are stored

        Raises:
            UnsupportedVersionError: If the backup version is not supported
            BackupImportError: On a wrong password or a corrupt backup
        """
        logger.info("Importing key backup for user %s", user_id)

        backup = BackupRecord.from_json(serialized_backup)
        if backup.user_id and backup.user_id != user_id:
            logger.warning("Backup was created for a different user id; importing for %s", user_id)

        private_key_pem = await asyncio.to_thread(self._open_backup, backup, backup_password)

        device_key = await self.device_keys.get_or_create_device_key()
        encrypted, iv = await asyncio.to_thread(encrypt_blob, private_key_pem, device_key)

        now = _now_ms()
        self.store.put_record(StoredKeyRecord(
            user_id=user_id,
            encrypted_private_key=encrypted,
            iv=iv,
            public_key_pem=backup.public_key_pem,
            created_at=now,
            imported_at=now,
        ))

        logger.info("Key backup imported for user %s", user_id)
        return True

    @staticmethod
    def _open_backup(backup: BackupRecord, backup_password: str) -> str:
        # Every failure maps to the same error so callers cannot tell a wrong
        # password from a damaged file.
        try:
            backup_key = derive_backup_key(backup_password, backup.salt)
            plaintext = aes_gcm_decrypt(
                backup_key, backup.iv, backup.encrypted_private_key
            ).decode("utf-8")
            if plaintext.lstrip().startswith("{"):
                # Older backups carry the private key as a JWK
                private_key = import_private_key_jwk(json.loads(plaintext))
                private_key_pem = export_private_key_pem(private_key)
            else:
                private_key_pem = plaintext
                private_key = import_private_key_pem(private_key_pem)
            public_key = import_public_key_pem(backup.public_key_pem)
        except (InvalidTag, ValueError, RecursionError, CryptoError) as e:
            raise BackupImportError("Backup import failed") from e

        if export_public_key_pem(private_key.public_key()) != export_public_key_pem(public_key):
            raise BackupImportError("Backup import failed")
        return private_key_pem

    async def get_encryption_status(self, user_id: str) -> EncryptionStatus:
        """Report whether a user and this device have keys"""
        record = self.store.get_record(user_id)
        return EncryptionStatus(
            user_id=user_id,
            has_user_keys=record is not None,
            has_device_key=self.device_keys.has_device_key(),
            key_created_at=_iso(record.created_at) if record else None,
            key_imported_at=_iso(record.imported_at) if record else None,
        )

    async def clear_device_key(self):
        """Destroy the device key; see ``DeviceKeyStore.clear_device_key``"""
        await self.device_keys.clear_device_key()
