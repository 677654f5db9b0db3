"""
Device-bound key store.

Every device has exactly one AES-256-GCM key, generated locally on first use
and never derived from a user secret. It protects private keys at rest on
this device and is never used for message content.
"""

import json
import asyncio
import logging
from typing import Any, Optional, Tuple
from cryptography.exceptions import InvalidTag

from e2ee.primitives import (
    generate_symmetric_key,
    generate_iv,
    aes_gcm_encrypt,
    aes_gcm_decrypt,
    AES_KEY_SIZE,
    StorageCorruptError,
)
from .storage import LocalKeyStore

logger = logging.getLogger(__name__)


def encrypt_blob(data: Any, device_key: bytes) -> Tuple[bytes, bytes]:
    """
    Encrypt a JSON-serializable value with the device key.

    Args:
        data: Value to protect
        device_key: 32-byte device key

    Returns:
        Tuple of (ciphertext, iv)
    """
    iv = generate_iv()
    ciphertext = aes_gcm_encrypt(device_key, iv, json.dumps(data).encode("utf-8"))
    return ciphertext, iv


def decrypt_blob(ciphertext: bytes, iv: bytes, device_key: bytes) -> Any:
    """
    Decrypt a value encrypted with ``encrypt_blob``.

    Raises:
        StorageCorruptError: If the data was altered or a different device key
            was used to encrypt it
    """
    try:
        plaintext = aes_gcm_decrypt(device_key, iv, ciphertext)
    except (InvalidTag, ValueError) as e:
        raise StorageCorruptError("Stored record failed authentication") from e

    try:
        return json.loads(plaintext.decode("utf-8"))
    except ValueError as e:
        raise StorageCorruptError("Stored record is not valid JSON") from e


class DeviceKeyStore:
    """
    Creates, caches and (on explicit request) destroys the device key.

    The cached key is only trusted while it still matches the stored one, so a
    reset made through another instance on the same database is picked up.

    Creation is serialized behind one lock, and the store only keeps the first
    key persisted, so concurrent first-use callers always end up with the same
    key.
    """

    def __init__(self, store: LocalKeyStore):
        self.store = store
        self._device_key: Optional[bytes] = None
        self._lock = asyncio.Lock()

    async def get_or_create_device_key(self) -> bytes:
        """
        Return the device key, generating and persisting it on first use.

        Returns:
            32-byte AES-256-GCM key
        """
        stored = self.store.get_device_key()
        if stored is not None and stored == self._device_key:
            return stored

        async with self._lock:
            key = self.store.get_device_key()
            if self._device_key is not None and key != self._device_key:
                logger.warning("Device key was replaced or cleared elsewhere; dropping cached key")
                self._device_key = None
            if key is not None and key == self._device_key:
                return key

            if key is None:
                candidate = generate_symmetric_key()
                key = self.store.put_device_key_if_absent(candidate)
                if key == candidate:
                    logger.info("Generated new device key")

            if len(key) != AES_KEY_SIZE:
                raise StorageCorruptError("Device key has the wrong length")

            self._device_key = key
            return key

    def has_device_key(self) -> bool:
        return self.store.get_device_key() is not None

    async def clear_device_key(self):
        """
        Permanently delete the device key.

        Every key record on this device becomes unreadable. Nothing calls this
        implicitly; it is a user-initiated reset.
        """
        async with self._lock:
            logger.warning("Clearing device key - all stored keys will be inaccessible")
            self.store.delete_device_key()
            self._device_key = None
