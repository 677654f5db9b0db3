"""
Per-login encryption session.

Ties the key manager to the key directory for the login/logout flow:
restore local keys if present, otherwise create and register new ones.
"""

import logging
from typing import Optional

from e2ee.hybrid import KeyPair
from .key_manager import KeyManager
from .directory import KeyDirectoryClient, KeyDirectoryError, DEFAULT_KEY_ID

logger = logging.getLogger(__name__)


class EncryptionSession:
    """
    Holds the live keypair for the logged-in user.
    """

    def __init__(self, user_id: str, key_manager: KeyManager, directory: KeyDirectoryClient):
        self.user_id = user_id
        self.key_manager = key_manager
        self.directory = directory
        self.keys: Optional[KeyPair] = None

    @property
    def is_active(self) -> bool:
        return self.keys is not None

    async def start(self) -> KeyPair:
        """
        Restore this user's keys, or initialize and register new ones.

        If local initialization succeeds but registration fails, the local
        keys are kept and the registration error propagates; calling
        ``start`` again restores them and retries registration.

        Raises:
            KeyGenError: If new keys cannot be generated
            KeyDirectoryError: If the public key cannot be registered
        """
        keys = await self.key_manager.restore_keys(self.user_id)
        if keys is not None:
            self.keys = keys
            await self._ensure_registered(keys)
            return keys

        keys = await self.key_manager.initialize_keys(self.user_id)
        self.keys = keys
        await self.directory.register(self.user_id, keys.public_key_pem, DEFAULT_KEY_ID)
        logger.info("Encryption keys initialized and registered for %s", self.user_id)
        return keys

    async def _ensure_registered(self, keys: KeyPair):
        try:
            registered = await self.directory.fetch(self.user_id)
        except KeyDirectoryError as e:
            if e.status_code != 404:
                raise
            registered = None

        if registered != keys.public_key_pem:
            await self.directory.register(self.user_id, keys.public_key_pem, DEFAULT_KEY_ID)

    async def logout(self):
        """Forget the live keys and remove them from this device"""
        await self.key_manager.delete_keys(self.user_id)
        self.keys = None
