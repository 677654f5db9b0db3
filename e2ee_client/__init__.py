"""
Client-side key lifecycle and message encoding for end-to-end encrypted chat.
"""

from .storage import LocalKeyStore, StoredKeyRecord
from .device_key import DeviceKeyStore, encrypt_blob, decrypt_blob
from .key_manager import KeyManager, BackupRecord, EncryptionStatus
from .directory import KeyDirectoryClient, KeyDirectoryError
from .codec import MessageCodec, OutgoingMessage, DecodedMessage, FALLBACK_TEXT
from .session import EncryptionSession
from .config import ClientConfig

__all__ = [
    "LocalKeyStore",
    "StoredKeyRecord",
    "DeviceKeyStore",
    "encrypt_blob",
    "decrypt_blob",
    "KeyManager",
    "BackupRecord",
    "EncryptionStatus",
    "KeyDirectoryClient",
    "KeyDirectoryError",
    "MessageCodec",
    "OutgoingMessage",
    "DecodedMessage",
    "FALLBACK_TEXT",
    "EncryptionSession",
    "ClientConfig",
]
