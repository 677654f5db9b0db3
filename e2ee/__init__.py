"""
Cryptographic module for end-to-end encrypted chat.

Implements hybrid encryption with:
- AES-256-GCM for message payloads
- RSA-OAEP (2048-bit, SHA-256) for one-time key wrapping
- PBKDF2-SHA256 for password-protected key backups
"""

from .primitives import (
    CryptoError,
    KeyGenError,
    PayloadFormatError,
    DecryptError,
    StorageCorruptError,
    UnsupportedVersionError,
    BackupImportError,
    KeyNotFoundError,
)
from .payload import MessagePayload, parse_message_payload, ALGORITHM, PAYLOAD_VERSION
from .envelope import PlainText, Encrypted, Ok, Err, classify, needs_decryption
from .hybrid import (
    KeyPair,
    generate_key_pair,
    encrypt_for_recipient,
    decrypt_payload,
    try_decrypt_payload,
)

__all__ = [
    'CryptoError',
    'KeyGenError',
    'PayloadFormatError',
    'DecryptError',
    'StorageCorruptError',
    'UnsupportedVersionError',
    'BackupImportError',
    'KeyNotFoundError',
    'MessagePayload',
    'parse_message_payload',
    'ALGORITHM',
    'PAYLOAD_VERSION',
    'PlainText',
    'Encrypted',
    'Ok',
    'Err',
    'classify',
    'needs_decryption',
    'KeyPair',
    'generate_key_pair',
    'encrypt_for_recipient',
    'decrypt_payload',
    'try_decrypt_payload',
]
