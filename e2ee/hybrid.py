"""
Hybrid message encryption: AES-256-GCM for the message body, RSA-OAEP for the
one-time AES key.

Each message gets its own AES key and IV; the AES key only ever leaves this
module wrapped for a single recipient's public key.
"""

import logging
from typing import Any
from dataclasses import dataclass
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey

from .primitives import (
    generate_rsa_keypair,
    generate_symmetric_key,
    generate_iv,
    aes_gcm_encrypt,
    aes_gcm_decrypt,
    wrap_key,
    unwrap_key,
    export_public_key_pem,
    import_public_key_pem,
    b64encode,
    b64decode,
    CryptoError,
    DecryptError,
    PayloadFormatError,
)
from .payload import PAYLOAD_VERSION, ALGORITHM, MessagePayload, parse_message_payload
from .envelope import Ok, Err, DecryptResult

logger = logging.getLogger(__name__)


@dataclass
class KeyPair:
    """
    A live RSA keypair.

    Attributes:
        public_key: Key used by others to encrypt to this user
        private_key: Key used by this user to decrypt
        public_key_pem: SPKI PEM form of the public key, for the key directory
    """
    public_key: RSAPublicKey
    private_key: RSAPrivateKey
    public_key_pem: str


def generate_key_pair() -> KeyPair:
    """
    Generate an RSA-OAEP keypair (2048-bit, e=65537, SHA-256).

    Raises:
        KeyGenError: If the platform lacks the primitive
    """
    private_key = generate_rsa_keypair()
    public_key = private_key.public_key()
    return KeyPair(
        public_key=public_key,
        private_key=private_key,
        public_key_pem=export_public_key_pem(public_key),
    )


def encrypt_for_recipient(plaintext: str, recipient_public_key_pem: str) -> MessagePayload:
    """
    Encrypt a message so only the holder of the matching private key can read it.

    Args:
        plaintext: Message text
        recipient_public_key_pem: Recipient's SPKI PEM public key

    Returns:
        MessagePayload with base64 fields

    Raises:
        PayloadFormatError: If the recipient key cannot be imported
    """
    recipient_public_key = import_public_key_pem(recipient_public_key_pem)

    aes_key = generate_symmetric_key()
    iv = generate_iv()
    ciphertext = aes_gcm_encrypt(aes_key, iv, plaintext.encode("utf-8"))
    wrapped_key = wrap_key(recipient_public_key, aes_key)

    return MessagePayload(
        version=PAYLOAD_VERSION,
        alg=ALGORITHM,
        iv=b64encode(iv),
        wrapped_key=b64encode(wrapped_key),
        ciphertext=b64encode(ciphertext),
    )


def decrypt_payload(payload: Any, private_key: RSAPrivateKey) -> str:
    """
    Decrypt a message payload with the recipient's private key.

    Args:
        payload: MessagePayload, wire dict or JSON string
        private_key: Recipient's RSA private key

    Returns:
        Decrypted plaintext

    Raises:
        PayloadFormatError: If the payload is malformed
        DecryptError: If the key is wrong or the payload was tampered with
    """
    message = parse_message_payload(payload)

    try:
        iv = b64decode(message.iv)
        wrapped_key = b64decode(message.wrapped_key)
        ciphertext = b64decode(message.ciphertext)
    except ValueError as e:
        raise PayloadFormatError("Invalid message payload: bad base64") from e

    aes_key = unwrap_key(private_key, wrapped_key)

    try:
        plaintext = aes_gcm_decrypt(aes_key, iv, ciphertext)
    except (InvalidTag, ValueError) as e:
        raise DecryptError("Authentication failed") from e

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptError("Plaintext is not valid UTF-8") from e


def try_decrypt_payload(payload: Any, private_key: RSAPrivateKey) -> DecryptResult:
    """
    Decrypt a payload without raising for per-message failures.

    Returns:
        Ok(plaintext) or Err(reason)
    """
    try:
        return Ok(decrypt_payload(payload, private_key))
    except PayloadFormatError as e:
        logger.warning("Rejected malformed message payload: %s", e)
        return Err(str(e), e)
    except CryptoError as e:
        logger.warning("Failed to decrypt message: %s", e)
        return Err(str(e), e)
    except Exception as e:
        logger.exception("Unexpected error while decrypting message")
        return Err(str(e) or type(e).__name__, e)
