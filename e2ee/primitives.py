"""
Cryptographic Primitives for End-to-End Encryption

This module provides the foundational cryptographic operations used by the
hybrid (AES-GCM + RSA-OAEP) message encryption scheme, the device-bound key
store and password-protected key backups.
"""

import os
import base64
import binascii
from typing import Union, List
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization, hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537
AES_KEY_SIZE = 32  # AES-256
IV_SIZE = 12  # 96-bit GCM nonce
SALT_SIZE = 16
PBKDF2_ITERATIONS = 100000


class CryptoError(Exception):
    """Base exception for cryptographic errors"""
    pass


class KeyGenError(CryptoError):
    """The platform lacks a primitive required to generate keys"""
    pass


class PayloadFormatError(CryptoError):
    """A message envelope is malformed or uses an unsupported algorithm"""
    pass


class DecryptError(CryptoError):
    """Wrong key or authentication tag mismatch"""
    pass


class StorageCorruptError(CryptoError):
    """A device-key protected local record could not be read"""
    pass


class UnsupportedVersionError(CryptoError):
    """A backup record declares a version this client cannot read"""
    pass


class BackupImportError(CryptoError):
    """A backup could not be imported (wrong password or corrupt record)"""
    pass


class KeyNotFoundError(CryptoError):
    """No stored keys exist for the requested user"""
    pass


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None
    )


def generate_rsa_keypair() -> RSAPrivateKey:
    """
    Generate an RSA keypair for OAEP encryption and key wrapping.

    Returns:
        The private key; the public half is available via ``public_key()``

    Raises:
        KeyGenError: If the backend cannot generate the key
    """
    try:
        return rsa.generate_private_key(
            public_exponent=RSA_PUBLIC_EXPONENT,
            key_size=RSA_KEY_SIZE,
        )
    except (UnsupportedAlgorithm, ValueError) as e:
        raise KeyGenError(f"Key pair generation failed: {e}") from e


def generate_symmetric_key() -> bytes:
    """Generate a fresh random AES-256 key"""
    return AESGCM.generate_key(bit_length=AES_KEY_SIZE * 8)


def generate_iv() -> bytes:
    """Generate a fresh random 12-byte AES-GCM IV"""
    return os.urandom(IV_SIZE)


def generate_salt() -> bytes:
    """Generate a fresh random 16-byte PBKDF2 salt"""
    return os.urandom(SALT_SIZE)


def aes_gcm_encrypt(key: bytes, iv: bytes, plaintext: bytes) -> bytes:
    """
    Encrypt data using AES-256-GCM.

    Args:
        key: 32-byte encryption key
        iv: 12-byte nonce, never reused with the same key
        plaintext: Data to encrypt

    Returns:
        ciphertext + tag (16 bytes)
    """
    return AESGCM(key).encrypt(iv, plaintext, None)


def aes_gcm_decrypt(key: bytes, iv: bytes, ciphertext: bytes) -> bytes:
    """
    Decrypt data using AES-256-GCM.

    Raises:
        InvalidTag: If the key is wrong or the data was tampered with
    """
    return AESGCM(key).decrypt(iv, ciphertext, None)


def wrap_key(public_key: RSAPublicKey, key: bytes) -> bytes:
    """RSA-OAEP encrypt the raw bytes of a symmetric key"""
    return public_key.encrypt(key, _oaep())


def unwrap_key(private_key: RSAPrivateKey, wrapped_key: bytes) -> bytes:
    """
    Recover a symmetric key wrapped with ``wrap_key``.

    Raises:
        DecryptError: If the key was wrapped for a different recipient or altered
    """
    try:
        key = private_key.decrypt(wrapped_key, _oaep())
    except ValueError as e:
        raise DecryptError("Key unwrap failed") from e
    if len(key) != AES_KEY_SIZE:
        raise DecryptError("Unwrapped key has the wrong length")
    return key


def derive_backup_key(password: str, salt: bytes) -> bytes:
    """
    Derive an AES-256 key from a backup password using PBKDF2.

    Args:
        password: User's backup password
        salt: Salt for key derivation

    Returns:
        32-byte encryption key
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=AES_KEY_SIZE,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(password.encode("utf-8"))


def export_public_key_pem(public_key: RSAPublicKey) -> str:
    """Serialize an RSA public key to SPKI PEM text"""
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    ).decode("ascii")


def import_public_key_pem(public_key_pem: str) -> RSAPublicKey:
    """
    Load an RSA public key from SPKI PEM text.

    Raises:
        PayloadFormatError: If the text is not an RSA public key
    """
    try:
        public_key = serialization.load_pem_public_key(public_key_pem.encode("ascii"))
    except (ValueError, TypeError, UnicodeEncodeError, UnsupportedAlgorithm) as e:
        raise PayloadFormatError("Public key import failed") from e
    if not isinstance(public_key, RSAPublicKey):
        raise PayloadFormatError("Public key is not an RSA key")
    return public_key


def export_private_key_pem(private_key: RSAPrivateKey) -> str:
    """Serialize an RSA private key to unencrypted PKCS#8 PEM text"""
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    ).decode("ascii")


def import_private_key_pem(private_key_pem: str) -> RSAPrivateKey:
    """
    Load an RSA private key from PKCS#8 PEM text.

    Raises:
        StorageCorruptError: If the text is not an RSA private key
    """
    try:
        private_key = serialization.load_pem_private_key(
            private_key_pem.encode("ascii"), password=None
        )
    except (ValueError, TypeError, UnicodeEncodeError, UnsupportedAlgorithm) as e:
        raise StorageCorruptError("Private key import failed") from e
    if not isinstance(private_key, RSAPrivateKey):
        raise StorageCorruptError("Private key is not an RSA key")
    return private_key


def _jwk_int(value: str) -> int:
    if not isinstance(value, str):
        raise ValueError("JWK members must be base64url text")
    return int.from_bytes(base64.urlsafe_b64decode(value + "=" * (-len(value) % 4)), "big")


def import_private_key_jwk(jwk: dict) -> RSAPrivateKey:
    """
    Load an RSA private key from a JSON Web Key.

    Older clients stored and backed up private keys in this form.

    Raises:
        StorageCorruptError: If the value is not a complete RSA private JWK
    """
    try:
        if jwk.get("kty") != "RSA":
            raise ValueError("JWK is not an RSA key")
        public_numbers = rsa.RSAPublicNumbers(e=_jwk_int(jwk["e"]), n=_jwk_int(jwk["n"]))
        private_numbers = rsa.RSAPrivateNumbers(
            p=_jwk_int(jwk["p"]),
            q=_jwk_int(jwk["q"]),
            d=_jwk_int(jwk["d"]),
            dmp1=_jwk_int(jwk["dp"]),
            dmq1=_jwk_int(jwk["dq"]),
            iqmp=_jwk_int(jwk["qi"]),
            public_numbers=public_numbers,
        )
        return private_numbers.private_key()
    except (AttributeError, KeyError, TypeError, ValueError, UnsupportedAlgorithm) as e:
        raise StorageCorruptError("Private key JWK import failed") from e


def b64encode(data: bytes) -> str:
    """Encode bytes as standard base64 text"""
    return base64.b64encode(data).decode("ascii")


def b64decode(value: Union[str, List[int]]) -> bytes:
    """
    Decode base64 text to bytes.

    Integer arrays (the encoding older backup files use for binary fields)
    are accepted too.

    Raises:
        ValueError: If the value cannot be decoded
    """
    if isinstance(value, list):
        try:
            return bytes(value)
        except (TypeError, ValueError) as e:
            raise ValueError("Invalid byte array") from e
    if not isinstance(value, str):
        raise ValueError("Expected base64 text")
    try:
        return base64.b64decode(value, validate=True)
    except binascii.Error as e:
        raise ValueError("Invalid base64") from e

