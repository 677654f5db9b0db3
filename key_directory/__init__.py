"""
Public key directory service.

Stores one PEM public key per user; private keys are never accepted.
"""

from .main import create_app, validate_public_key_pem
from .database import Database, PublicKeyRecord

__all__ = ["create_app", "validate_public_key_pem", "Database", "PublicKeyRecord"]
