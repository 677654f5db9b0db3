"""
FastAPI server for the public key directory.

This server:
- Accepts public key registrations (never private keys)
- Serves a user's public key to anyone who wants to encrypt to them
"""

import re
import logging
from typing import Optional
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
from contextlib import asynccontextmanager
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey

from .database import Database

logger = logging.getLogger(__name__)

PEM_PATTERN = re.compile(r"^-----BEGIN PUBLIC KEY-----\n[\s\S]+\n-----END PUBLIC KEY-----$")
MIN_PEM_LENGTH = 200
MAX_PEM_LENGTH = 2000


# Pydantic models for API
class PublicKeyRegistration(BaseModel):
    userId: str
    publicKeyPem: str
    keyId: str = "v1"


class PublicKeyResponse(BaseModel):
    userId: str
    publicKeyPem: str
    keyId: str


def validate_public_key_pem(public_key_pem: str) -> bool:
    """
    Check that a string is a PEM-encoded RSA public key.

    Args:
        public_key_pem: Candidate PEM text

    Returns:
        True if the key is well formed and loads as an RSA public key
    """
    if "PRIVATE KEY" in public_key_pem:
        return False
    if not PEM_PATTERN.match(public_key_pem.strip()):
        return False
    if not MIN_PEM_LENGTH <= len(public_key_pem) <= MAX_PEM_LENGTH:
        return False

    try:
        key = serialization.load_pem_public_key(public_key_pem.encode("ascii"))
    except (ValueError, UnicodeEncodeError, UnsupportedAlgorithm):
        return False
    return isinstance(key, RSAPublicKey)


def create_app(db: Optional[Database] = None) -> FastAPI:
    """
    Build the key directory application.

    Args:
        db: Database to serve from; a default one is created if omitted
    """
    db = db or Database()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events"""
        await db.create_tables()
        logger.info("Key directory database initialized")
        yield
        await db.close()

    app = FastAPI(
        title="Public Key Directory",
        description="Public key registration and lookup for end-to-end encrypted chat",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.db = db

    @app.post("/api/keys/register")
    async def register_public_key(registration: PublicKeyRegistration):
        """
        Register or update a user's public key.

        Private keys are rejected outright.
        """
        if not registration.userId or not registration.publicKeyPem:
            raise HTTPException(status_code=400, detail="userId and publicKeyPem are required")

        if "/" in registration.userId:
            raise HTTPException(status_code=400, detail="userId must not contain '/'")

        if "PRIVATE KEY" in registration.publicKeyPem:
            raise HTTPException(
                status_code=400,
                detail="Private keys are not accepted. Only public keys should be sent."
            )

        if not validate_public_key_pem(registration.publicKeyPem):
            raise HTTPException(
                status_code=400,
                detail="Invalid public key format. Must be PEM-encoded RSA public key."
            )

        await db.store_public_key(
            user_id=registration.userId,
            public_key_pem=registration.publicKeyPem,
            key_id=registration.keyId
        )
        logger.info("Public key registered for user %s (keyId: %s)",
                    registration.userId, registration.keyId)

        return {"ok": True, "message": "Public key registered successfully", "keyId": registration.keyId}

    @app.get("/api/keys/{user_id}", response_model=PublicKeyResponse)
    async def get_public_key(user_id: str):
        """
        Get a user's public key (for encrypting messages to them).

        This is public - anyone can request a public key.
        """
        record = await db.get_public_key(user_id)
        if not record:
            raise HTTPException(status_code=404, detail="User has not registered a public key")

        return PublicKeyResponse(
            userId=record.user_id,
            publicKeyPem=record.public_key_pem,
            keyId=record.key_id
        )

    @app.get("/api/keys/{user_id}/exists")
    async def has_public_key(user_id: str):
        """Check whether a user has registered a public key"""
        record = await db.get_public_key(user_id)
        return {"userId": user_id, "hasKey": record is not None}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
