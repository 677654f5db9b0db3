"""
HTTP client for the public key directory.

The directory stores one public key per user so that others can encrypt
messages to them. Only public keys are ever sent.
"""

import logging
from typing import Optional
import httpx
from urllib.parse import quote

logger = logging.getLogger(__name__)

DEFAULT_KEY_ID = "v1"


class KeyDirectoryError(Exception):
    """The key directory rejected a request or could not be reached"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class KeyDirectoryClient:
    """
    Registers and fetches public keys over the directory's REST API.
    """

    def __init__(self, server_url: str = "http://localhost:8000",
                 http_client: Optional[httpx.AsyncClient] = None):
        """
        Initialize directory client.

        Args:
            server_url: Base URL of the key directory
            http_client: Client to reuse; a new one is created if omitted
        """
        self.server_url = server_url.rstrip("/")
        self.http_client = http_client or httpx.AsyncClient()

    async def register(self, user_id: str, public_key_pem: str, key_id: str = DEFAULT_KEY_ID):
        """
        Register or replace a user's public key.

        Raises:
            KeyDirectoryError: If the request fails
        """
        try:
            response = await self.http_client.post(
                f"{self.server_url}/api/keys/register",
                json={
                    "userId": user_id,
                    "publicKeyPem": public_key_pem,
                    "keyId": key_id,
                }
            )
        except httpx.HTTPError as e:
            raise KeyDirectoryError(f"Key directory unreachable: {e}") from e

        if response.status_code != 200:
            raise KeyDirectoryError(self._detail(response), response.status_code)

        logger.info("Public key registered for user %s (keyId: %s)", user_id, key_id)

    async def fetch(self, user_id: str) -> str:
        """
        Fetch a user's public key.

        Returns:
            SPKI PEM public key

        Raises:
            KeyDirectoryError: If the user has no key or the request fails
        """
        try:
            response = await self.http_client.get(f"{self.server_url}/api/keys/{quote(user_id, safe='')}")
        except httpx.HTTPError as e:
            raise KeyDirectoryError(f"Key directory unreachable: {e}") from e

        if response.status_code != 200:
            raise KeyDirectoryError(self._detail(response), response.status_code)

        try:
            public_key_pem = response.json()["publicKeyPem"]
        except (ValueError, KeyError, TypeError) as e:
            raise KeyDirectoryError("Key directory returned an invalid response") from e
        if not isinstance(public_key_pem, str):
            raise KeyDirectoryError("Key directory returned an invalid response")
        return public_key_pem

    @staticmethod
    def _detail(response: httpx.Response) -> str:
        try:
            return response.json().get("detail", "Unknown error")
        except (ValueError, AttributeError):
            return f"HTTP {response.status_code}"

    async def aclose(self):
        await self.http_client.aclose()
