"""
Configuration for the encryption client.
"""

import os
from pathlib import Path
from typing import Optional
from dataclasses import dataclass, field


def _timeout_from_env() -> Optional[float]:
    value = os.getenv("E2EE_DECRYPT_TIMEOUT")
    return float(value) if value else None


@dataclass
class ClientConfig:
    """Client configuration, overridable through environment variables."""

    # Key directory
    SERVER_URL: str = field(default_factory=lambda: os.getenv("E2EE_SERVER_URL", "http://localhost:8000"))

    # Local storage
    DATA_DIR: Path = field(default_factory=lambda: Path(os.getenv("E2EE_DATA_DIR", "client_data")))

    # Seconds before a pending decryption is shown as failed
    DECRYPT_TIMEOUT: Optional[float] = field(default_factory=_timeout_from_env)

    @property
    def key_db_path(self) -> Path:
        """SQLite database holding key records and the device key."""
        return self.DATA_DIR / "keys.db"
