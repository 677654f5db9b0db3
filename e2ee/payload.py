"""
Wire format for hybrid-encrypted messages.
"""

import json
from typing import Any, Dict
from dataclasses import dataclass

from .primitives import PayloadFormatError


PAYLOAD_VERSION = 1
ALGORITHM = "AES-GCM+RSA-OAEP"


@dataclass(frozen=True)
class MessagePayload:
    """
    Encrypted message envelope sent through the transport.

    Attributes:
        version: Payload format version
        alg: Algorithm identifier, pinned to ``ALGORITHM``
        iv: Base64 AES-GCM nonce
        wrapped_key: Base64 RSA-OAEP wrapped one-time AES key
        ciphertext: Base64 AES-GCM ciphertext + tag
    """
    version: int
    alg: str
    iv: str
    wrapped_key: str
    ciphertext: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase wire representation"""
        return {
            "version": self.version,
            "alg": self.alg,
            "iv": self.iv,
            "wrappedKey": self.wrapped_key,
            "ciphertext": self.ciphertext,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MessagePayload":
        """
        Create from the wire representation.

        Raises:
            PayloadFormatError: If fields are missing, ill-typed or the
                algorithm/version is not supported
        """
        if not isinstance(data, dict):
            raise PayloadFormatError("Invalid message payload: not an object")

        alg = data.get("alg")
        if alg != ALGORITHM:
            raise PayloadFormatError(f"Unsupported algorithm: {alg}")

        version = data.get("version", PAYLOAD_VERSION)
        if type(version) is not int or version != PAYLOAD_VERSION:
            raise PayloadFormatError(f"Unsupported payload version: {version}")

        fields = ("iv", "wrappedKey", "ciphertext")
        if not all(isinstance(data.get(name), str) and data.get(name) for name in fields):
            raise PayloadFormatError("Invalid message payload: missing required fields")

        return cls(
            version=version,
            alg=alg,
            iv=data["iv"],
            wrapped_key=data["wrappedKey"],
            ciphertext=data["ciphertext"],
        )


def parse_message_payload(value: Any) -> MessagePayload:
    """
    Parse a payload given as a ``MessagePayload``, dict or JSON string.

    Raises:
        PayloadFormatError: If the value is not a valid payload
    """
    if isinstance(value, MessagePayload):
        return MessagePayload.from_dict(value.to_dict())
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except (ValueError, RecursionError) as e:
            raise PayloadFormatError("Invalid message payload: not valid JSON") from e
    return MessagePayload.from_dict(value)
