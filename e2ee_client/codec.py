"""
Message codec: turns plaintext into transportable encrypted envelopes and
received records back into displayable text.

Received records are treated as opaque dictionaries; only ``isEncrypted``,
``messagePayload`` and ``text`` are read.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional
from dataclasses import dataclass
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from e2ee.payload import MessagePayload
from e2ee.envelope import PlainText, Encrypted, Envelope, Ok, Err, DecryptResult, classify
from e2ee.hybrid import encrypt_for_recipient, try_decrypt_payload
from .directory import KeyDirectoryClient

logger = logging.getLogger(__name__)

FALLBACK_TEXT = "[\U0001F512 Can't decrypt this message]"


@dataclass
class OutgoingMessage:
    """An encrypted message ready for the transport"""
    message_payload: MessagePayload
    is_encrypted: bool = True

    def to_transport(self) -> Dict[str, Any]:
        return {
            "messagePayload": self.message_payload.to_dict(),
            "isEncrypted": self.is_encrypted,
        }


@dataclass
class DecodedMessage:
    """
    A received record together with its decryption outcome.

    Attributes:
        record: The record as received from the transport
        result: Ok(text) for plain or decrypted messages, Err(reason) otherwise
    """
    record: Dict[str, Any]
    result: DecryptResult

    @property
    def decryption_failed(self) -> bool:
        return isinstance(self.result, Err)

    @property
    def display_text(self) -> str:
        if isinstance(self.result, Ok):
            return self.result.value
        return FALLBACK_TEXT


def envelope_for(record: Dict[str, Any]) -> Optional[Envelope]:
    """
    Classify a received record at the transport boundary.

    Returns:
        PlainText or Encrypted, or None if the record is not an object or is
        flagged encrypted but carries no usable envelope
    """
    if not isinstance(record, dict):
        return None
    if not record.get("isEncrypted"):
        text = record.get("text")
        return PlainText(text if isinstance(text, str) else "")

    envelope = classify(record.get("messagePayload"))
    if isinstance(envelope, Encrypted):
        return envelope
    return None


class MessageCodec:
    """
    Encrypts outgoing messages and decrypts received batches.
    """

    def __init__(self, directory: KeyDirectoryClient, decrypt_timeout: Optional[float] = None):
        """
        Initialize codec.

        Args:
            directory: Source of recipients' public keys
            decrypt_timeout: Seconds to wait for each decryption before showing
                it as failed; None waits indefinitely
        """
        self.directory = directory
        self.decrypt_timeout = decrypt_timeout

    async def encode_outgoing(self, plaintext: str, recipient_id: str) -> OutgoingMessage:
        """
        Encrypt a message for a recipient.

        Raises:
            KeyDirectoryError: If the recipient's key cannot be fetched
            PayloadFormatError: If the directory returned an unusable key
        """
        public_key_pem = await self.directory.fetch(recipient_id)
        payload = await asyncio.to_thread(encrypt_for_recipient, plaintext, public_key_pem)
        return OutgoingMessage(message_payload=payload)

    async def decrypt_one(self, record: Dict[str, Any], private_key: RSAPrivateKey) -> DecodedMessage:
        """Decode a single received record; never raises"""
        if not isinstance(record, dict):
            logger.warning("Received message is not an object: %r", type(record).__name__)
            return DecodedMessage({}, Err("malformed record"))

        try:
            return await self._decode(record, private_key)
        except Exception as e:
            logger.exception("Unexpected error while decoding message")
            return DecodedMessage(record, Err(str(e) or type(e).__name__, e))

    async def _decode(self, record: Dict[str, Any], private_key: RSAPrivateKey) -> DecodedMessage:
        envelope = envelope_for(record)
        if envelope is None:
            logger.warning("Encrypted message has no valid payload")
            return DecodedMessage(record, Err("missing or malformed payload"))
        if isinstance(envelope, PlainText):
            return DecodedMessage(record, Ok(envelope.text))

        work = asyncio.to_thread(try_decrypt_payload, envelope.payload, private_key)
        try:
            if self.decrypt_timeout is None:
                result = await work
            else:
                result = await asyncio.wait_for(work, self.decrypt_timeout)
        except asyncio.TimeoutError:
            # The worker thread keeps running; only our wait is abandoned.
            logger.warning("Decryption timed out after %ss", self.decrypt_timeout)
            result = Err("timed out")
        return DecodedMessage(record, result)

    async def decrypt_batch(self, records: List[Dict[str, Any]],
                            private_key: RSAPrivateKey) -> List[DecodedMessage]:
        """
        Decode a batch of received records.

        Each record is decrypted independently; the output has one entry per
        input record, in input order, regardless of completion order.
        """
        return list(await asyncio.gather(
            *(self.decrypt_one(record, private_key) for record in records)
        ))
