"""
Tagged variants for message envelopes and decryption outcomes.

A value received from the transport is classified once into either
``PlainText`` or ``Encrypted``; decryption produces either ``Ok`` or ``Err``.
Callers branch on the variant type instead of re-inspecting raw dictionaries.
"""

import json
from typing import Any, Optional, Union
from dataclasses import dataclass

from .payload import ALGORITHM, MessagePayload


@dataclass(frozen=True)
class PlainText:
    """A message carried as plain text"""
    text: str


@dataclass(frozen=True)
class Encrypted:
    """A message carried as a hybrid-encrypted payload"""
    payload: MessagePayload


Envelope = Union[PlainText, Encrypted]


@dataclass(frozen=True)
class Ok:
    """Successful decryption"""
    value: str


@dataclass(frozen=True)
class Err:
    """
    Failed decryption.

    Attributes:
        reason: Short human-readable cause, safe to log
        error: The underlying exception, if any
    """
    reason: str
    error: Optional[BaseException] = None


DecryptResult = Union[Ok, Err]


def _is_envelope_shape(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and value.get("alg") == ALGORITHM
        and isinstance(value.get("wrappedKey"), str)
        and isinstance(value.get("ciphertext"), str)
        and isinstance(value.get("iv"), str)
    )


def classify(value: Any) -> Envelope:
    """
    Classify a transport value as plain text or an encrypted envelope.

    Accepts a ``MessagePayload``, a dict or a JSON string. Never raises:
    anything that is not a canonical envelope is treated as plain text.
    """
    if isinstance(value, MessagePayload):
        return Encrypted(value)

    candidate = value
    if isinstance(value, str):
        try:
            candidate = json.loads(value)
        except (ValueError, RecursionError):
            return PlainText(value)

    if _is_envelope_shape(candidate):
        return Encrypted(MessagePayload(
            version=candidate.get("version", 1),
            alg=candidate["alg"],
            iv=candidate["iv"],
            wrapped_key=candidate["wrappedKey"],
            ciphertext=candidate["ciphertext"],
        ))

    if isinstance(value, str):
        return PlainText(value)
    return PlainText("" if value is None else str(value))


def needs_decryption(value: Any) -> bool:
    """True if ``value`` is shaped like an encrypted envelope"""
    return isinstance(classify(value), Encrypted)
