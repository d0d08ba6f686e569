"""
Envelope Codec — packs ``{salt, iv, ciphertext}`` into one transportable string.

Wire format::

    base64( hex(salt) ":" hex(iv) ":" hex(ciphertext) )

Hex segments are canonical lowercase, so one envelope has exactly one
string representation.
"""
import re
import base64
import binascii
from typing import NamedTuple

from ..exceptions import FormatError

SALT_SIZE = 16
IV_SIZE = 16
TAG_SIZE = 16  # GCM tag appended to the ciphertext
DELIMITER = ":"

_HEX_RE = re.compile(r"^(?:[0-9a-f]{2})*$")


class Envelope(NamedTuple):
    """Salt, IV and ciphertext of one encrypted secret."""

    salt: bytes
    iv: bytes
    ciphertext: bytes


def encode(salt: bytes, iv: bytes, ciphertext: bytes) -> str:
    """Serialize the three envelope parts into a single string."""
    combined = DELIMITER.join((salt.hex(), iv.hex(), ciphertext.hex()))
    return base64.b64encode(combined.encode("ascii")).decode("ascii")


def encode_envelope(envelope: Envelope) -> str:
    return encode(envelope.salt, envelope.iv, envelope.ciphertext)


def decode(value: str) -> Envelope:
    """Parse an envelope string.

    Args:
        value: String produced by :func:`encode`.

    Returns:
        The decoded :class:`Envelope`.

    Raises:
        FormatError: If the string is not valid base64, does not split into
            exactly three hex segments, or a segment has the wrong size.
    """
    if not isinstance(value, str) or not value:
        raise FormatError("Envelope must be a non-empty string")
    try:
        combined = base64.b64decode(value.encode("ascii"), validate=True)
        text = combined.decode("ascii")
    except (binascii.Error, UnicodeError) as err:
        raise FormatError(f"Envelope is not valid base64: {err}") from err
    # b64decode ignores unused trailing bits; only the canonical form is accepted
    if base64.b64encode(combined).decode("ascii") != value:
        raise FormatError("Envelope is not canonical base64")

    parts = text.split(DELIMITER)
    if len(parts) != 3:
        raise FormatError(
            f"Invalid encrypted data format: expected 3 segments, got {len(parts)}"
        )
    for part in parts:
        if not _HEX_RE.match(part):
            raise FormatError("Envelope segment is not lowercase hex")

    salt, iv, ciphertext = (bytes.fromhex(part) for part in parts)
    if len(salt) != SALT_SIZE:
        raise FormatError(f"Salt must be {SALT_SIZE} bytes, got {len(salt)}")
    if len(iv) != IV_SIZE:
        raise FormatError(f"IV must be {IV_SIZE} bytes, got {len(iv)}")
    if len(ciphertext) < TAG_SIZE:
        raise FormatError(
            f"Ciphertext too short: {len(ciphertext)} bytes (minimum {TAG_SIZE})"
        )
    return Envelope(salt, iv, ciphertext)
