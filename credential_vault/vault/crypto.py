"""
Vault Crypto Core — Key derivation and encryption/decryption of secrets.

Every secret is encrypted under its own key:
    PBKDF2-HMAC-SHA256(master_secret, salt 16B) → AES-256-GCM(iv 16B)

The result is an :class:`~.envelope.Envelope`; ``encrypt_secret`` and
``decrypt_secret`` wrap the engine with the envelope codec for callers that
only handle strings.

Security Note:
    Never log plaintext, envelopes or the master secret.
    GCM authenticates the ciphertext, so tampering raises instead of
    decrypting to different plaintext.
"""
import os
import re
import hashlib
import secrets
import logging
from typing import NamedTuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..exceptions import CorruptionError, FormatError
from .envelope import (
    Envelope,
    SALT_SIZE,
    IV_SIZE,
    encode_envelope,
    decode,
)

logger = logging.getLogger("credential_vault.vault")

KEY_LENGTH = 32  # AES-256
DEFAULT_ITERATIONS = 100_000


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(
    master_secret: str, salt: bytes, iterations: int = DEFAULT_ITERATIONS
) -> bytes:
    """Derive a 32-byte encryption key using PBKDF2-HMAC-SHA256.

    Args:
        master_secret: Root key material.
        salt: Per-encryption random salt.
        iterations: PBKDF2 iteration count.

    Returns:
        32-byte derived key.
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(master_secret.encode("utf-8"))


# ---------------------------------------------------------------------------
# Encryption
# ---------------------------------------------------------------------------

def encrypt(
    plaintext: str, master_secret: str, iterations: int = DEFAULT_ITERATIONS
) -> Envelope:
    """Encrypt a secret string.

    Salt and IV are fresh random values on every call, so encrypting the
    same plaintext twice never yields the same envelope.

    Args:
        plaintext: Secret to encrypt.
        master_secret: Root key material.
        iterations: PBKDF2 iteration count.

    Returns:
        Envelope holding salt, iv and ciphertext (with GCM tag).

    Raises:
        ValueError: If the plaintext is not encodable as UTF-8 (lone surrogates).
    """
    try:
        data = plaintext.encode("utf-8")
    except UnicodeEncodeError as err:
        raise ValueError("Secret must be valid Unicode text") from err
    salt = os.urandom(SALT_SIZE)
    iv = os.urandom(IV_SIZE)
    key = derive_key(master_secret, salt, iterations)
    ciphertext = AESGCM(key).encrypt(iv, data, None)
    return Envelope(salt, iv, ciphertext)


def decrypt(
    envelope: Envelope, master_secret: str, iterations: int = DEFAULT_ITERATIONS
) -> str:
    """Decrypt an envelope back to the secret string.

    Raises:
        CorruptionError: If the key material is wrong, the data was tampered
            with, or the plaintext is not valid UTF-8.
    """
    if len(envelope.salt) != SALT_SIZE or len(envelope.iv) != IV_SIZE:
        raise CorruptionError("Envelope salt or IV has the wrong size")
    key = derive_key(master_secret, envelope.salt, iterations)
    try:
        plaintext = AESGCM(key).decrypt(envelope.iv, envelope.ciphertext, None)
        return plaintext.decode("utf-8")
    except InvalidTag as err:
        raise CorruptionError(
            "Authentication tag mismatch (wrong key or tampered data)"
        ) from err
    except (ValueError, UnicodeDecodeError) as err:
        raise CorruptionError(f"Decryption failed: {err}") from err


def encrypt_secret(
    plaintext: str, master_secret: str, iterations: int = DEFAULT_ITERATIONS
) -> str:
    """Encrypt and serialize a secret into an envelope string."""
    return encode_envelope(encrypt(plaintext, master_secret, iterations))


def decrypt_secret(
    value: str, master_secret: str, iterations: int = DEFAULT_ITERATIONS
) -> str:
    """Parse and decrypt an envelope string.

    Raises:
        CorruptionError: For malformed envelopes as well as failed decryption.
    """
    try:
        envelope = decode(value)
    except FormatError as err:
        raise CorruptionError(str(err)) from err
    return decrypt(envelope, master_secret, iterations)


# ---------------------------------------------------------------------------
# Secret helpers
# ---------------------------------------------------------------------------

class TokenStrength(NamedTuple):
    is_valid: bool
    strength: str  # weak | medium | strong
    reason: str | None = None


def validate_token_security(token: str) -> TokenStrength:
    """Basic sanity check of a raw secret before it is sent to a provider."""
    if not token or len(token) < 10:
        return TokenStrength(False, "weak", "Token too short")
    if len(token) < 20:
        return TokenStrength(True, "weak")
    if len(token) < 40:
        return TokenStrength(True, "medium")
    has_digit = bool(re.search(r"\d", token))
    has_letter = bool(re.search(r"[a-zA-Z]", token))
    has_special = bool(re.search(r"[^a-zA-Z0-9]", token))
    if has_digit and has_letter and has_special:
        return TokenStrength(True, "strong")
    return TokenStrength(True, "medium")


def hash_for_logging(token: str) -> str:
    """One-way fingerprint of a secret, safe to put in log lines."""
    digest = hashlib.sha256(token.encode("utf-8")).hexdigest()
    return f"{digest[:8]}..."


def generate_secure_token(length: int = 32) -> str:
    """Random hex token of ``length`` bytes."""
    return secrets.token_hex(length)
