"""
Credential Vault exceptions.

Every error raised by the vault derives from :class:`VaultError`, so callers
can catch the whole family at the route layer.
"""
from typing import Optional


class VaultError(Exception):
    """Base class for credential vault errors."""


class FormatError(VaultError):
    """Malformed envelope (wrong segment count or bad encoding)."""


class CorruptionError(VaultError):
    """Decryption failed: wrong key material, tampered or malformed data."""


class ValidationFailure(VaultError):
    """A provider rejected the secret. The secret is never stored."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        self.message = message
        super().__init__(f"{provider}: {message}")


class RateLimitExceeded(VaultError):
    """Too many attempts for an identifier inside the current window."""

    def __init__(self, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        msg = "Too many attempts"
        if retry_after is not None:
            msg = f"{msg}, retry after {retry_after:.0f}s"
        super().__init__(msg)


class InfrastructureError(VaultError):
    """Durable storage or network failure unrelated to credential validity."""


class AdminOperationDisabled(VaultError):
    """A global maintenance operation was requested in production."""
