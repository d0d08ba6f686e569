"""Credential Vault.

Per-user encrypted store for third-party API secrets.
"""
from .version import __version__
from .exceptions import (
    VaultError,
    FormatError,
    CorruptionError,
    ValidationFailure,
    RateLimitExceeded,
    InfrastructureError,
    AdminOperationDisabled,
)
from .ratelimit import RateLimiter
from .vault import TokenStore, VaultConfig, rotate_master_secret
from .providers import ValidityDispatcher, ValidityResult, default_dispatcher

__all__ = [
    "__version__",
    "VaultError",
    "FormatError",
    "CorruptionError",
    "ValidationFailure",
    "RateLimitExceeded",
    "InfrastructureError",
    "AdminOperationDisabled",
    "RateLimiter",
    "TokenStore",
    "VaultConfig",
    "rotate_master_secret",
    "ValidityDispatcher",
    "ValidityResult",
    "default_dispatcher",
]
