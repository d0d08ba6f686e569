"""
Vault Configuration — Master secret loading and validated settings.

Reads settings from environment variables:
    MASTER_SECRET            = <string>  (legacy: ENCRYPTION_MASTER_KEY)
    TOKENS_SNAPSHOT_PATH     = <path>    ("" disables persistence)
    CLEAR_TOKENS_ON_STARTUP  = true|false
    VAULT_ENVIRONMENT        = development|production
    VAULT_KDF_ITERATIONS     = <int>
    VAULT_PROBE_TIMEOUT      = <seconds>
    VAULT_PROBE_RETRIES      = <int>

Security Note:
    Never log the master secret. When MASTER_SECRET is missing a random
    secret is generated for the lifetime of the process: every token
    encrypted under it is permanently unreadable after a restart.
"""
import os
import secrets
import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger("credential_vault.vault")

MASTER_SECRET_ENV = ("MASTER_SECRET", "ENCRYPTION_MASTER_KEY")
DEFAULT_SNAPSHOT_PATH = ".tokens-cache.json"

_TRUE_VALUES = ("1", "true", "yes", "on")


def load_master_secret() -> tuple[str, bool]:
    """Load the master secret from the environment.

    Returns:
        Tuple of (master_secret, ephemeral). ``ephemeral`` is True when no
        secret was configured and a random one was generated.
    """
    for name in MASTER_SECRET_ENV:
        value = os.environ.get(name)
        if value:
            logger.debug("Master secret loaded from %s", name)
            return value, False
    logger.warning(
        "No MASTER_SECRET configured: using a random process-lifetime secret. "
        "Tokens stored now cannot be decrypted after a restart. "
        "Set MASTER_SECRET for any persistent deployment!"
    )
    return generate_master_secret(), True


def generate_master_secret() -> str:
    """Generate a random 32-byte master secret as a hex string.

    This is a utility for operators to generate new secrets.
    """
    return secrets.token_hex(32)


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    master_secret: str = Field(min_length=1, repr=False)
    ephemeral_secret: bool = False
    snapshot_path: Optional[Path] = Field(default=Path(DEFAULT_SNAPSHOT_PATH))
    clear_on_startup: bool = False
    environment: str = Field(default="development")
    kdf_iterations: int = Field(default=100_000, ge=1000)
    probe_timeout: float = Field(default=10.0, gt=0)
    probe_retries: int = Field(default=2, ge=0, le=10)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment name is supported."""
        v = v.lower()
        if v not in ("development", "test", "production"):
            raise ValueError(f"Unsupported environment: {v}")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.
        """
        master_secret, ephemeral = load_master_secret()
        raw_path = os.environ.get("TOKENS_SNAPSHOT_PATH", DEFAULT_SNAPSHOT_PATH)
        return cls(
            master_secret=master_secret,
            ephemeral_secret=ephemeral,
            snapshot_path=Path(raw_path) if raw_path else None,
            clear_on_startup=_env_flag("CLEAR_TOKENS_ON_STARTUP"),
            environment=os.environ.get("VAULT_ENVIRONMENT", "development"),
            kdf_iterations=int(os.environ.get("VAULT_KDF_ITERATIONS", 100_000)),
            probe_timeout=float(os.environ.get("VAULT_PROBE_TIMEOUT", 10.0)),
            probe_retries=int(os.environ.get("VAULT_PROBE_RETRIES", 2)),
        )
