"""Credential Vault — Encrypted per-user storage of provider API secrets.

Security Note (Threat Model):
    Secrets are encrypted at rest under keys derived from one master secret.
    Anyone holding both the snapshot file and the master secret can recover
    every stored secret. Without MASTER_SECRET a random secret is used and
    all stored tokens are lost on restart.
"""

from .token_store import TokenStore
from .key_rotation import rotate_master_secret
from .config import VaultConfig, load_master_secret, generate_master_secret
from .models import StoredToken, TokenInfo, TokenState

__all__ = [
    "TokenStore",
    "rotate_master_secret",
    "VaultConfig",
    "load_master_secret",
    "generate_master_secret",
    "StoredToken",
    "TokenInfo",
    "TokenState",
]
