"""
Vault Key Rotation — Re-encryption of stored tokens under a new master secret.

Every ACTIVE record is decrypted with the current secret and encrypted
again with the new one while the store is held exclusively. Records that
cannot be decrypted are quarantined instead of aborting the rotation.
Inactive records keep their old envelope: they are never read again and
only wait for cleanup.

Security Note:
    Plaintext exists in memory only during re-encryption of each record.
    Never log plaintext, envelopes or either master secret.
"""
import asyncio
import logging
from typing import Optional

from ..exceptions import CorruptionError
from .crypto import decrypt_secret, encrypt_secret
from .token_store import TokenStore

logger = logging.getLogger("credential_vault.vault")


async def rotate_master_secret(
    store: TokenStore,
    new_master_secret: str,
    new_iterations: Optional[int] = None,
) -> dict:
    """Re-encrypt all active tokens under ``new_master_secret``.

    Args:
        store: Token store to rotate.
        new_master_secret: Secret that replaces the current one.
        new_iterations: Optional new PBKDF2 iteration count.

    Returns:
        Stats dict with keys: total, rotated, quarantined.

    Raises:
        ValueError: If the new secret is empty.
        InfrastructureError: If the rotated snapshot cannot be written.
    """
    if not new_master_secret:
        raise ValueError("new_master_secret cannot be empty")

    stats = {"total": 0, "rotated": 0, "quarantined": 0}

    async with store.exclusive():
        old = store.config
        new = old.model_copy(update={
            "master_secret": new_master_secret,
            "ephemeral_secret": False,
            "kdf_iterations": new_iterations or old.kdf_iterations,
        })
        logger.info("Starting master secret rotation")

        for token in store.records():
            if not token.is_active:
                continue
            stats["total"] += 1
            try:
                plaintext = await asyncio.to_thread(
                    decrypt_secret, token.envelope, old.master_secret, old.kdf_iterations,
                )
            except CorruptionError as err:
                token.quarantine()
                stats["quarantined"] += 1
                logger.warning(
                    "Quarantined undecryptable %s token id=%s for user=%s: %s",
                    token.provider, token.id, token.user_id, err,
                )
                continue
            envelope = await asyncio.to_thread(
                encrypt_secret, plaintext, new.master_secret, new.kdf_iterations,
            )
            token.reseal(envelope)
            stats["rotated"] += 1

        store.rekey(new)
        await store.flush()

    logger.info("Master secret rotation complete: %s", stats)
    return stats
