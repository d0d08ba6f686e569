"""
TokenStore — Encrypted per-user, per-provider credential table.

Provides the public API for the credential vault:
- ``set_token(user_id, provider, secret)`` — encrypt and store, replacing
  any active credential for the same provider
- ``get_token(user_id, provider)`` — decrypt the active credential, or
  quarantine it if it cannot be decrypted
- ``list_tokens`` / ``has_token`` — inspect active credentials (no secrets)
- ``delete_token`` / ``clear_all_for_user`` — soft and hard removal
- ``cleanup_corrupted_tokens`` / ``reset_all_corrupted_tokens`` /
  ``clear_all_tokens_on_startup`` — recovery workflows
- ``open()`` — factory that loads the durable snapshot

Invariant: at most one ACTIVE record per ``(user_id, provider)``.

Security Note:
    Never log plaintext or envelope values. Only log providers, operations,
    user IDs and ``hash_for_logging`` fingerprints. Decrypted values exist
    in process memory only for the duration of a ``get_token`` call.
"""
import asyncio
import logging
from typing import Any, AsyncIterator, Iterator, Optional
from collections import defaultdict
from contextlib import AsyncExitStack, asynccontextmanager

from ..exceptions import AdminOperationDisabled, CorruptionError
from .config import VaultConfig
from .crypto import encrypt_secret, decrypt_secret, hash_for_logging
from .models import StoredToken, TokenInfo
from .persistence import (
    TokenTable,
    serialize_table,
    load_snapshot,
    write_snapshot,
    delete_snapshot,
)

logger = logging.getLogger("credential_vault.vault")


class TokenStore:
    """Encrypted credential table shared by every user of the process.

    Every mutation of a user's records runs under that user's lock, from
    the first read of the table to the end of the snapshot write, so two
    concurrent calls for the same user can never interleave.
    """

    def __init__(self, config: VaultConfig, dispatcher: Any = None):
        self._config = config
        self._dispatcher = dispatcher
        self._tokens: TokenTable = {}
        self._user_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._lock_holders: dict[str, int] = {}
        self._snapshot_lock = asyncio.Lock()
        self._unfrozen = asyncio.Event()
        self._unfrozen.set()

    @property
    def config(self) -> VaultConfig:
        return self._config

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _locked(self, user_id: str) -> AsyncIterator[None]:
        # gate check and lock lookup happen in one step: once exclusive()
        # has cleared the gate, every caller past it owns a registered lock
        await self._unfrozen.wait()
        lock = self._user_locks[user_id]
        self._lock_holders[user_id] = self._lock_holders.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_holders[user_id] -= 1
            if not self._lock_holders[user_id]:
                del self._lock_holders[user_id]
                self._prune_lock(user_id)

    def _prune_lock(self, user_id: str) -> None:
        # a lock nobody waits on is dropped once the user has no records left
        if user_id not in self._tokens and user_id not in self._lock_holders:
            self._user_locks.pop(user_id, None)

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[None]:
        """Hold every user lock; new mutations wait until the block exits.

        Used by store-wide maintenance such as master secret rotation.
        """
        self._unfrozen.clear()
        try:
            async with AsyncExitStack() as stack:
                for user_id in sorted(set(self._user_locks) | set(self._tokens)):
                    await stack.enter_async_context(self._user_locks[user_id])
                yield
        finally:
            for user_id in list(self._user_locks):
                self._prune_lock(user_id)
            self._unfrozen.set()

    def records(self) -> Iterator[StoredToken]:
        """Every stored record, active or not. Call inside :meth:`exclusive`."""
        for tokens in self._tokens.values():
            yield from tokens

    def rekey(self, config: VaultConfig) -> None:
        """Swap the configuration (and master secret). Call inside :meth:`exclusive`."""
        self._config = config

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate(self, user_id: str, provider: str) -> None:
        """Validate identifiers.

        Raises:
            ValueError: If user_id or provider is empty, or provider is too long.
        """
        if not user_id:
            raise ValueError("user_id cannot be empty")
        if not provider:
            raise ValueError("provider cannot be empty")
        if len(provider) > 64:
            raise ValueError("provider cannot exceed 64 characters")

    # ------------------------------------------------------------------
    # Crypto helpers (run off the event loop: the KDF is deliberately slow)
    # ------------------------------------------------------------------

    async def _encrypt(self, secret: str) -> str:
        return await asyncio.to_thread(
            encrypt_secret,
            secret,
            self._config.master_secret,
            self._config.kdf_iterations,
        )

    async def _decrypt(self, envelope: str) -> str:
        return await asyncio.to_thread(
            decrypt_secret,
            envelope,
            self._config.master_secret,
            self._config.kdf_iterations,
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def flush(self) -> None:
        """Write the whole table to the snapshot file.

        The in-memory mutation is kept even when the write fails.

        Raises:
            InfrastructureError: If the snapshot cannot be written.
        """
        path = self._config.snapshot_path
        if path is None:
            return
        async with self._snapshot_lock:
            data = serialize_table(self._tokens)
            await asyncio.to_thread(write_snapshot, path, data)
        logger.debug("Saved tokens for %d user(s)", len(self._tokens))

    def _active(self, user_id: str, provider: str) -> Optional[StoredToken]:
        for token in self._tokens.get(user_id, ()):
            if token.provider == provider and token.is_active:
                return token
        return None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def set_token(
        self,
        user_id: str,
        provider: str,
        secret: str,
        display_name: Optional[str] = None,
    ) -> TokenInfo:
        """Encrypt and store a credential, replacing the active one.

        Args:
            user_id: Owner of the credential.
            provider: Provider name (e.g. ``"monobank"``).
            secret: Raw secret; never persisted in clear.
            display_name: Label shown to the user.

        Returns:
            Public view of the new record.
        """
        self._validate(user_id, provider)
        if not secret:
            raise ValueError("secret cannot be empty")

        async with self._locked(user_id):
            envelope = await self._encrypt(secret)
            previous = self._active(user_id, provider)
            if previous is not None:
                previous.mark_deleted()
            token = StoredToken(
                user_id=user_id,
                provider=provider,
                envelope=envelope,
                display_name=display_name or f"{provider} API Key",
            )
            self._tokens.setdefault(user_id, []).append(token)
            await self.flush()

        logger.info(
            "Stored %s token %s for user=%s%s",
            provider, hash_for_logging(secret), user_id,
            " (replaced previous)" if previous is not None else "",
        )
        return token.info()

    async def connect_token(
        self,
        user_id: str,
        provider: str,
        secret: str,
        display_name: Optional[str] = None,
    ) -> TokenInfo:
        """Validate a secret with its provider, then store it.

        Raises:
            ValidationFailure: If the provider rejects the secret; nothing
                is stored in that case.
            RuntimeError: If the store was built without a dispatcher.
        """
        if self._dispatcher is None:
            raise RuntimeError("TokenStore has no validity dispatcher configured")
        await self._dispatcher.require_valid(provider, secret)
        return await self.set_token(user_id, provider, secret, display_name)

    async def get_token(self, user_id: str, provider: str) -> Optional[str]:
        """Decrypt and return the active credential.

        A record that fails to decrypt is quarantined and ``None`` is
        returned: the secret is gone and the user has to reconnect.

        Returns:
            The plaintext secret, or None.
        """
        self._validate(user_id, provider)
        async with self._locked(user_id):
            token = self._active(user_id, provider)
            if token is None:
                logger.debug("No %s token for user=%s", provider, user_id)
                return None
            try:
                secret = await self._decrypt(token.envelope)
            except CorruptionError as err:
                token.quarantine()
                logger.warning(
                    "Quarantined corrupted %s token id=%s for user=%s: %s",
                    provider, token.id, user_id, err,
                )
                await self.flush()
                return None
            token.touch()
            await self.flush()
        return secret

    async def list_tokens(self, user_id: str) -> list[TokenInfo]:
        """List the user's active credentials, without secrets."""
        return [t.info() for t in self._tokens.get(user_id, ()) if t.is_active]

    async def has_token(self, user_id: str, provider: str) -> bool:
        return self._active(user_id, provider) is not None

    async def delete_token(self, user_id: str, provider: str) -> bool:
        """Soft-delete the active credential for a provider.

        Returns:
            True if an active credential existed.
        """
        self._validate(user_id, provider)
        async with self._locked(user_id):
            token = self._active(user_id, provider)
            if token is None:
                return False
            token.mark_deleted()
            await self.flush()
        logger.info("User %s removed %s token", user_id, provider)
        return True

    async def clear_all_for_user(self, user_id: str) -> int:
        """Hard-remove every record of a user, active or not.

        Returns:
            Number of records removed.
        """
        async with self._locked(user_id):
            removed = self._tokens.pop(user_id, [])
            if removed:
                await self.flush()
        if removed:
            logger.info("Force cleared all %d tokens for user=%s", len(removed), user_id)
        return len(removed)

    # ------------------------------------------------------------------
    # Recovery / cleanup
    # ------------------------------------------------------------------

    async def cleanup_corrupted_tokens(self, user_id: str) -> int:
        """Hard-remove the user's inactive (deleted or quarantined) records.

        Returns:
            Number of records removed.
        """
        async with self._locked(user_id):
            tokens = self._tokens.get(user_id)
            if not tokens:
                return 0
            keep = [t for t in tokens if t.is_active]
            removed = len(tokens) - len(keep)
            if not removed:
                return 0
            if keep:
                self._tokens[user_id] = keep
            else:
                del self._tokens[user_id]
            await self.flush()
        logger.info("Removed %d inactive tokens for user=%s", removed, user_id)
        return removed

    async def reset_all_corrupted_tokens(self) -> int:
        """Run :meth:`cleanup_corrupted_tokens` for every known user.

        Raises:
            AdminOperationDisabled: In a production configuration.
        """
        if self._config.is_production:
            raise AdminOperationDisabled(
                "reset_all_corrupted_tokens is disabled in production"
            )
        total = 0
        for user_id in list(self._tokens):
            total += await self.cleanup_corrupted_tokens(user_id)
        logger.info("Global cleanup removed %d inactive tokens", total)
        return total

    async def clear_all_tokens_on_startup(self) -> None:
        """Wipe the table and the snapshot file.

        The remedy for systemic corruption, e.g. after the master secret
        changed and no existing envelope can be decrypted anymore.
        """
        async with self.exclusive():
            self._tokens.clear()
            path = self._config.snapshot_path
            if path is not None:
                async with self._snapshot_lock:
                    deleted = await asyncio.to_thread(delete_snapshot, path)
                if deleted:
                    logger.info("Deleted token snapshot %s", path)
        logger.warning("All stored tokens cleared, users must reconnect providers")

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def user_stats(self, user_id: str) -> dict:
        by_provider: dict[str, int] = {}
        for token in self._tokens.get(user_id, ()):
            if token.is_active:
                by_provider[token.provider] = by_provider.get(token.provider, 0) + 1
        return {"total": sum(by_provider.values()), "by_provider": by_provider}

    def global_stats(self) -> dict:
        by_provider: dict[str, int] = {}
        for tokens in self._tokens.values():
            for token in tokens:
                if token.is_active:
                    by_provider[token.provider] = by_provider.get(token.provider, 0) + 1
        return {
            "total_users": len(self._tokens),
            "total_tokens": sum(by_provider.values()),
            "tokens_by_provider": by_provider,
        }

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @classmethod
    async def open(cls, config: VaultConfig, dispatcher: Any = None) -> "TokenStore":
        """Build a store and restore it from the snapshot file.

        This is the primary constructor used at application startup.

        Args:
            config: Vault configuration.
            dispatcher: Optional validity dispatcher for ``connect_token``.

        Returns:
            Populated TokenStore instance.
        """
        store = cls(config, dispatcher=dispatcher)
        if config.ephemeral_secret:
            logger.warning(
                "Token store running with an ephemeral master secret: "
                "restored tokens will be quarantined on first use"
            )
        if config.clear_on_startup:
            logger.info("CLEAR_TOKENS_ON_STARTUP requested")
            await store.clear_all_tokens_on_startup()
        elif config.snapshot_path is not None:
            store._tokens = await asyncio.to_thread(load_snapshot, config.snapshot_path)
        logger.info(
            "Token store ready: %d user(s), %d active token(s)",
            len(store._tokens), store.global_stats()["total_tokens"],
        )
        return store
