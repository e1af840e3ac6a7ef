"""
SecretVault — one encrypted secret per provider, gated by the PIN.

Provides the public API for stored secrets:
- ``store_secret(provider_id, secret, pin)`` — verify, integrity-check, persist
- ``get_secret(provider_id, pin=None)`` — session cache → verify + decrypt
- ``remove_secret(provider_id, pin)`` — verify, delete, evict cache
- ``list_providers()`` / ``has_secret()`` — metadata only, never decrypts
- ``clear_session_cache()`` — drop cached plaintexts

Security Note:
    Never log secrets or ciphertext values. Only log provider ids and
    operations. Cached plaintexts live in process memory while the
    session is valid and are dropped whenever it ends.
"""
import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Optional

from pydantic import ValidationError

from ..conf import MAX_PROVIDER_ID_LENGTH, SECRETS_KEY
from ..exceptions import (
    ClearFailed,
    DecryptionFailed,
    PinRequired,
    RemovalFailed,
    StorageValidationFailed,
)
from . import crypto
from .config import SecurityConfig
from .models import LockoutStatus, ProviderInfo, SecretEntry
from .pin_guard import PinGuard

logger = logging.getLogger("pin_vault")


class SecretVault:
    """PIN-protected secret storage with a session-scoped plaintext cache.

    Args:
        guard: the :class:`PinGuard` that owns verification and the session.
            Secrets are stored in the guard's storage namespace.
    """

    def __init__(self, guard: PinGuard) -> None:
        self._guard = guard
        self._storage = guard.storage
        self._cache: dict[str, str] = {}
        # guards every read-modify-write of the entries collection
        self._entries_lock = asyncio.Lock()
        guard.add_invalidation_listener(self._on_session_end)

    def __repr__(self) -> str:
        return f"<SecretVault cached={len(self._cache)} guard={self._guard!r}>"

    @classmethod
    async def open(cls, storage: Any, **kwargs: Any) -> "SecretVault":
        """Build a guard over ``storage`` (see :class:`PinGuard`) and a vault on it."""
        guard = await PinGuard.open(storage, **kwargs)
        return cls(guard)

    @property
    def guard(self) -> PinGuard:
        return self._guard

    def _on_session_end(self, reason: str) -> None:
        if self._cache:
            logger.debug("Session ended (%s), dropping %d cached secret(s)",
                         reason, len(self._cache))
        self._cache.clear()

    # ------------------------------------------------------------------
    # Validation / records
    # ------------------------------------------------------------------

    def _validate_provider_id(self, provider_id: str) -> None:
        """Validate a provider id.

        Raises:
            ValueError: If the id is not a string, empty or too long.
        """
        if not isinstance(provider_id, str) or not provider_id:
            raise ValueError("Provider id cannot be empty")
        if len(provider_id) > MAX_PROVIDER_ID_LENGTH:
            raise ValueError(
                f"Provider id cannot exceed {MAX_PROVIDER_ID_LENGTH} characters"
            )

    async def _load_entries(self) -> dict[str, SecretEntry]:
        data = await self._storage.get([SECRETS_KEY])
        stored = data.get(SECRETS_KEY)
        if not stored:
            return {}
        if not isinstance(stored, Mapping):
            logger.warning("Invalid stored secrets collection, using empty")
            return {}
        entries: dict[str, SecretEntry] = {}
        for provider_id, raw in stored.items():
            try:
                entries[provider_id] = SecretEntry.model_validate(raw)
            except ValidationError as err:
                logger.warning(
                    "Skipping invalid secret entry provider=%s: %s",
                    provider_id, err.error_count(),
                )
        return entries

    async def _save_entries(self, entries: dict[str, SecretEntry]) -> None:
        await self._storage.set(
            {SECRETS_KEY: {pid: entry.dump() for pid, entry in entries.items()}}
        )

    async def _seal(self, secret: str, pin: str) -> dict[str, str]:
        """Encrypt ``secret`` and prove the stored form decrypts back to it.

        Returns:
            The base64 ``ciphertext``/``salt``/``iv`` fields to persist.

        Raises:
            EncryptionFailed: If encryption itself fails.
            StorageValidationFailed: If the round trip does not reproduce
                ``secret`` exactly.
        """
        sealed = await asyncio.to_thread(crypto.encrypt_to_text, secret, pin)
        try:
            restored = await asyncio.to_thread(
                crypto.decrypt_from_text,
                sealed["ciphertext"], sealed["salt"], sealed["iv"], pin,
            )
        except DecryptionFailed as err:
            logger.error("Secret integrity check failed: round trip did not decrypt")
            raise StorageValidationFailed() from err
        if not isinstance(restored, str) or not crypto.constant_time_equals(
            restored.encode("utf-8"), secret.encode("utf-8")
        ):
            logger.error("Secret integrity check failed: round trip mismatch")
            raise StorageValidationFailed()
        return sealed

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def validate_secret_integrity(self, secret: str, pin: str) -> bool:
        """Return True if ``secret`` survives an encrypt/decrypt round trip."""
        try:
            await self._seal(secret, pin)
        except StorageValidationFailed:
            return False
        return True

    async def store_secret(self, provider_id: str, secret: str, pin: str) -> None:
        """Encrypt and persist ``secret`` for ``provider_id``, replacing any prior one.

        Nothing is written until the integrity check passes.

        Raises:
            ValueError: If ``provider_id`` is invalid.
            StorageValidationFailed: If the round trip check fails.
            Any error raised by :meth:`PinGuard.verify_pin`.
        """
        self._validate_provider_id(provider_id)
        async with self._entries_lock:
            await self._guard.verify_pin(pin)
            sealed = await self._seal(secret, pin)
            entry = SecretEntry(
                provider_id=provider_id,
                created_at=self._guard.now(),
                **sealed,
            )
            entries = await self._load_entries()
            entries[provider_id] = entry
            await self._save_entries(entries)
            self._cache[provider_id] = secret
        logger.info("Secret stored: provider=%s", provider_id)

    async def get_secret(self, provider_id: str, pin: Optional[str] = None) -> Optional[str]:
        """Return the plaintext secret for ``provider_id``.

        Without a PIN the session cache is used; with a PIN the stored
        entry is verified and decrypted.

        Returns:
            The secret, or None if nothing is stored for ``provider_id``.

        Raises:
            PinRequired: If no PIN is given and nothing valid is cached.
            DecryptionFailed: If the stored entry cannot be decrypted.
            Any error raised by :meth:`PinGuard.verify_pin`.
        """
        self._validate_provider_id(provider_id)
        if not pin:
            if self._guard.is_session_valid():
                cached = self._cache.get(provider_id)
                if cached is not None:
                    logger.debug("Secret served from session cache: provider=%s", provider_id)
                    return cached
            raise PinRequired("PIN required to access stored secrets",
                              provider_id=provider_id)

        async with self._entries_lock:
            await self._guard.verify_pin(pin)
            entries = await self._load_entries()
            entry = entries.get(provider_id)
            if entry is None:
                logger.debug("No secret stored: provider=%s", provider_id)
                return None
            secret = await asyncio.to_thread(
                crypto.decrypt_from_text, entry.ciphertext, entry.salt, entry.iv, pin,
            )
            entry.last_used_at = self._guard.now()
            await self._save_entries(entries)
            self._cache[provider_id] = secret
        logger.debug("Secret decrypted: provider=%s", provider_id)
        return secret

    async def remove_secret(self, provider_id: str, pin: str) -> None:
        """Delete the secret for ``provider_id`` and evict it from the cache.

        Raises:
            RemovalFailed: If storage cannot be updated.
            Any error raised by :meth:`PinGuard.verify_pin`.
        """
        self._validate_provider_id(provider_id)
        async with self._entries_lock:
            await self._guard.verify_pin(pin)
            try:
                entries = await self._load_entries()
                entries.pop(provider_id, None)
                await self._save_entries(entries)
            except Exception as err:
                logger.error("Failed to remove secret provider=%s: %s", provider_id, err)
                raise RemovalFailed(provider_id=provider_id) from err
            finally:
                self._cache.pop(provider_id, None)
        logger.info("Secret removed: provider=%s", provider_id)

    async def list_providers(self) -> list[ProviderInfo]:
        """List stored providers with timestamps. Never decrypts."""
        entries = await self._load_entries()
        return [
            ProviderInfo(
                provider_id=entry.provider_id,
                created_at=entry.created_at,
                last_used_at=entry.last_used_at,
            )
            for entry in entries.values()
        ]

    async def has_secret(self, provider_id: str) -> bool:
        self._validate_provider_id(provider_id)
        entries = await self._load_entries()
        return provider_id in entries

    async def clear_all_secrets(self, pin: str) -> None:
        """Delete every stored secret after verifying ``pin``.

        Raises:
            ClearFailed: If storage cannot be updated.
        """
        logger.warning("Clearing all stored secrets")
        async with self._entries_lock:
            await self._guard.verify_pin(pin)
            try:
                await self._storage.remove([SECRETS_KEY])
            except Exception as err:
                logger.error("Failed to clear secrets: %s", err)
                raise ClearFailed() from err
            finally:
                self._cache.clear()
        logger.warning("All stored secrets cleared")

    def clear_session_cache(self) -> None:
        """Drop every cached plaintext. Synchronous and in-memory only."""
        self._cache.clear()
        logger.debug("Session cache cleared")

    # ------------------------------------------------------------------
    # PIN / session operations
    # ------------------------------------------------------------------

    async def setup_pin(self, pin: str) -> None:
        await self._guard.setup_pin(pin)

    async def verify_pin(self, pin: str) -> None:
        await self._guard.verify_pin(pin)

    async def change_pin(self, old_pin: str, new_pin: str) -> None:
        """Change the PIN and re-encrypt every stored secret under it.

        Entries are decrypted with ``old_pin`` and sealed with ``new_pin``
        before the PIN itself is replaced. The resealed collection and the
        new PIN hash are written in one storage call, so a failure leaves
        both the PIN and the secrets as they were.
        """
        resealed: dict[str, SecretEntry] = {}

        async def reseal() -> Optional[dict[str, Any]]:
            entries = await self._load_entries()
            for provider_id, entry in entries.items():
                secret = await asyncio.to_thread(
                    crypto.decrypt_from_text,
                    entry.ciphertext, entry.salt, entry.iv, old_pin,
                )
                sealed = await self._seal(secret, new_pin)
                resealed[provider_id] = entry.model_copy(update=sealed)
            if not resealed:
                return None
            return {
                SECRETS_KEY: {pid: entry.dump() for pid, entry in resealed.items()}
            }

        async with self._entries_lock:
            await self._guard.change_pin(old_pin, new_pin, on_verified=reseal)
        if resealed:
            logger.info("Re-encrypted %d secret(s) under the new PIN", len(resealed))

    def is_session_valid(self) -> bool:
        return self._guard.is_session_valid()

    def get_remaining_session_time(self) -> int:
        return self._guard.get_remaining_session_time()

    async def extend_session(self) -> None:
        await self._guard.extend_session()

    async def lock_session(self) -> None:
        await self._guard.lock_session()

    async def get_lockout_status(self) -> LockoutStatus:
        return await self._guard.get_lockout_status()

    async def update_security_config(
        self, partial: Mapping[str, Any], pin: str,
    ) -> SecurityConfig:
        return await self._guard.update_security_config(partial, pin)

    async def emergency_wipe(self) -> None:
        async with self._entries_lock:
            await self._guard.emergency_wipe()
            self._cache.clear()

    async def is_pin_setup(self) -> bool:
        return await self._guard.is_pin_setup()
