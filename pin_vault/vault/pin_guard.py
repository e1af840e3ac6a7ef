"""
PinGuard — PIN verification core.

Owns the PIN hash record, the attempt record, the security config and
the session. ``verify_pin`` runs, in order: throttle, lockout check,
progressive delay, constant-time compare, then failure accounting or
session creation. Delays are computed synchronously by
:class:`~pin_vault.vault.lockout.AttemptPolicy` and then awaited through
the injected ``sleep`` coroutine.

Security Note:
    The PIN is only ever used as PBKDF2 input. It is never stored,
    logged, or used directly as a key. The hash salt is independent of
    every encryption salt.
"""
import time
import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional

from pydantic import ValidationError

from ..conf import (
    ATTEMPT_RECORD_KEY,
    MIN_ATTEMPT_INTERVAL_MS,
    MIN_PIN_LENGTH,
    PBKDF2_ITERATIONS,
    PIN_HASH_KEY,
    SECURITY_CONFIG_KEY,
    WIPE_KEYS,
)
from ..exceptions import (
    DecryptionFailed,
    EmergencyWipeTriggered,
    InvalidPin,
    LockoutActive,
    PinRequired,
)
from .config import SecurityConfig, load_security_config
from .crypto import b64decode, b64encode, constant_time_equals, hash_pin
from .lockout import AttemptPolicy, FailureOutcome
from .models import AttemptRecord, LockoutStatus, PinHashRecord
from .session import Listener, SessionManager

logger = logging.getLogger("pin_vault")


def wall_clock_ms() -> int:
    """Current epoch time in milliseconds."""
    return int(time.time() * 1000)


async def sleep_ms(ms: int) -> None:
    await asyncio.sleep(ms / 1000)


class PinGuard:
    """PIN setup, verification, lockout and session gate.

    One instance exclusively owns its storage namespace. Attempt-record
    updates are serialized by an ``asyncio.Lock``.

    Args:
        storage: async storage adapter (get/set/remove).
        config: base security config; defaults to ``SecurityConfig.from_env()``.
            A stored override, if any, is merged over it on load.
        clock: returns epoch milliseconds.
        sleep: coroutine function suspending for the given milliseconds.
        hash_iterations: PBKDF2 iterations for new PIN hashes.
        min_interval_ms: minimum spacing between verification attempts.
    """

    def __init__(
        self,
        storage: Any,
        config: Optional[SecurityConfig] = None,
        *,
        clock: Callable[[], int] = wall_clock_ms,
        sleep: Callable[[int], Awaitable[None]] = sleep_ms,
        hash_iterations: int = PBKDF2_ITERATIONS,
        min_interval_ms: int = MIN_ATTEMPT_INTERVAL_MS,
    ) -> None:
        self._storage = storage
        self._base_config = config if config is not None else SecurityConfig.from_env()
        self._config = self._base_config
        self._clock = clock
        self._sleep = sleep
        self._hash_iterations = hash_iterations
        self._policy = AttemptPolicy(self._config, min_interval_ms=min_interval_ms)
        self._session = SessionManager(
            storage, clock, self._config.session_timeout_ms,
        )
        self._lock = asyncio.Lock()
        self._last_attempt_at = 0
        self._loaded = False

    def __repr__(self) -> str:
        return (
            f"<PinGuard session_valid={self.is_session_valid()} "
            f"max_attempts={self._config.max_attempts}>"
        )

    # ------------------------------------------------------------------
    # Factory / loading
    # ------------------------------------------------------------------

    @classmethod
    async def open(cls, storage: Any, **kwargs: Any) -> "PinGuard":
        """Create a guard and load its stored config and session snapshot."""
        guard = cls(storage, **kwargs)
        await guard.load()
        return guard

    async def load(self) -> None:
        """Load the stored config override and restore the session snapshot."""
        data = await self._storage.get([SECURITY_CONFIG_KEY])
        self._apply_config(
            load_security_config(data.get(SECURITY_CONFIG_KEY), self._base_config)
        )
        await self._session.restore()
        self._loaded = True
        logger.debug(
            "PIN guard loaded: session_valid=%s", self._session.is_valid()
        )

    async def _ensure_loaded(self) -> None:
        if not self._loaded:
            await self.load()

    def _apply_config(self, config: SecurityConfig) -> None:
        self._config = config
        self._policy.config = config
        self._session.timeout_ms = config.session_timeout_ms

    @property
    def config(self) -> SecurityConfig:
        return self._config

    @property
    def storage(self) -> Any:
        return self._storage

    def now(self) -> int:
        return self._clock()

    @property
    def session(self) -> SessionManager:
        return self._session

    def add_invalidation_listener(self, listener: Listener) -> None:
        """Call ``listener(reason)`` on lock, PIN change, expiry and wipe."""
        self._session.add_listener(listener)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def _load_pin_hash(self) -> Optional[PinHashRecord]:
        data = await self._storage.get([PIN_HASH_KEY])
        stored = data.get(PIN_HASH_KEY)
        if not stored:
            return None
        try:
            record = PinHashRecord.model_validate(stored)
            b64decode(record.hash)
            b64decode(record.salt)
        except (ValidationError, DecryptionFailed) as err:
            logger.warning("Invalid PIN hash record, treating as not configured: %s", err)
            return None
        return record

    async def _load_attempt_record(self) -> AttemptRecord:
        data = await self._storage.get([ATTEMPT_RECORD_KEY])
        stored = data.get(ATTEMPT_RECORD_KEY)
        if not stored:
            return AttemptRecord()
        try:
            return AttemptRecord.model_validate(stored)
        except ValidationError as err:
            logger.warning("Invalid attempt record, resetting: %s", err)
            return AttemptRecord()

    async def _save_attempt_record(self, record: AttemptRecord) -> None:
        await self._storage.set({ATTEMPT_RECORD_KEY: record.dump()})

    async def _hash_new_pin(self, pin: str) -> PinHashRecord:
        digest, salt = await asyncio.to_thread(
            hash_pin, pin, None, self._hash_iterations,
        )
        return PinHashRecord(
            hash=b64encode(digest),
            salt=b64encode(salt),
            iterations=self._hash_iterations,
            created_at=self._clock(),
        )

    async def _matches(self, pin: str) -> bool:
        record = await self._load_pin_hash()
        if record is None:
            logger.debug("No PIN hash found, setup required")
            return False
        expected = b64decode(record.hash)
        digest, _ = await asyncio.to_thread(
            hash_pin, pin, b64decode(record.salt), record.iterations,
        )
        return constant_time_equals(digest, expected)

    @staticmethod
    def _check_format(pin: Any, label: str = "PIN") -> None:
        if not isinstance(pin, str) or len(pin) < MIN_PIN_LENGTH:
            raise InvalidPin(f"{label} must be at least {MIN_PIN_LENGTH} characters")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def is_pin_setup(self) -> bool:
        return await self._load_pin_hash() is not None

    async def setup_pin(self, pin: str) -> None:
        """Configure the PIN for first use and open a session.

        Raises:
            InvalidPin: If the PIN is too short or a PIN already exists.
        """
        self._check_format(pin)
        await self._ensure_loaded()
        async with self._lock:
            if await self._load_pin_hash() is not None:
                raise InvalidPin("PIN already exists. Use change_pin to modify it.")
            record = await self._hash_new_pin(pin)
            await self._storage.set({PIN_HASH_KEY: record.dump()})
            await self._storage.remove([ATTEMPT_RECORD_KEY])
            await self._session.create()
        logger.info("PIN setup completed")

    async def verify_pin(self, pin: str) -> None:
        """Verify ``pin`` and open a new session.

        Raises:
            PinRequired: If no PIN is given.
            LockoutActive: While locked, or when this failure starts a lockout.
            InvalidPin: On mismatch below the lockout threshold.
            EmergencyWipeTriggered: When this failure reaches ``max_attempts``;
                the vault is wiped before raising.
        """
        if not pin or not isinstance(pin, str):
            raise PinRequired()
        await self._ensure_loaded()
        async with self._lock:
            await self._verify_locked(pin)

    async def _verify_locked(self, pin: str) -> None:
        throttle = self._policy.throttle_delay(self._last_attempt_at, self._clock())
        if throttle:
            logger.warning("Rate limit triggered, delaying %d ms", throttle)
            await self._sleep(throttle)
        now = self._clock()
        self._last_attempt_at = now

        record = await self._load_attempt_record()
        plan = self._policy.plan(record, now)
        if plan.is_locked:
            logger.warning(
                "Verification refused, locked for %d ms", plan.locked_remaining_ms
            )
            raise LockoutActive(
                remaining_ms=plan.locked_remaining_ms,
                locked_until=plan.locked_until,
                attempts=record.attempts,
            )
        if plan.lockout_expired:
            logger.info("Lockout window elapsed, attempts reset")
            await self._save_attempt_record(record)
        if plan.delay_ms:
            logger.debug("Progressive delay %d ms", plan.delay_ms)
            await self._sleep(plan.delay_ms)

        if await self._matches(pin):
            await self._storage.remove([ATTEMPT_RECORD_KEY])
            session = await self._session.create()
            logger.info("PIN verification successful: %s", session.session_id)
            return

        now = self._clock()
        outcome = self._policy.record_failure(record, now)
        logger.warning(
            "Failed PIN attempt %d (lockout at %d, wipe at %d)",
            record.attempts,
            self._config.lockout_threshold,
            self._config.max_attempts,
        )
        if outcome is FailureOutcome.WIPE:
            logger.error("Maximum attempts exceeded, triggering emergency wipe")
            await self._wipe()
            raise EmergencyWipeTriggered(
                attempts=record.attempts,
                max_attempts=self._config.max_attempts,
            )
        await self._save_attempt_record(record)
        if outcome is FailureOutcome.LOCKED:
            logger.warning(
                "Lockout activated until %d", record.locked_until
            )
            raise LockoutActive(
                remaining_ms=record.locked_until - now,
                locked_until=record.locked_until,
                attempts=record.attempts,
            )
        raise InvalidPin(
            attempts=record.attempts,
            attempts_remaining=self._policy.attempts_remaining(record),
        )

    async def change_pin(
        self,
        old_pin: str,
        new_pin: str,
        *,
        on_verified: Optional[
            Callable[[], Awaitable[Optional[Mapping[str, Any]]]]
        ] = None,
    ) -> None:
        """Replace the PIN after verifying ``old_pin``; the session is locked.

        Args:
            old_pin: current PIN.
            new_pin: replacement PIN.
            on_verified: coroutine function awaited after ``old_pin`` is
                verified and before the new hash is written. It may return
                extra storage items, written in the same ``set`` call as
                the new hash. An error raised there aborts the change.

        Raises:
            InvalidPin: If ``new_pin`` is too short (checked before verifying).
            Any error raised by :meth:`verify_pin` for ``old_pin``.
        """
        self._check_format(new_pin, "New PIN")
        await self.verify_pin(old_pin)
        extra: Mapping[str, Any] = {}
        if on_verified is not None:
            extra = await on_verified() or {}
        record = await self._hash_new_pin(new_pin)
        async with self._lock:
            await self._storage.set({**extra, PIN_HASH_KEY: record.dump()})
        await self._session.lock("pin_changed")
        logger.info("PIN changed, session locked")

    async def _wipe(self) -> None:
        await self._storage.remove(list(WIPE_KEYS))
        self._apply_config(self._base_config)
        self._session.invalidate("wiped")

    async def emergency_wipe(self) -> None:
        """Irreversibly delete every vault record and reset the config."""
        logger.warning("Executing emergency wipe")
        async with self._lock:
            await self._wipe()
        logger.warning("Emergency wipe completed")

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def is_session_valid(self) -> bool:
        return self._session.is_valid()

    def get_remaining_session_time(self) -> int:
        """Remaining session time in milliseconds."""
        return self._session.remaining()

    async def extend_session(self) -> None:
        await self._session.extend()

    async def lock_session(self) -> None:
        logger.info("Locking session")
        await self._session.lock("locked")

    # ------------------------------------------------------------------
    # Status / config
    # ------------------------------------------------------------------

    async def get_lockout_status(self) -> LockoutStatus:
        await self._ensure_loaded()
        record = await self._load_attempt_record()
        return self._policy.status(record, self._clock())

    async def get_attempt_status(self) -> dict[str, int]:
        status = await self.get_lockout_status()
        return {
            "attempts": status.attempts,
            "attempts_remaining": status.attempts_remaining,
        }

    async def get_security_config(self) -> SecurityConfig:
        await self._ensure_loaded()
        return self._config

    async def update_security_config(
        self, partial: Mapping[str, Any], pin: str,
    ) -> SecurityConfig:
        """Apply a partial config update after verifying ``pin``.

        Raises:
            pydantic.ValidationError / ValueError: If the merged config is invalid.
            Any error raised by :meth:`verify_pin`.
        """
        await self._ensure_loaded()
        updated = self._config.merged(partial)
        await self.verify_pin(pin)
        async with self._lock:
            await self._storage.set({SECURITY_CONFIG_KEY: updated.dump()})
            self._apply_config(updated)
        logger.info("Security config updated: %s", sorted(partial))
        return updated
