"""
Attempt / Lockout policy.

Pure decision logic: nothing here sleeps or touches storage. ``plan``
decides how long a verification must wait before comparing, and
``record_failure`` decides what a mismatch leads to. The caller performs
the awaited suspension and the persistence.
"""
import enum
from dataclasses import dataclass

from ..conf import MIN_ATTEMPT_INTERVAL_MS
from .config import SecurityConfig
from .models import AttemptRecord, LockoutStatus


class FailureOutcome(enum.Enum):
    INVALID = "invalid"
    LOCKED = "locked"
    WIPE = "wipe"


@dataclass(frozen=True)
class VerifyPlan:
    """Decision for one verification attempt.

    Attributes:
        delay_ms: progressive delay for prior failures.
        locked_remaining_ms: > 0 when the attempt must be refused.
        lockout_expired: a past lockout window elapsed; the record was reset.
    """

    delay_ms: int = 0
    locked_remaining_ms: int = 0
    locked_until: int = 0
    lockout_expired: bool = False

    @property
    def is_locked(self) -> bool:
        return self.locked_remaining_ms > 0


class AttemptPolicy:
    """Throttle, progressive delay, lockout and wipe thresholds."""

    def __init__(
        self,
        config: SecurityConfig,
        min_interval_ms: int = MIN_ATTEMPT_INTERVAL_MS,
    ) -> None:
        self.config = config
        self.min_interval_ms = min_interval_ms

    def throttle_delay(self, last_attempt_at: int, now: int) -> int:
        """Milliseconds to wait so attempts are at least ``min_interval_ms`` apart."""
        if last_attempt_at <= 0:
            return 0
        elapsed = now - last_attempt_at
        if elapsed >= self.min_interval_ms:
            return 0
        return self.min_interval_ms - max(0, elapsed)

    def progressive_delay(self, record: AttemptRecord) -> int:
        """Delay from the ascending schedule, capped at its last value."""
        index = record.progressive_delay_index
        if index <= 0:
            return 0
        delays = self.config.progressive_delays
        return delays[min(index - 1, len(delays) - 1)]

    def plan(self, record: AttemptRecord, now: int) -> VerifyPlan:
        """Decide lockout and progressive delay for an attempt.

        Resets ``record`` in place when a previous lockout has expired.
        """
        if record.is_locked(now):
            return VerifyPlan(
                locked_remaining_ms=record.locked_until - now,
                locked_until=record.locked_until,
            )
        expired = record.locked_until > 0
        if expired:
            record.reset()
        return VerifyPlan(
            delay_ms=self.progressive_delay(record),
            lockout_expired=expired,
        )

    def record_failure(self, record: AttemptRecord, now: int) -> FailureOutcome:
        """Apply a mismatch to ``record`` and decide what follows."""
        record.attempts += 1
        record.progressive_delay_index += 1
        record.last_attempt_at = now
        if record.attempts >= self.config.max_attempts:
            return FailureOutcome.WIPE
        if record.attempts >= self.config.lockout_threshold:
            record.locked_until = now + self.config.lockout_duration_ms
            return FailureOutcome.LOCKED
        return FailureOutcome.INVALID

    def attempts_remaining(self, record: AttemptRecord) -> int:
        """Failures left before the next lockout."""
        return max(0, self.config.lockout_threshold - record.attempts)

    def status(self, record: AttemptRecord, now: int) -> LockoutStatus:
        locked = record.is_locked(now)
        # an elapsed lockout counts as already reset
        attempts = 0 if (record.locked_until > 0 and not locked) else record.attempts
        return LockoutStatus(
            is_locked=locked,
            remaining_ms=record.locked_until - now if locked else 0,
            locked_until=record.locked_until if locked else 0,
            attempts=attempts,
            attempts_remaining=max(0, self.config.lockout_threshold - attempts),
            lockout_threshold=self.config.lockout_threshold,
            max_attempts=self.config.max_attempts,
        )
