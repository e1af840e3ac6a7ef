"""
Vault records.

Persisted records serialize with camelCase aliases (``createdAt``,
``lockedUntil``...). All timestamps are integer epoch milliseconds.
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class VaultRecord(BaseModel):
    """Base class for records stored through the storage adapter."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )

    def dump(self) -> dict:
        """Return the JSON-compatible form written to storage."""
        return self.model_dump(by_alias=True, exclude_none=True)


class PinHashRecord(VaultRecord):
    """One-way verification material for the PIN."""

    hash: str = Field(min_length=1)
    salt: str = Field(min_length=1)
    iterations: int = Field(gt=0)
    created_at: int = Field(ge=0)

    def __repr__(self) -> str:
        return (
            f"PinHashRecord(iterations={self.iterations}, "
            f"created_at={self.created_at})"
        )


class AttemptRecord(VaultRecord):
    """Failed verification tracking."""

    attempts: int = Field(default=0, ge=0)
    last_attempt_at: int = Field(default=0, ge=0)
    locked_until: int = Field(default=0, ge=0)
    progressive_delay_index: int = Field(default=0, ge=0)

    def is_locked(self, now: int) -> bool:
        return self.locked_until > now

    def reset(self) -> None:
        self.attempts = 0
        self.locked_until = 0
        self.progressive_delay_index = 0


class Session(VaultRecord):
    """Time-boxed unlocked state."""

    session_id: str = Field(min_length=1)
    created_at: int = Field(ge=0)
    expires_at: int = Field(ge=0)
    is_valid: bool = True

    def is_active(self, now: int) -> bool:
        return self.is_valid and now < self.expires_at

    def remaining(self, now: int) -> int:
        if not self.is_active(now):
            return 0
        return max(0, self.expires_at - now)


class SecretEntry(VaultRecord):
    """One encrypted secret, keyed by provider id."""

    provider_id: str = Field(min_length=1)
    ciphertext: str = Field(min_length=1)
    salt: str = Field(min_length=1)
    iv: str = Field(min_length=1)
    created_at: int = Field(ge=0)
    last_used_at: Optional[int] = Field(default=None, ge=0)

    def __repr__(self) -> str:
        return (
            f"SecretEntry(provider_id={self.provider_id!r}, "
            f"created_at={self.created_at}, last_used_at={self.last_used_at})"
        )


class ProviderInfo(BaseModel):
    """Public, non-secret view of a stored entry."""

    provider_id: str
    created_at: int
    last_used_at: Optional[int] = None


class LockoutStatus(BaseModel):
    """Snapshot returned by ``PinGuard.get_lockout_status``."""

    is_locked: bool
    remaining_ms: int = 0
    locked_until: int = 0
    attempts: int = 0
    attempts_remaining: int = 0
    lockout_threshold: int = 0
    max_attempts: int = 0
