"""
PIN Vault errors.

Every error carries a machine-readable ``code`` and a ``context`` dict
(``attempts_remaining``, ``locked_until``, ``provider_id``...) so callers
can build user-facing messages without reaching into vault state.

Security Note:
    Never put PINs, secrets or key material into ``context``.
"""
import math
import time
from typing import Any, Optional


def _now_ms() -> int:
    return int(time.time() * 1000)


class VaultError(Exception):
    """Base class for every PIN Vault error."""

    code: str = "VAULT_ERROR"
    default_message: str = "Vault operation failed"

    def __init__(self, message: Optional[str] = None, **context: Any) -> None:
        self.message = message or self.default_message
        self.context: dict[str, Any] = context
        self.timestamp = _now_ms()
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} code={self.code} context={self.context!r}>"

    def user_message(self) -> str:
        """Human readable message derived from the code and context."""
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp,
        }


# ---------------------------------------------------------------------------
# PIN / session errors
# ---------------------------------------------------------------------------

class PinProtectionError(VaultError):
    """Base class for PIN verification and session errors."""

    code = "PIN_PROTECTION_ERROR"


class InvalidPin(PinProtectionError):
    code = "INVALID_PIN"
    default_message = "Incorrect PIN"

    @property
    def attempts_remaining(self) -> Optional[int]:
        return self.context.get("attempts_remaining")

    def user_message(self) -> str:
        remaining = self.attempts_remaining
        if remaining is None:
            return "Incorrect PIN. Please try again."
        if remaining == 1:
            return "Incorrect PIN. 1 attempt remaining."
        return f"Incorrect PIN. {remaining} attempts remaining."


class PinRequired(PinProtectionError):
    code = "PIN_REQUIRED"
    default_message = "PIN required to access encrypted data"

    def user_message(self) -> str:
        return "PIN required to access encrypted data."


class LockoutActive(PinProtectionError):
    """Verification is temporarily suspended after repeated failures."""

    code = "LOCKOUT_ACTIVE"
    default_message = "Too many failed attempts, verification is locked"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        remaining_ms: int,
        locked_until: int,
        **context: Any,
    ) -> None:
        super().__init__(
            message,
            remaining_ms=remaining_ms,
            locked_until=locked_until,
            **context,
        )

    @property
    def remaining_ms(self) -> int:
        return self.context["remaining_ms"]

    @property
    def locked_until(self) -> int:
        return self.context["locked_until"]

    def user_message(self) -> str:
        minutes = math.ceil(self.remaining_ms / 60_000) if self.remaining_ms > 0 else 0
        if minutes <= 0:
            wait = "0 seconds"
        elif minutes == 1:
            wait = "1 minute"
        else:
            wait = f"{minutes} minutes"
        return f"Account is locked. Please wait {wait} before trying again."


class MaxAttemptsExceeded(PinProtectionError):
    code = "MAX_ATTEMPTS_EXCEEDED"
    default_message = "Maximum PIN attempts exceeded"

    def user_message(self) -> str:
        return "Too many failed attempts. All data has been wiped for security."


class EmergencyWipeTriggered(MaxAttemptsExceeded):
    """Raised after exhausting attempts; the vault has already been wiped."""

    code = "EMERGENCY_WIPE_TRIGGERED"
    default_message = "Maximum PIN attempts exceeded, vault wiped"

    def user_message(self) -> str:
        return "Emergency security wipe activated. All data has been cleared."


class SessionExpired(PinProtectionError):
    code = "SESSION_EXPIRED"
    default_message = "No valid session"

    def user_message(self) -> str:
        return "Your session has expired. Please enter your PIN again."


class SessionCreationFailed(PinProtectionError):
    code = "SESSION_CREATION_FAILED"
    default_message = "Failed to create session"

    def user_message(self) -> str:
        return "Failed to create secure session. Please try again."


# ---------------------------------------------------------------------------
# Encryption errors
# ---------------------------------------------------------------------------

class EncryptionError(VaultError):
    code = "ENCRYPTION_ERROR"


class EncryptionFailed(EncryptionError):
    code = "ENCRYPTION_FAILED"
    default_message = "Encryption operation failed"

    def user_message(self) -> str:
        return "Failed to encrypt data. Please try again."


class DecryptionFailed(EncryptionError):
    code = "DECRYPTION_FAILED"
    default_message = "Decryption failed: incorrect PIN or corrupted data"

    def user_message(self) -> str:
        return "Failed to decrypt data. Your PIN may be incorrect."


# ---------------------------------------------------------------------------
# Secret storage errors
# ---------------------------------------------------------------------------

class SecretStorageError(VaultError):
    code = "SECRET_STORAGE_ERROR"


class StorageValidationFailed(SecretStorageError):
    code = "STORAGE_VALIDATION_FAILED"
    default_message = "Secret failed integrity check, nothing was stored"


class RemovalFailed(SecretStorageError):
    code = "REMOVAL_FAILED"
    default_message = "Failed to remove secret"


class ClearFailed(SecretStorageError):
    code = "CLEAR_FAILED"
    default_message = "Failed to clear secrets"
