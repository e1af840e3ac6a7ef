"""
Tests for the error hierarchy and user-facing messages.
"""
import pytest

from pin_vault.exceptions import (
    ClearFailed,
    DecryptionFailed,
    EmergencyWipeTriggered,
    EncryptionError,
    InvalidPin,
    LockoutActive,
    MaxAttemptsExceeded,
    PinProtectionError,
    PinRequired,
    SecretStorageError,
    SessionExpired,
    StorageValidationFailed,
    VaultError,
)


@pytest.mark.parametrize("error_cls, family", [
    (InvalidPin, PinProtectionError),
    (LockoutActive, PinProtectionError),
    (EmergencyWipeTriggered, MaxAttemptsExceeded),
    (SessionExpired, PinProtectionError),
    (DecryptionFailed, EncryptionError),
    (StorageValidationFailed, SecretStorageError),
    (ClearFailed, SecretStorageError),
])
def test_hierarchy(error_cls, family):
    assert issubclass(error_cls, family)
    assert issubclass(error_cls, VaultError)


@pytest.mark.parametrize("remaining, text", [
    (2, "2 attempts remaining"),
    (1, "1 attempt remaining"),
])
def test_invalid_pin_message(remaining, text):
    error = InvalidPin(attempts=1, attempts_remaining=remaining)
    assert error.attempts_remaining == remaining
    assert text in error.user_message()


def test_invalid_pin_without_context():
    assert InvalidPin().user_message() == "Incorrect PIN. Please try again."


@pytest.mark.parametrize("remaining_ms, text", [
    (15 * 60 * 1000, "15 minutes"),
    (61_000, "2 minutes"),
    (30_000, "1 minute"),
])
def test_lockout_message_rounds_up(remaining_ms, text):
    error = LockoutActive(remaining_ms=remaining_ms, locked_until=1_000 + remaining_ms)
    assert error.remaining_ms == remaining_ms
    assert text in error.user_message()


def test_to_dict():
    error = PinRequired(provider_id="openai")
    data = error.to_dict()
    assert data["name"] == "PinRequired"
    assert data["code"] == "PIN_REQUIRED"
    assert data["context"] == {"provider_id": "openai"}
    assert isinstance(data["timestamp"], int)


def test_custom_message_overrides_default():
    assert str(DecryptionFailed("bad tag")) == "bad tag"
    assert str(DecryptionFailed()) == DecryptionFailed.default_message
