"""PIN Vault.

Local, PIN-gated encrypted storage for third-party API secrets.
"""
from .version import __version__
from .exceptions import (
    VaultError,
    PinProtectionError,
    InvalidPin,
    PinRequired,
    LockoutActive,
    MaxAttemptsExceeded,
    EmergencyWipeTriggered,
    SessionExpired,
    SessionCreationFailed,
    EncryptionError,
    EncryptionFailed,
    DecryptionFailed,
    SecretStorageError,
    StorageValidationFailed,
    RemovalFailed,
    ClearFailed,
)
from .storage import StorageAdapter, MemoryStorage, FileStorage
from .vault import SecretVault, PinGuard, SecurityConfig

__all__ = (
    "__version__",
    "SecretVault",
    "PinGuard",
    "SecurityConfig",
    "StorageAdapter",
    "MemoryStorage",
    "FileStorage",
    "VaultError",
    "PinProtectionError",
    "InvalidPin",
    "PinRequired",
    "LockoutActive",
    "MaxAttemptsExceeded",
    "EmergencyWipeTriggered",
    "SessionExpired",
    "SessionCreationFailed",
    "EncryptionError",
    "EncryptionFailed",
    "DecryptionFailed",
    "SecretStorageError",
    "StorageValidationFailed",
    "RemovalFailed",
    "ClearFailed",
)
