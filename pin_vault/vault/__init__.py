"""PIN Vault — Encrypted secret storage gated by a PIN and a time-boxed session.

Security Note (Threat Model):
    Secrets are decrypted in process memory while a session is valid and
    cached plaintexts stay there until the session ends. A memory dump of
    the application process could expose them. This is an accepted
    limitation: mitigation requires hardware-backed key storage which is
    out of scope.
"""

from .config import SecurityConfig, load_security_config
from .lockout import AttemptPolicy, FailureOutcome, VerifyPlan
from .models import (
    AttemptRecord,
    LockoutStatus,
    PinHashRecord,
    ProviderInfo,
    SecretEntry,
    Session,
)
from .pin_guard import PinGuard
from .secret_vault import SecretVault
from .session import SessionManager

__all__ = [
    "SecretVault",
    "PinGuard",
    "SessionManager",
    "AttemptPolicy",
    "FailureOutcome",
    "VerifyPlan",
    "SecurityConfig",
    "load_security_config",
    "AttemptRecord",
    "LockoutStatus",
    "PinHashRecord",
    "ProviderInfo",
    "SecretEntry",
    "Session",
]
