"""
Vault Configuration — Security policy defaults, env overrides and stored overrides.

Effective configuration is layered:
    defaults ← environment (PINVAULT_*) ← override stored in the vault

Environment variables:
    PINVAULT_MAX_ATTEMPTS = <int>
    PINVAULT_LOCKOUT_DURATION_MS = <int>
    PINVAULT_SESSION_TIMEOUT_MS = <int>
    PINVAULT_PROGRESSIVE_DELAYS = <comma separated ms, e.g. "1000,2000,4000">
    PINVAULT_LOCKOUT_THRESHOLD_RATIO = <float in (0, 1]>
"""
import os
import math
import logging
from typing import Any, Mapping, Optional

from pydantic import Field, ValidationError, field_validator

from ..conf import (
    DEFAULT_LOCKOUT_DURATION_MS,
    DEFAULT_LOCKOUT_THRESHOLD_RATIO,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_PROGRESSIVE_DELAYS,
    DEFAULT_SESSION_TIMEOUT_MS,
    ENV_LOCKOUT_DURATION_MS,
    ENV_LOCKOUT_THRESHOLD_RATIO,
    ENV_MAX_ATTEMPTS,
    ENV_PROGRESSIVE_DELAYS,
    ENV_SESSION_TIMEOUT_MS,
)
from .models import VaultRecord

logger = logging.getLogger("pin_vault")


class SecurityConfig(VaultRecord):
    """Validated security policy.

    The lockout threshold and the wipe threshold are independent:
    lockout starts at ``ceil(lockout_threshold_ratio * max_attempts)``
    failures, the emergency wipe at ``max_attempts`` failures.
    """

    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1, le=100)
    lockout_duration_ms: int = Field(default=DEFAULT_LOCKOUT_DURATION_MS, gt=0)
    session_timeout_ms: int = Field(default=DEFAULT_SESSION_TIMEOUT_MS, gt=0)
    progressive_delays: list[int] = Field(
        default_factory=lambda: list(DEFAULT_PROGRESSIVE_DELAYS),
    )
    lockout_threshold_ratio: float = Field(
        default=DEFAULT_LOCKOUT_THRESHOLD_RATIO, gt=0, le=1,
    )

    @field_validator("progressive_delays")
    @classmethod
    def validate_delays(cls, v: list[int]) -> list[int]:
        """Delay schedule must be non-empty, positive and ascending."""
        if not v:
            raise ValueError("progressive_delays must not be empty")
        if any(d <= 0 for d in v):
            raise ValueError("progressive_delays must be positive")
        if any(b < a for a, b in zip(v, v[1:])):
            raise ValueError("progressive_delays must be ascending")
        return v

    @property
    def lockout_threshold(self) -> int:
        return max(1, math.ceil(self.lockout_threshold_ratio * self.max_attempts))

    def merged(self, partial: Mapping[str, Any]) -> "SecurityConfig":
        """Return a new validated config with ``partial`` applied.

        ``partial`` may use snake_case or camelCase keys.

        Raises:
            pydantic.ValidationError: If the result is invalid.
        """
        data = self.model_dump()
        data.update(_normalize_keys(partial))
        return SecurityConfig.model_validate(data)

    @classmethod
    def from_env(cls) -> "SecurityConfig":
        """Create a SecurityConfig from defaults plus PINVAULT_* overrides."""
        overrides: dict[str, Any] = {}
        for env_name, field in (
            (ENV_MAX_ATTEMPTS, "max_attempts"),
            (ENV_LOCKOUT_DURATION_MS, "lockout_duration_ms"),
            (ENV_SESSION_TIMEOUT_MS, "session_timeout_ms"),
            (ENV_LOCKOUT_THRESHOLD_RATIO, "lockout_threshold_ratio"),
        ):
            raw = os.environ.get(env_name)
            if raw is not None:
                overrides[field] = raw
        raw_delays = os.environ.get(ENV_PROGRESSIVE_DELAYS)
        if raw_delays:
            overrides["progressive_delays"] = [
                int(part) for part in raw_delays.split(",") if part.strip()
            ]
        return cls.model_validate(overrides)


def _normalize_keys(partial: Mapping[str, Any]) -> dict[str, Any]:
    """Map camelCase aliases to field names; unknown keys are rejected."""
    by_alias = {
        (info.alias or name): name
        for name, info in SecurityConfig.model_fields.items()
    }
    result: dict[str, Any] = {}
    for key, value in partial.items():
        if key in SecurityConfig.model_fields:
            result[key] = value
        elif key in by_alias:
            result[by_alias[key]] = value
        else:
            raise ValueError(f"Unknown security config field: {key}")
    return result


def load_security_config(
    stored: Optional[Mapping[str, Any]],
    base: Optional[SecurityConfig] = None,
) -> SecurityConfig:
    """Merge a stored override over ``base`` (or env defaults).

    A corrupted override falls back to ``base`` instead of failing, so a
    damaged record can never brick the vault.
    """
    if base is None:
        base = SecurityConfig.from_env()
    if not stored:
        return base
    if not isinstance(stored, Mapping):
        logger.warning("Stored security config is not a mapping, using defaults")
        return base
    try:
        return base.merged(stored)
    except (ValidationError, ValueError) as err:
        logger.warning("Invalid stored security config, using defaults: %s", err)
        return base
