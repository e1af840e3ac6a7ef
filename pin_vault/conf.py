"""
PIN Vault constants and defaults.

Storage key names, cryptographic parameters and the default security
configuration. Environment variable names used to override the defaults
are listed at the bottom.
"""

# Storage keys (flat namespace owned by one vault instance)
PIN_HASH_KEY = "pin_hash"
SESSION_KEY = "pin_session"
ATTEMPT_RECORD_KEY = "pin_attempt_record"
SECURITY_CONFIG_KEY = "security_config"
SECRETS_KEY = "llm_api_keys"

# Every key removed by an emergency wipe
WIPE_KEYS = (
    PIN_HASH_KEY,
    SESSION_KEY,
    ATTEMPT_RECORD_KEY,
    SECURITY_CONFIG_KEY,
    SECRETS_KEY,
)

# Crypto parameters
PBKDF2_ITERATIONS = 100_000
PBKDF2_HASH = "SHA-256"
KEY_LENGTH = 32  # AES-256
SALT_LENGTH = 32  # 256-bit
NONCE_SIZE = 12  # 96-bit GCM nonce
TAG_LENGTH = 16  # 128-bit GCM tag

# PIN rules
MIN_PIN_LENGTH = 4
MIN_ATTEMPT_INTERVAL_MS = 1000

# Provider ids
MAX_PROVIDER_ID_LENGTH = 255

# Default security configuration
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_LOCKOUT_DURATION_MS = 15 * 60 * 1000
DEFAULT_SESSION_TIMEOUT_MS = 30 * 60 * 1000
DEFAULT_PROGRESSIVE_DELAYS = (1000, 2000, 4000, 8000, 16000)
DEFAULT_LOCKOUT_THRESHOLD_RATIO = 0.6

# Environment overrides
ENV_MAX_ATTEMPTS = "PINVAULT_MAX_ATTEMPTS"
ENV_LOCKOUT_DURATION_MS = "PINVAULT_LOCKOUT_DURATION_MS"
ENV_SESSION_TIMEOUT_MS = "PINVAULT_SESSION_TIMEOUT_MS"
ENV_PROGRESSIVE_DELAYS = "PINVAULT_PROGRESSIVE_DELAYS"
ENV_LOCKOUT_THRESHOLD_RATIO = "PINVAULT_LOCKOUT_THRESHOLD_RATIO"
