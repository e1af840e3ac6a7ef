"""
Vault Crypto Core — Key derivation, encryption/decryption, PIN hashing and codecs.

- Secret layer: PBKDF2-HMAC-SHA256(pin, fresh salt) → AES-256-GCM → ciphertext
- PIN layer: PBKDF2-HMAC-SHA256(pin, independent salt) → verification hash

Security Note:
    Never log plaintext, PINs, derived keys or ciphertext values.
    Salt and nonce are freshly random on every ``encrypt`` call, so a
    nonce is never reused under the same derived key.
"""
import os
import hmac
import time
import base64
import binascii
import secrets
import logging
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..conf import (
    KEY_LENGTH,
    MIN_PIN_LENGTH,
    NONCE_SIZE,
    PBKDF2_HASH,
    PBKDF2_ITERATIONS,
    SALT_LENGTH,
    TAG_LENGTH,
)
from ..exceptions import DecryptionFailed, EncryptionFailed

logger = logging.getLogger("pin_vault")


# ---------------------------------------------------------------------------
# Binary <-> text codecs
# ---------------------------------------------------------------------------

def b64encode(data: bytes) -> str:
    """Encode bytes as base64 text for storage."""
    return base64.b64encode(data).decode("ascii")


def b64decode(text: str) -> bytes:
    """Decode base64 text produced by :func:`b64encode`.

    Raises:
        DecryptionFailed: If ``text`` is not valid base64.
    """
    if not isinstance(text, str) or not text:
        raise DecryptionFailed("Invalid base64 value")
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as err:
        raise DecryptionFailed("Invalid base64 value") from err


@dataclass(frozen=True)
class EncryptionResult:
    """Output of :func:`encrypt`. ``ciphertext`` includes the GCM tag."""

    ciphertext: bytes
    salt: bytes
    iv: bytes

    def __repr__(self) -> str:
        return (
            f"EncryptionResult(ciphertext=<{len(self.ciphertext)} bytes>, "
            f"salt=<{len(self.salt)} bytes>, iv=<{len(self.iv)} bytes>)"
        )

    def to_text(self) -> dict[str, str]:
        return {
            "ciphertext": b64encode(self.ciphertext),
            "salt": b64encode(self.salt),
            "iv": b64encode(self.iv),
        }

    @classmethod
    def from_text(cls, ciphertext: str, salt: str, iv: str) -> "EncryptionResult":
        return cls(
            ciphertext=b64decode(ciphertext),
            salt=b64decode(salt),
            iv=b64decode(iv),
        )


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(
    passphrase: str,
    salt: bytes,
    iterations: int = PBKDF2_ITERATIONS,
    length: int = KEY_LENGTH,
) -> bytes:
    """Derive a key from a passphrase using PBKDF2-HMAC-SHA256.

    Args:
        passphrase: PIN or passphrase (UTF-8 encoded before derivation).
        salt: Random salt, unique per derivation.
        iterations: PBKDF2 iteration count.
        length: Output length in bytes.

    Returns:
        Derived key bytes.
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=length,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(passphrase.encode("utf-8"))


# ---------------------------------------------------------------------------
# Secret encryption
# ---------------------------------------------------------------------------

def encrypt(plaintext: str, passphrase: str) -> EncryptionResult:
    """Encrypt ``plaintext`` under a key derived from ``passphrase``.

    Only non-empty plaintexts and passphrases of at least
    ``MIN_PIN_LENGTH`` characters are accepted; the round trip holds for
    every such pair.

    Raises:
        EncryptionFailed: On empty input, a short passphrase or cipher failure.
    """
    if not plaintext or not isinstance(plaintext, str):
        raise EncryptionFailed("Invalid data: must be a non-empty string")
    if not isinstance(passphrase, str) or len(passphrase) < MIN_PIN_LENGTH:
        raise EncryptionFailed(
            f"Invalid PIN: must be at least {MIN_PIN_LENGTH} characters"
        )
    salt = os.urandom(SALT_LENGTH)
    iv = os.urandom(NONCE_SIZE)
    try:
        key = derive_key(passphrase, salt)
        ct = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    except (ValueError, TypeError, OverflowError) as err:
        logger.error("Encryption failed: %s", type(err).__name__)
        raise EncryptionFailed(original_error=type(err).__name__) from err
    logger.debug(
        "Encryption completed: plaintext=%d bytes ciphertext=%d bytes",
        len(plaintext), len(ct),
    )
    return EncryptionResult(ciphertext=ct, salt=salt, iv=iv)


def decrypt(ciphertext: bytes, salt: bytes, iv: bytes, passphrase: str) -> str:
    """Decrypt data produced by :func:`encrypt`.

    The GCM tag is verified before any plaintext is returned.

    Raises:
        DecryptionFailed: On a wrong passphrase, tampered or malformed input.
    """
    if not ciphertext or not salt or not iv or not passphrase:
        raise DecryptionFailed("Invalid decryption input: missing required fields")
    if len(iv) != NONCE_SIZE:
        raise DecryptionFailed(
            f"Invalid nonce length: {len(iv)} bytes (expected {NONCE_SIZE})"
        )
    if len(ciphertext) < TAG_LENGTH:
        raise DecryptionFailed(
            f"ciphertext too short: {len(ciphertext)} bytes (minimum {TAG_LENGTH})"
        )
    if not isinstance(passphrase, str) or len(passphrase) < MIN_PIN_LENGTH:
        raise DecryptionFailed(
            f"Invalid PIN: must be at least {MIN_PIN_LENGTH} characters"
        )
    try:
        key = derive_key(passphrase, salt)
        data = AESGCM(key).decrypt(iv, ciphertext, None)
        return data.decode("utf-8")
    except InvalidTag as err:
        logger.debug("Decryption failed: authentication tag mismatch")
        raise DecryptionFailed() from err
    except (ValueError, TypeError, UnicodeDecodeError) as err:
        logger.debug("Decryption failed: %s", type(err).__name__)
        raise DecryptionFailed(original_error=type(err).__name__) from err


def encrypt_to_text(plaintext: str, passphrase: str) -> dict[str, str]:
    """Encrypt and return base64 ``ciphertext``/``salt``/``iv`` fields."""
    return encrypt(plaintext, passphrase).to_text()


def decrypt_from_text(ciphertext: str, salt: str, iv: str, passphrase: str) -> str:
    """Inverse of :func:`encrypt_to_text`."""
    result = EncryptionResult.from_text(ciphertext, salt, iv)
    return decrypt(result.ciphertext, result.salt, result.iv, passphrase)


# ---------------------------------------------------------------------------
# PIN hashing
# ---------------------------------------------------------------------------

def hash_pin(
    pin: str,
    salt: Optional[bytes] = None,
    iterations: int = PBKDF2_ITERATIONS,
) -> tuple[bytes, bytes]:
    """Compute the one-way verification hash of ``pin``.

    Args:
        pin: PIN to hash.
        salt: Existing salt to verify against, or None to generate one.
        iterations: PBKDF2 iteration count.

    Returns:
        Tuple of (hash, salt).
    """
    if salt is None:
        salt = os.urandom(SALT_LENGTH)
    return derive_key(pin, salt, iterations=iterations), salt


def constant_time_equals(a: bytes, b: bytes) -> bool:
    """Compare two byte strings without early exit on the first mismatch."""
    return hmac.compare_digest(a, b)


def generate_session_id() -> str:
    """Return a random session identifier: ``session_<ms>_<16 chars>``."""
    return f"session_{int(time.time() * 1000)}_{secrets.token_hex(8)}"


def get_encryption_config() -> dict:
    """Algorithm parameters, for diagnostics."""
    return {
        "algorithm": "AES-GCM",
        "key_length": KEY_LENGTH * 8,
        "iv_length": NONCE_SIZE,
        "salt_length": SALT_LENGTH,
        "tag_length": TAG_LENGTH,
        "pbkdf2_iterations": PBKDF2_ITERATIONS,
        "pbkdf2_hash": PBKDF2_HASH,
    }
