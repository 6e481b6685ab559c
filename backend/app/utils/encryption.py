"""Fernet encryption utilities for device credentials at rest (NVR passwords)"""
from functools import lru_cache
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from app.core.config import settings
import logging

logger = logging.getLogger(__name__)

ENCRYPTED_PREFIX = "encrypted:"


class SecretDecryptionError(ValueError):
    """Raised when a stored secret cannot be decrypted with the configured key."""


@lru_cache(maxsize=1)
def _get_cipher() -> Fernet:
    """Build the Fernet cipher from ENCRYPTION_KEY on first use."""
    try:
        return Fernet(settings.ENCRYPTION_KEY.encode())
    except Exception as e:
        logger.error(f"Failed to initialize encryption cipher: {e}")
        raise ValueError(
            "Invalid ENCRYPTION_KEY. Generate a new key with: "
            "python -c 'from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())'"
        ) from e


def encrypt_secret(value: Optional[str]) -> str:
    """
    Encrypt a device secret using Fernet (AES-128-CBC + HMAC-SHA256)

    Args:
        value: Plain text secret to encrypt

    Returns:
        Encrypted secret prefixed with 'encrypted:' marker

    Example:
        >>> encrypt_secret("nvr_admin_pass")
        'encrypted:gAAAAABh...'
    """
    if not value:
        return ""

    # Avoid double encryption
    if value.startswith(ENCRYPTED_PREFIX):
        return value

    encrypted_bytes = _get_cipher().encrypt(value.encode())
    return f"{ENCRYPTED_PREFIX}{encrypted_bytes.decode()}"


def is_encrypted(value: Optional[str]) -> bool:
    """Check if a value already carries the 'encrypted:' prefix"""
    if not value:
        return False
    return value.startswith(ENCRYPTED_PREFIX)


def mask_sensitive(value: Optional[str], show_chars: int = 4) -> str:
    """
    Mask sensitive value for logging, showing only last N characters

    Example:
        >>> mask_sensitive("nvr-admin-pass")
        '****pass'
        >>> mask_sensitive("1234")
        '****'
    """
    if not value:
        return "****"

    # Don't reveal encrypted values at all
    if value.startswith(ENCRYPTED_PREFIX):
        return "****[encrypted]"

    if len(value) <= show_chars:
        return "****"

    return "****" + value[-show_chars:]


def decrypt_secret(encrypted_value: Optional[str]) -> str:
    """
    Decrypt a Fernet-encrypted secret

    Args:
        encrypted_value: Encrypted string with 'encrypted:' prefix

    Returns:
        Plain text secret

    Raises:
        SecretDecryptionError: If the token is invalid or was made with another key
    """
    if not encrypted_value:
        return ""

    # Return as-is if not encrypted (records created before encryption)
    if not encrypted_value.startswith(ENCRYPTED_PREFIX):
        logger.warning("Attempted to decrypt non-encrypted secret")
        return encrypted_value

    token = encrypted_value[len(ENCRYPTED_PREFIX):]

    try:
        return _get_cipher().decrypt(token.encode()).decode()
    except InvalidToken as e:
        logger.error("Decryption failed: Invalid token or wrong encryption key")
        raise SecretDecryptionError(
            "Failed to decrypt secret - invalid token or wrong encryption key"
        ) from e
