"""Credential encryption utilities.

Provides Fernet encryption for storing enforcement target passwords at rest.
"""

from __future__ import annotations

import logging

from cryptography.fernet import Fernet, InvalidToken

from app.config import settings

_logger = logging.getLogger(__name__)
_encryption_warning_logged = False


def get_encryption_key() -> bytes | None:
    """Get the Fernet encryption key from CREDENTIAL_ENCRYPTION_KEY.

    Returns:
        Fernet key bytes if set, None otherwise
    """
    global _encryption_warning_logged

    key_str = settings.credential_encryption_key
    if not key_str:
        if not _encryption_warning_logged:
            _logger.warning(
                "CREDENTIAL_ENCRYPTION_KEY not configured. "
                "Enforcement target credentials will be stored unencrypted."
            )
            _encryption_warning_logged = True
        return None
    # Key should be URL-safe base64 encoded 32-byte key
    return key_str.encode("ascii")


def generate_encryption_key() -> str:
    """Generate a new Fernet encryption key.

    Use this to generate a key for the CREDENTIAL_ENCRYPTION_KEY env var:
        python -c "from app.services.credential_crypto import generate_encryption_key; print(generate_encryption_key())"
    """
    return Fernet.generate_key().decode("ascii")


def is_encrypted(value: str | None) -> bool:
    """True if the value carries an 'enc:' or 'plain:' prefix."""
    if not value:
        return False
    return value.startswith(("enc:", "plain:"))


def encrypt_credential(value: str | None) -> str | None:
    """Encrypt a credential for storage at rest.

    If no encryption key is configured, returns the credential unchanged
    but prefixed with "plain:" for identification.
    """
    if not value:
        return value

    # Don't double-encrypt
    if is_encrypted(value):
        return value

    encryption_key = get_encryption_key()
    if not encryption_key:
        return f"plain:{value}"

    fernet = Fernet(encryption_key)
    encrypted = fernet.encrypt(value.encode("utf-8"))
    return f"enc:{encrypted.decode('ascii')}"


def decrypt_credential(value: str | None) -> str | None:
    """Decrypt a credential from storage.

    Handles encrypted (enc:), plain (plain:), and legacy (no prefix) formats.

    Raises:
        ValueError: If decryption fails
    """
    if not value:
        return value

    if value.startswith("plain:"):
        return value[6:]

    if value.startswith("enc:"):
        encryption_key = get_encryption_key()
        if not encryption_key:
            raise ValueError(
                "Encrypted credential found but CREDENTIAL_ENCRYPTION_KEY not set"
            )
        fernet = Fernet(encryption_key)
        try:
            decrypted = fernet.decrypt(value[4:].encode("ascii"))
            return decrypted.decode("utf-8")
        except InvalidToken as e:
            raise ValueError("Failed to decrypt credential: invalid token") from e

    # Legacy format (no prefix) - treat as plain
    return value
