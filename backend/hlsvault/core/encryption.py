"""Sealing of internal artifacts.

Chunk and key mapping files are written next to every package for
audit/debug. They are sealed with Fernet so that a leaked output directory
does not reveal which opaque segment name belongs to which position, nor the
raw key material. Fernet provides:
- AES-128-CBC encryption
- HMAC-SHA256 authentication
- Automatic IV generation
"""

import base64
import hashlib
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from hlsvault.core.config import settings


def _derive_key(key: str) -> bytes:
    """Derive a Fernet-compatible key from the configuration key.

    Args:
        key: The raw secret string

    Returns:
        bytes: A 32-byte URL-safe base64-encoded key for Fernet
    """
    key_bytes = hashlib.sha256(key.encode()).digest()
    return base64.urlsafe_b64encode(key_bytes)


def get_fernet(secret: Optional[str] = None) -> Fernet:
    """Get a Fernet instance for the given secret or the configured one."""
    return Fernet(_derive_key(secret or settings.MAPPING_SECRET_KEY))


def seal(plaintext: bytes, secret: Optional[str] = None) -> bytes:
    """Encrypt and authenticate ``plaintext``.

    Raises:
        ValueError: If plaintext is empty
    """
    if not plaintext:
        raise ValueError("Cannot seal empty payload")
    return get_fernet(secret).encrypt(plaintext)


def unseal(token: bytes, secret: Optional[str] = None) -> bytes:
    """Decrypt a sealed payload.

    Raises:
        ValueError: If the token was not sealed with this secret or was tampered with
    """
    try:
        return get_fernet(secret).decrypt(token)
    except InvalidToken:
        raise ValueError("Sealed payload failed authentication")
