"""
Fernet-based encryption for payment provider credentials at rest (access and refresh tokens).

Usage:
    from storefront.utils.crypto import encrypt, decrypt

    cipher = encrypt("sk_test_...")    # → base64 Fernet token string
    plain  = decrypt(cipher)           # → "sk_test_..."

The encryption key is read from settings.encryption_key (ENCRYPTION_KEY env var).
If no key is set, a deterministic fallback is derived from the DATABASE_URL so that
dev environments work out-of-the-box — but production MUST set ENCRYPTION_KEY.
"""

import base64
import hashlib
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from storefront.config.settings import settings

logger = logging.getLogger(__name__)

_fernet: Optional[Fernet] = None


def _get_fernet() -> Fernet:
    global _fernet
    if _fernet is not None:
        return _fernet

    key = settings.encryption_key
    if not key:
        # Derive a deterministic key from DATABASE_URL for dev convenience
        digest = hashlib.sha256(settings.database_url.encode()).digest()
        key = base64.urlsafe_b64encode(digest[:32]).decode()
        logger.warning(
            "ENCRYPTION_KEY not set — using derived key from DATABASE_URL. "
            "Set ENCRYPTION_KEY in production!"
        )
    elif len(key) < 32:
        # Short passphrases are stretched into a valid Fernet key
        digest = hashlib.sha256(key.encode()).digest()
        key = base64.urlsafe_b64encode(digest[:32]).decode()

    _fernet = Fernet(key.encode() if isinstance(key, str) else key)
    return _fernet


def encrypt(plaintext: Optional[str]) -> str:
    """Encrypt a plaintext string → Fernet token (base64 string)."""
    if not plaintext:
        return ""
    return _get_fernet().encrypt(plaintext.encode("utf-8")).decode("utf-8")


def decrypt(ciphertext: Optional[str]) -> str:
    """Decrypt a Fernet token → plaintext string."""
    if not ciphertext:
        return ""
    try:
        return _get_fernet().decrypt(ciphertext.encode("utf-8")).decode("utf-8")
    except InvalidToken:
        raise ValueError("Failed to decrypt credential — key mismatch or corrupted data")
