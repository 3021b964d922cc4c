"""
At-rest protection for income source credentials (bearer tokens, HMAC keys).

Values are Fernet tokens when ENCRYPTION_KEY is set. Without a key, or for
rows written before a key was configured, values pass through unchanged.
"""
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from moneybridge.config import get_settings

logger = logging.getLogger(__name__)


def _cipher() -> Optional[Fernet]:
    key = get_settings().encryption_key
    return Fernet(key.encode()) if key else None


def encrypt_value(plaintext: Optional[str]) -> Optional[str]:
    """Fernet-encrypt a secret; empty values and keyless setups pass through."""
    cipher = _cipher()
    if not plaintext or cipher is None:
        return plaintext
    return cipher.encrypt(plaintext.encode()).decode()


def decrypt_value(stored: Optional[str]) -> Optional[str]:
    """
    Reverse encrypt_value. A value that is not a valid token for the current
    key is treated as legacy plaintext and returned as stored.
    """
    cipher = _cipher()
    if not stored or cipher is None:
        return stored
    try:
        return cipher.decrypt(stored.encode()).decode()
    except InvalidToken:
        logger.debug("Stored secret is not a Fernet token; using it as plaintext")
        return stored


def mask_secret(value: Optional[str]) -> Optional[str]:
    """'whsec_abcdef1234' -> '****1234'."""
    if not value:
        return None
    return f"****{value[-4:]}"
