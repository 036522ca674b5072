# masterbook/utils/encryption.py
"""Symmetric encryption for OAuth tokens stored in calendar_sync_bindings"""
from cryptography.fernet import Fernet

from masterbook.config.settings import get_settings


def get_cipher() -> Fernet:
    """
    Fernet cipher built from CALENDAR_ENCRYPTION_KEY.

    Generate the key once with Fernet.generate_key(); rotating it makes every
    stored token unreadable and masters have to reconnect their calendar.
    """
    key = get_settings().CALENDAR_ENCRYPTION_KEY
    if not key:
        raise ValueError("CALENDAR_ENCRYPTION_KEY is not set")
    return Fernet(key.encode() if isinstance(key, str) else key)
