"""
Encryption utilities for scheme credential secrets.

Handles cross-database encryption (PostgreSQL pgcrypto, SQLite plaintext for
development and testing). Keys are isolated per owner and per scheme, and mixed
with the configured master key when one is set.
"""

from typing import Any, Dict, Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from ..config import get_config
from . import json_utils


def _encryption_key(owner_user_id: str, key_suffix: str = "") -> str:
    master_key = get_config().security.encryption_key
    parts = [part for part in (master_key, owner_user_id, key_suffix) if part]
    return "_".join(parts)


def encrypt_value(session: Session, value: str, owner_user_id: str, key_suffix: str = "") -> bytes:
    """
    Encrypt a value using database-specific encryption.

    Args:
        session: Database session
        value: Value to encrypt
        owner_user_id: Owner ID for key isolation
        key_suffix: Additional key suffix for different data types

    Returns:
        Encrypted bytes
    """
    if session.bind.dialect.name == "postgresql":
        result = session.execute(
            text("SELECT pgp_sym_encrypt(:data, :key)"),
            {"data": value, "key": _encryption_key(owner_user_id, key_suffix)},
        ).scalar()
        return result

    # SQLite for development and testing
    return value.encode() if isinstance(value, str) else value


def decrypt_value(
    session: Session, encrypted_value: bytes, owner_user_id: str, key_suffix: str = ""
) -> Optional[str]:
    """
    Decrypt a value using database-specific decryption.

    Returns:
        Decrypted string or None
    """
    if not encrypted_value:
        return None

    if session.bind.dialect.name == "postgresql":
        return session.execute(
            text("SELECT pgp_sym_decrypt(:data, :key)"),
            {"data": encrypted_value, "key": _encryption_key(owner_user_id, key_suffix)},
        ).scalar()

    if isinstance(encrypted_value, bytes):
        return encrypted_value.decode()
    return encrypted_value


def encrypt_secrets(
    session: Session, secrets: Dict[str, Any], owner_user_id: str, scheme_name: str
) -> bytes:
    """Encrypt a credential's secret fields with owner and scheme isolation."""
    return encrypt_value(session, json_utils.dumps(secrets), owner_user_id, f"scheme_{scheme_name}")


def decrypt_secrets(
    session: Session, encrypted: bytes, owner_user_id: str, scheme_name: str
) -> Dict[str, Any]:
    """Decrypt a credential's secret fields."""
    decrypted = decrypt_value(session, encrypted, owner_user_id, f"scheme_{scheme_name}")
    if not decrypted:
        return {}
    return json_utils.loads(decrypted)
