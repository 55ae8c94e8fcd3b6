"""
Continuum Crypto -- Encryption at rest for session bootstrap snapshots.

Snapshots summarize identity, patterns and recent emotional state, so they
are encrypted with Fernet (AES-128-CBC + HMAC-SHA256) before they are written
to the sessions table. The key lives at $CONTINUUM_HOME/.key.

Enabled by default. Disable: CONTINUUM_ENCRYPT=0

The key file is created on first use with 0600 permissions. Losing it means
losing access to encrypted snapshots.
"""

import base64
import logging
import os
import secrets
import sqlite3
import stat
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken

from continuum.config import continuum_home

logger = logging.getLogger("continuum.crypto")

_PREFIX = "ENC:"

_fernet_instance = None


def _key_path() -> Path:
    return continuum_home() / ".key"


def is_enabled() -> bool:
    """Check if encryption at rest is enabled (on unless CONTINUUM_ENCRYPT=0)."""
    val = os.environ.get("CONTINUUM_ENCRYPT", "").strip().lower()
    return val not in ("0", "false", "no")


def reset_crypto_state() -> None:
    """Reset module state for test isolation."""
    global _fernet_instance
    _fernet_instance = None


def _get_or_create_key() -> bytes:
    """Get the Fernet key, creating one if it doesn't exist."""
    kp = _key_path()
    if kp.exists():
        raw = kp.read_bytes().strip()
        if len(raw) == 32:
            return base64.urlsafe_b64encode(raw)
        return raw

    home = continuum_home()
    home.mkdir(parents=True, exist_ok=True, mode=0o700)
    encoded_key = base64.urlsafe_b64encode(secrets.token_bytes(32))
    # Atomic creation with restricted permissions
    fd = os.open(str(kp), os.O_CREAT | os.O_WRONLY | os.O_EXCL, 0o600)
    try:
        os.write(fd, encoded_key)
    finally:
        os.close(fd)
    logger.info("Created encryption key at %s", kp)
    return encoded_key


def _get_fernet() -> Fernet:
    global _fernet_instance
    if _fernet_instance is None:
        _fernet_instance = Fernet(_get_or_create_key())
    return _fernet_instance


def encrypt(plaintext: str) -> str:
    """Encrypt a string. Returns plaintext unchanged when encryption is disabled."""
    if not is_enabled():
        return plaintext
    token = _get_fernet().encrypt(plaintext.encode("utf-8"))
    return _PREFIX + token.decode("ascii")


def decrypt(data: str) -> str:
    """Decrypt a string. Values without the ENC: prefix are returned as-is.

    Raises ValueError if decryption fails (wrong key or corrupted data).
    """
    if not data.startswith(_PREFIX):
        return data
    try:
        return _get_fernet().decrypt(data[len(_PREFIX):].encode("ascii")).decode("utf-8")
    except InvalidToken as e:
        raise ValueError("Decryption failed: invalid key or corrupted snapshot") from e


def secure_connect(db_path, **kwargs) -> sqlite3.Connection:
    """Create a SQLite connection with secure file permissions (0o600).

    Pre-creates the DB file with restricted permissions before connecting,
    and fixes existing files that have overly permissive permissions.
    """
    path_obj = Path(db_path)
    if not path_obj.exists():
        fd = os.open(str(path_obj), os.O_CREAT | os.O_WRONLY, 0o600)
        os.close(fd)
    else:
        current_mode = path_obj.stat().st_mode
        if current_mode & (stat.S_IRWXG | stat.S_IRWXO):
            os.chmod(str(path_obj), 0o600)
    return sqlite3.connect(str(path_obj), **kwargs)
